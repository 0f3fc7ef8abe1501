"""
Tests for the command-line interface.
"""

import sys

import pytest

from cloudcoverr import cli


class TestLoadProvider:
    """Tests for load_provider."""

    def test_function(self):
        assert cli.load_provider("builtins:len") is len

    def test_class_is_instantiated(self):
        from conftest import SquaredExponentialCovariance

        provider = cli.load_provider("conftest:SquaredExponentialCovariance")
        assert isinstance(provider, SquaredExponentialCovariance)

    def test_instance_must_be_callable(self):
        with pytest.raises(ValueError, match="not callable"):
            cli.load_provider("collections:OrderedDict")

    def test_malformed(self):
        with pytest.raises(ValueError, match="module:attribute"):
            cli.load_provider("cloudcoverr.covariance")

    def test_not_callable(self):
        with pytest.raises(ValueError, match="not callable"):
            cli.load_provider("math:pi")


class TestParser:
    """Tests for the argument parser."""

    def test_run_arguments(self):
        args = cli.create_parser().parse_args(
            [
                "run", "/d/decaps/c4d_", "170420_040428", "g", "v1", "/d/cs",
                "--covariance", "mypkg.cov:Provider",
                "--ccd", "S6", "--ccd", "N4",
                "--np-size", "31", "--star-workers", "4", "--resume",
            ]
        )
        assert args.command == "run"
        assert args.ccd == ["S6", "N4"]
        assert args.np_size == 31
        assert args.star_workers == 4
        assert args.resume
        assert args.thr == 20.0

    def test_covariance_required(self):
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["run", "b", "170420_040428", "g", "v1", "c"])


class TestMain:
    """Tests for main()."""

    def test_detectors_command(self, decaps_exposure, monkeypatch, capsys):
        paths, _, _, _ = decaps_exposure
        monkeypatch.setattr(sys, "argv", ["cloudcoverr", "detectors", str(paths.catalog)])

        assert cli.main() == 0
        assert capsys.readouterr().out.split() == ["S6", "N4"]

    def test_detectors_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["cloudcoverr", "detectors", str(tmp_path / "none.fits")])
        assert cli.main() == 1

    def test_no_command(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["cloudcoverr"])
        assert cli.main() == 1

    def test_run_invalid_config(self, monkeypatch, tmp_path):
        """Invalid options fail before any file is touched."""
        monkeypatch.setattr(
            sys,
            "argv",
            [
                "cloudcoverr", "run", str(tmp_path / "c4d_"), "170420_040428", "g", "v1",
                str(tmp_path), "--covariance", "builtins:len", "--np-size", "32", "-q",
            ],
        )
        assert cli.main() == 1
