"""
Utility functions for the cloudcoverr pipeline.

Includes:
- Version info
- Exposure-derived random seeds
- Duration formatting
"""

from __future__ import annotations

import platform
import sys
from datetime import datetime, timezone

__version__ = "0.3.0"
__version_info__ = {
    "major": 0,
    "minor": 3,
    "patch": 0,
    "status": "beta",
    "date": "2026-10-18",
}


def get_version_banner() -> str:
    """Return a formatted version banner for logging."""
    return f"cloudcoverr v{__version__} | Structured background debiasing for crowded-field photometry"


def get_version() -> str:
    """Return the library version string."""
    return __version__


def get_platform_info() -> str:
    """Return platform information string."""
    return f"{platform.system()} {platform.release()} / Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"


def get_timestamp_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def exposure_seed(date: str) -> int:
    """
    Derive a deterministic random seed from an exposure date string.

    Parameters
    ----------
    date : str
        Exposure date in ``YYMMDD_HHMMSS`` form (e.g. ``"170420_040428"``).

    Returns
    -------
    int
        ``int(YYMMDD) * 10**6 + int(HHMMSS)``.

    Examples
    --------
    >>> exposure_seed("170420_040428")
    170420040428
    """
    if len(date) < 8 or date[6] != "_":
        raise ValueError(f"Expected date of the form YYMMDD_HHMMSS, got {date!r}")
    return int(date[:6]) * 10**6 + int(date[7:])


def format_duration(seconds: float) -> str:
    """
    Format duration in human-readable form.

    Parameters
    ----------
    seconds : float
        Duration in seconds.

    Returns
    -------
    str
        Formatted string like "2h 15m 30s" or "45.2s".
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = seconds % 60
        return f"{hours}h {minutes}m {secs:.0f}s"
