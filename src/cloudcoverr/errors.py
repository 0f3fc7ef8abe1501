"""
Exception types raised by the cloudcoverr pipeline.
"""

from __future__ import annotations

import numpy as np


class ConfigurationError(ValueError):
    """Invalid configuration or inputs, detected before processing starts."""


class CovarianceError(np.linalg.LinAlgError):
    """
    A covariance block is not positive definite.

    Raised by the conditional estimator for a single star. The detector
    processor fills in ``star_id`` and ``detector`` before reporting it.
    """

    def __init__(
        self,
        message: str,
        block: str = "",
        star_id: object = None,
        detector: str | None = None,
    ):
        super().__init__(message)
        self.block = block
        self.star_id = star_id
        self.detector = detector

    def __str__(self) -> str:
        msg = super().__str__()
        context = []
        if self.detector is not None:
            context.append(f"detector={self.detector}")
        if self.star_id is not None:
            context.append(f"star={self.star_id}")
        if context:
            return f"{msg} ({', '.join(context)})"
        return msg
