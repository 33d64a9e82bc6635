"""Integrity checks between pipeline steps.

External tools sometimes exit 0 after producing truncated output; these
checks turn that into a job failure.
"""

import logging
from pathlib import Path
from typing import Optional

from ..exceptions import IntegrityError
from ..utils.ffmpeg import MediaInfo

logger = logging.getLogger(__name__)


def validate_source(info: MediaInfo, path: Path) -> None:
    if not info.has_video:
        raise IntegrityError(f"{path} has no video stream", check="source")
    if info.duration <= 0:
        raise IntegrityError(
            f"{path} reports no duration", check="source", actual=info.duration
        )


def validate_frame_count(
    actual: int,
    expected: int,
    tolerance: int,
    check: str,
    log: Optional[logging.Logger] = None,
) -> None:
    """Fail if ``actual`` differs from ``expected`` by more than ``tolerance``."""
    log = log or logger
    difference = abs(actual - expected)
    if difference > tolerance:
        raise IntegrityError(
            f"{check}: expected {expected} frames but found {actual}",
            check=check,
            expected=expected,
            actual=actual,
        )
    if difference:
        log.warning(f"{check}: expected {expected} frames, found {actual} (within tolerance)")


def validate_duration(
    actual: float,
    expected: float,
    tolerance: float,
    check: str = "output_duration",
) -> None:
    if abs(actual - expected) > tolerance:
        raise IntegrityError(
            f"{check}: output lasts {actual:.2f}s but source lasts {expected:.2f}s",
            check=check,
            expected=round(expected, 3),
            actual=round(actual, 3),
        )
