"""Progress ranges of pipeline steps.

Each step owns a slice of the job's 0-100% range. A backend reports
0-100% of its own work and the slice maps that onto the job range.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..backends.base import ProgressCallback


@dataclass(frozen=True)
class StageRange:
    start: float
    end: float

    def scale(self, percent: float) -> float:
        percent = min(100.0, max(0.0, percent))
        return self.start + (self.end - self.start) * percent / 100.0

    def within(self, outer: "StageRange") -> "StageRange":
        """This range expressed inside ``outer`` instead of 0-100."""
        return StageRange(outer.scale(self.start), outer.scale(self.end))


FULL_RANGE = StageRange(0.0, 100.0)
FIRST_HALF = StageRange(0.0, 50.0)
SECOND_HALF = StageRange(50.0, 100.0)


def direct_pipeline_ranges(with_upscale: bool = False) -> Dict[str, StageRange]:
    """Sub-ranges of the extract/interpolate/reassemble pipeline."""
    ranges = {
        "analyze": StageRange(0.0, 2.0),
        "extract_audio": StageRange(2.0, 5.0),
        "extract_frames": StageRange(5.0, 20.0),
        "interpolate": StageRange(20.0, 80.0),
        "reassemble": StageRange(80.0, 100.0),
    }
    if with_upscale:
        ranges["interpolate"] = StageRange(20.0, 60.0)
        ranges["upscale"] = StageRange(60.0, 80.0)
    return ranges


@dataclass
class PipelineProgress:
    """Overall progress of a job as seen by the scheduler."""
    percentage: float
    current_frame: int = 0
    total_frames: int = 0
    stage: Optional[str] = None


class JobProgress:
    """Clamps reported progress to 0-100 and never lets it go backwards."""

    def __init__(self, sink: Callable[[PipelineProgress], None]) -> None:
        self._sink = sink
        self._last = 0.0
        self._lock = threading.Lock()

    @property
    def last(self) -> float:
        return self._last

    def report(
        self,
        percentage: float,
        current_frame: int = 0,
        stage: Optional[str] = None,
        total_frames: int = 0,
    ) -> None:
        with self._lock:
            value = min(100.0, max(self._last, percentage))
            self._last = value
        self._sink(PipelineProgress(value, current_frame, total_frames, stage))

    def scoped(self, stage_range: StageRange, stage: str, total_frames: int = 0) -> ProgressCallback:
        """Backend progress callback mapped onto ``stage_range``."""

        def callback(percent: float, current_frame: int) -> None:
            self.report(stage_range.scale(percent), current_frame, stage, total_frames)

        return callback
