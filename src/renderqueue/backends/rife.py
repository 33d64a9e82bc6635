"""Frame interpolation with rife-ncnn-vulkan.

rife-ncnn-vulkan prints no usable progress, so progress is measured by
counting the frames it has written so far.
"""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.cancellation import CancellationToken
from ..utils.ffmpeg import FRAME_PATTERN, count_frames
from ..utils.process import RENDER_GRACEFUL_TIMEOUT
from .base import ProgressCallback, RenderBackend

VALID_MULTIPLIERS = (2, 4, 8)


@dataclass
class RifeSettings:
    model: str = "rife-v4.6"
    multiplier: int = 2
    gpu_id: Optional[int] = None
    threads: str = "1:2:2"
    uhd: bool = False
    tta: bool = False

    def __post_init__(self) -> None:
        if self.multiplier not in VALID_MULTIPLIERS:
            raise ValueError(
                f"multiplier must be one of {VALID_MULTIPLIERS}, got {self.multiplier}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RifeSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RifeBackend(RenderBackend):
    """Interpolates a PNG frame directory into a denser one."""

    name = "rife"

    def __init__(self, rife_path: str = "rife-ncnn-vulkan", graceful_timeout: float = RENDER_GRACEFUL_TIMEOUT, **kwargs: Any):
        super().__init__(rife_path, graceful_timeout=graceful_timeout, **kwargs)

    def build_command(
        self,
        input_dir: Path,
        output_dir: Path,
        settings: RifeSettings,
        target_frames: int,
    ) -> List[str]:
        command = [
            self.executable,
            "-i", str(input_dir),
            "-o", str(output_dir),
            "-m", settings.model,
            "-n", str(target_frames),
            "-j", settings.threads,
            "-f", FRAME_PATTERN,
        ]
        if settings.gpu_id is not None:
            command += ["-g", str(settings.gpu_id)]
        if settings.uhd:
            command.append("-u")
        if settings.tta:
            command.append("-x")
        return command

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        """``settings`` carries RifeSettings keys and ``input_frames``."""
        rife_settings = RifeSettings.from_dict(settings)
        input_frames = int(settings.get("input_frames") or count_frames(input_path))
        target_frames = input_frames * rife_settings.multiplier

        output_dir = Path(output_path)
        output_dir.mkdir(parents=True, exist_ok=True)

        def on_tick() -> None:
            written = count_frames(output_dir)
            if target_frames > 0:
                on_progress(min(100.0, written * 100.0 / target_frames), written)

        self._logger.info(
            f"Interpolating {input_frames} frames x{rife_settings.multiplier} "
            f"with {rife_settings.model}"
        )
        ok = self._run(
            self.build_command(Path(input_path), output_dir, rife_settings, target_frames),
            cancel_token,
            output_dir,
            on_tick=on_tick,
        )
        if ok:
            on_progress(100.0, target_frames)
        return ok
