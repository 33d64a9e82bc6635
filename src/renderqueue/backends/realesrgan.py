"""AI upscaling of frame sequences with the ncnn-vulkan upscalers."""

from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.cancellation import CancellationToken
from ..utils.ffmpeg import count_frames
from ..utils.process import RENDER_GRACEFUL_TIMEOUT
from .base import ProgressCallback, RenderBackend


class RealEsrganBackend(RenderBackend):
    """Upscales every PNG in a directory into another directory."""

    name = "realesrgan"
    default_executable = "realesrgan-ncnn-vulkan"

    def __init__(self, executable: Optional[str] = None, graceful_timeout: float = RENDER_GRACEFUL_TIMEOUT, **kwargs: Any):
        super().__init__(executable or self.default_executable, graceful_timeout=graceful_timeout, **kwargs)

    def build_command(
        self,
        input_dir: Path,
        output_dir: Path,
        model: str,
        scale: int,
        tile: int = 0,
        gpu_id: Optional[int] = None,
    ) -> List[str]:
        command = [
            self.executable,
            "-i", str(input_dir),
            "-o", str(output_dir),
            "-n", model,
            "-s", str(scale),
            "-t", str(tile),
            "-f", "png",
        ]
        if gpu_id is not None:
            command += ["-g", str(gpu_id)]
        return command

    def command_for(self, input_dir: Path, output_dir: Path, settings: Dict[str, Any]) -> List[str]:
        return self.build_command(
            input_dir,
            output_dir,
            settings.get("model", "realesrgan-x4plus"),
            int(settings.get("scale", 2)),
            int(settings.get("tile", 0)),
            settings.get("gpu_id"),
        )

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        output_dir = Path(output_path)
        output_dir.mkdir(parents=True, exist_ok=True)
        total = int(settings.get("total_frames") or count_frames(input_path))

        def on_tick() -> None:
            written = count_frames(output_dir)
            if total > 0:
                on_progress(min(100.0, written * 100.0 / total), written)

        command = self.command_for(Path(input_path), output_dir, settings)
        ok = self._run(command, cancel_token, output_dir, on_tick=on_tick)
        if ok:
            on_progress(100.0, total)
        return ok


class RealCuganBackend(RealEsrganBackend):
    """Real-CUGAN upscaling, tuned for anime and cartoon content.

    ``noise`` is the denoise level: -1 for none, 0 for conservative,
    1 to 3 for increasing strength.
    """

    name = "realcugan"
    default_executable = "realcugan-ncnn-vulkan"

    def build_command(
        self,
        input_dir: Path,
        output_dir: Path,
        model: str,
        scale: int,
        tile: int = 0,
        gpu_id: Optional[int] = None,
        noise: int = -1,
    ) -> List[str]:
        command = [
            self.executable,
            "-i", str(input_dir),
            "-o", str(output_dir),
            "-m", model,
            "-n", str(noise),
            "-s", str(scale),
            "-t", str(tile),
            "-f", "png",
        ]
        if gpu_id is not None:
            command += ["-g", str(gpu_id)]
        return command

    def command_for(self, input_dir: Path, output_dir: Path, settings: Dict[str, Any]) -> List[str]:
        return self.build_command(
            input_dir,
            output_dir,
            settings.get("cugan_model", "models-se"),
            int(settings.get("scale", 2)),
            int(settings.get("tile", 0)),
            settings.get("gpu_id"),
            int(settings.get("noise", -1)),
        )
