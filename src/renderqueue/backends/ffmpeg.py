"""ffmpeg-based pipeline steps: audio/frame extraction, reassembly, non-AI upscale."""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.cancellation import CancellationToken
from ..utils.ffmpeg import (
    FRAME_PATTERN,
    parse_progress_frame,
    parse_progress_time,
)
from ..utils.process import ENCODER_GRACEFUL_TIMEOUT
from .base import ProgressCallback, RenderBackend, staging_path


@dataclass
class EncoderSettings:
    """Options for encoding the final video from frames."""
    video_codec: str = "libx264"
    crf: int = 18
    preset: str = "medium"
    pixel_format: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    hwaccel: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.crf <= 51:
            raise ValueError(f"crf must be between 0 and 51, got {self.crf}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EncoderSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FFmpegBackend(RenderBackend):
    """Shared progress parsing for ffmpeg invocations.

    Progress comes from ``frame=`` when the total frame count is known,
    otherwise from ``time=`` against the media duration.
    """

    name = "ffmpeg"

    def __init__(self, ffmpeg_path: str = "ffmpeg", graceful_timeout: float = ENCODER_GRACEFUL_TIMEOUT, **kwargs: Any):
        super().__init__(ffmpeg_path, graceful_timeout=graceful_timeout, **kwargs)

    def _progress_handler(
        self,
        on_progress: ProgressCallback,
        total_frames: int = 0,
        duration: float = 0.0,
    ):
        def on_line(line: str) -> None:
            frame = parse_progress_frame(line)
            if total_frames > 0 and frame is not None:
                on_progress(min(100.0, frame * 100.0 / total_frames), frame)
                return
            seconds = parse_progress_time(line)
            if duration > 0 and seconds is not None:
                on_progress(min(100.0, seconds * 100.0 / duration), frame or 0)

        return on_line

    def _input_args(self, settings: Dict[str, Any]) -> List[str]:
        args = [self.executable, "-hide_banner", "-y"]
        if settings.get("hwaccel"):
            args += ["-hwaccel", "auto"]
        return args


class AudioExtractionBackend(FFmpegBackend):
    """Copies the first audio stream of the input into its own file."""

    name = "ffmpeg-audio"

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        output_path = Path(output_path)
        partial = staging_path(output_path)
        command = [
            self.executable, "-hide_banner", "-y",
            "-i", str(input_path),
            "-vn", "-map", "0:a:0",
            "-c:a", settings.get("audio_codec", "copy"),
            str(partial),
        ]
        handler = self._progress_handler(on_progress, duration=float(settings.get("duration", 0.0)))
        return self._run(command, cancel_token, partial, on_output_line=handler, final_path=output_path)


class FrameExtractionBackend(FFmpegBackend):
    """Decodes every frame of the input to numbered PNG files."""

    name = "ffmpeg-extract"

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        frames_dir = Path(output_path)
        frames_dir.mkdir(parents=True, exist_ok=True)
        command = self._input_args(settings) + [
            "-i", str(input_path),
            "-map", "0:v:0",
            "-fps_mode", "passthrough",
            str(frames_dir / FRAME_PATTERN),
        ]
        handler = self._progress_handler(
            on_progress,
            total_frames=int(settings.get("total_frames", 0)),
            duration=float(settings.get("duration", 0.0)),
        )
        return self._run(command, cancel_token, frames_dir, on_output_line=handler)


class ReassemblyBackend(FFmpegBackend):
    """Encodes a PNG frame sequence (plus optional audio) into a video."""

    name = "ffmpeg-encode"

    def build_command(
        self,
        frames_dir: Path,
        output_path: Path,
        fps: float,
        encoder: EncoderSettings,
        audio_path: Optional[Path] = None,
    ) -> List[str]:
        command = [
            self.executable, "-hide_banner", "-y",
            "-framerate", f"{fps:g}",
            "-i", str(frames_dir / FRAME_PATTERN),
        ]
        if audio_path is not None:
            command += ["-i", str(audio_path), "-map", "0:v:0", "-map", "1:a:0"]
        command += [
            "-c:v", encoder.video_codec,
            "-preset", encoder.preset,
            "-crf", str(encoder.crf),
            "-pix_fmt", encoder.pixel_format,
        ]
        if audio_path is not None:
            command += ["-c:a", encoder.audio_codec, "-b:a", encoder.audio_bitrate, "-shortest"]
        if output_path.suffix.lower() == ".mp4":
            command += ["-movflags", "+faststart"]
        command.append(str(output_path))
        return command

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        """``settings`` carries ``fps``, ``total_frames``, optional ``audio_path``
        and EncoderSettings keys."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial = staging_path(output_path)
        audio = settings.get("audio_path")
        command = self.build_command(
            Path(input_path),
            partial,
            float(settings["fps"]),
            EncoderSettings.from_dict(settings),
            Path(audio) if audio else None,
        )
        handler = self._progress_handler(on_progress, total_frames=int(settings.get("total_frames", 0)))
        self._logger.info(f"Encoding {output_path}")
        return self._run(command, cancel_token, partial, on_output_line=handler, final_path=output_path)


# xbr and hqx only support factors 2 to 4.
UPSCALE_FILTERS = {
    "lanczos": "scale=iw*{scale}:ih*{scale}:flags=lanczos",
    "xbr": "xbr={scale}",
    "hqx": "hqx={scale}",
}


class FilterUpscaleBackend(FFmpegBackend):
    """Non-AI upscaling of a frame sequence with an ffmpeg video filter.

    ``algorithm`` is one of ``UPSCALE_FILTERS``: lanczos for general
    footage, xbr for anime and cartoons, hqx for pixel art.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", algorithm: str = "lanczos", **kwargs: Any):
        if algorithm not in UPSCALE_FILTERS:
            raise ValueError(f"Unknown upscale filter '{algorithm}'")
        self.algorithm = algorithm
        self.name = f"ffmpeg-{algorithm}"
        super().__init__(ffmpeg_path, **kwargs)

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        scale = int(settings.get("scale", 2))
        frames_out = Path(output_path)
        frames_out.mkdir(parents=True, exist_ok=True)
        command = [
            self.executable, "-hide_banner", "-y",
            "-i", str(Path(input_path) / FRAME_PATTERN),
            "-vf", UPSCALE_FILTERS[self.algorithm].format(scale=scale),
            "-fps_mode", "passthrough",
            str(frames_out / FRAME_PATTERN),
        ]
        handler = self._progress_handler(on_progress, total_frames=int(settings.get("total_frames", 0)))
        return self._run(command, cancel_token, frames_out, on_output_line=handler)
