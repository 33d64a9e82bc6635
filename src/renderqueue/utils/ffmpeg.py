"""Media probing helpers built on ffprobe."""

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..exceptions import BackendError

logger = logging.getLogger(__name__)

FRAME_PATTERN = "%06d.png"

_TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
_FRAME_RE = re.compile(r"frame=\s*(\d+)")


@dataclass
class MediaInfo:
    """Subset of ffprobe output the pipeline needs."""
    duration: float
    fps: float
    width: int = 0
    height: int = 0
    has_video: bool = True
    has_audio: bool = False
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None

    @property
    def expected_frame_count(self) -> int:
        return int(round(self.duration * self.fps))


def parse_frame_rate(value: Optional[str], default: float = 30.0) -> float:
    """Parse ffprobe rates such as ``30000/1001`` or ``25``."""
    if not value:
        return default
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            return float(num) / float(den) if float(den) != 0 else default
        return float(value)
    except ValueError:
        return default


def get_video_info(video_path: Union[str, Path], ffprobe_path: str = "ffprobe") -> Dict[str, Any]:
    """Raw ffprobe JSON for ``video_path``.

    Raises:
        BackendError: If ffprobe is missing, fails or prints garbage
    """
    cmd = [
        ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(video_path),
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return json.loads(result.stdout)
    except FileNotFoundError as e:
        raise BackendError("ffprobe not found", tool="ffprobe", cause=e)
    except subprocess.CalledProcessError as e:
        raise BackendError(
            f"Failed to probe {video_path}",
            tool="ffprobe",
            exit_code=e.returncode,
            stderr_tail=(e.stderr or "")[-500:],
            cause=e,
        )
    except json.JSONDecodeError as e:
        raise BackendError(f"Failed to parse ffprobe output: {e}", tool="ffprobe", cause=e)


def probe_media(video_path: Union[str, Path], ffprobe_path: str = "ffprobe") -> MediaInfo:
    """Probe duration, frame rate and streams of a media file."""
    info = get_video_info(video_path, ffprobe_path)

    video_stream = None
    audio_stream = None
    for stream in info.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    fps = 0.0
    if video_stream:
        fps = parse_frame_rate(
            video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate")
        )
        if fps <= 0:
            fps = parse_frame_rate(video_stream.get("r_frame_rate"))

    duration = float(info.get("format", {}).get("duration") or 0.0)
    if duration <= 0 and video_stream:
        duration = float(video_stream.get("duration") or 0.0)

    return MediaInfo(
        duration=duration,
        fps=fps,
        width=int(video_stream.get("width", 0)) if video_stream else 0,
        height=int(video_stream.get("height", 0)) if video_stream else 0,
        has_video=video_stream is not None,
        has_audio=audio_stream is not None,
        video_codec=video_stream.get("codec_name") if video_stream else None,
        audio_codec=audio_stream.get("codec_name") if audio_stream else None,
    )


def count_frames(frames_dir: Union[str, Path], extension: str = ".png") -> int:
    """Number of image files in a frame directory."""
    directory = Path(frames_dir)
    if not directory.is_dir():
        return 0
    return sum(1 for p in directory.iterdir() if p.suffix.lower() == extension)


def parse_progress_time(line: str) -> Optional[float]:
    """Seconds encoded so far from an ffmpeg ``time=HH:MM:SS.xx`` stats line."""
    match = _TIME_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_progress_frame(line: str) -> Optional[int]:
    match = _FRAME_RE.search(line)
    return int(match.group(1)) if match else None
