"""MLT project rendering through the ``melt`` command line tool."""

import os
import re
import uuid
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..core.cancellation import CancellationToken
from ..utils.process import RENDER_GRACEFUL_TIMEOUT
from .base import ProgressCallback, RenderBackend, staging_path

# melt -progress2 prints "Current Frame:    120, percentage:     12"
MELT_PROGRESS_RE = re.compile(r"Current Frame:\s*(\d+),\s*percentage:\s*(\d+)")

# Background producers that must stay visible for the render to work
SYSTEM_PRODUCERS = frozenset({"black", "background"})


@dataclass
class MeltSettings:
    """avformat consumer options.

    ``threads`` of 0 means all CPU cores; it is passed as a negative
    ``real_time`` value so melt never drops frames while rendering to file.
    """
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    preset: str = "medium"
    crf: Optional[int] = 23
    audio_bitrate: Optional[str] = "128k"
    threads: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MeltSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_track_indices(value: Optional[str]) -> Optional[Set[int]]:
    """``"0,2"`` -> {0, 2}; empty or None means "all tracks"."""
    if not value or not value.strip():
        return None
    return {int(part) for part in value.split(",") if part.strip()}


def _playlist_kind(playlist: Optional[ET.Element]) -> str:
    if playlist is None:
        return "video"
    for prop in playlist.findall("property"):
        if prop.get("name") == "shotcut:audio":
            return "audio"
    return "video"


def apply_track_selection(
    project_path: Path,
    video_tracks: Optional[str],
    audio_tracks: Optional[str],
) -> Path:
    """Write a copy of the project with unselected tracks hidden.

    Tracks are numbered from 0 separately for video and audio, in timeline
    order. The copy lives next to the original so relative media paths in
    the project still resolve. The caller deletes it.

    Raises:
        ValueError: If the project has no main tractor
    """
    selected_video = parse_track_indices(video_tracks)
    selected_audio = parse_track_indices(audio_tracks)

    tree = ET.parse(project_path)
    root = tree.getroot()
    playlists = {p.get("id"): p for p in root.iter("playlist")}

    main_tractor = None
    for tractor in root.iter("tractor"):
        if any(p.get("name") == "shotcut" for p in tractor.findall("property")):
            main_tractor = tractor
            break
    if main_tractor is None:
        tractors = list(root.iter("tractor"))
        main_tractor = tractors[-1] if tractors else None
    if main_tractor is None:
        raise ValueError(f"No main tractor found in MLT project {project_path}")

    counters = {"video": 0, "audio": 0}
    for track in main_tractor.findall("track"):
        producer = track.get("producer") or ""
        if producer.lower() in SYSTEM_PRODUCERS:
            continue

        kind = _playlist_kind(playlists.get(producer))
        index = counters[kind]
        counters[kind] += 1

        if kind == "video":
            hide = selected_video is not None and index not in selected_video
            hide_value = "video" if hide else None
        else:
            hide = selected_audio is not None and index not in selected_audio
            hide_value = "audio" if hide else None

        if hide_value:
            existing = track.get("hide")
            if existing and existing != hide_value:
                hide_value = "both"
            track.set("hide", hide_value)

    temp_path = project_path.with_name(
        f".{project_path.stem}.tracks-{uuid.uuid4().hex[:8]}.mlt"
    )
    tree.write(temp_path, encoding="utf-8", xml_declaration=True)
    return temp_path


class MeltBackend(RenderBackend):
    """Renders an MLT project file to a video file."""

    name = "melt"

    def __init__(self, melt_path: str = "melt", graceful_timeout: float = RENDER_GRACEFUL_TIMEOUT, **kwargs: Any):
        super().__init__(melt_path, graceful_timeout=graceful_timeout, **kwargs)

    def build_command(
        self,
        project_path: Path,
        output_path: Path,
        settings: MeltSettings,
        in_point: Optional[int] = None,
        out_point: Optional[int] = None,
    ) -> List[str]:
        command = [self.executable, str(project_path)]
        if in_point is not None:
            command.append(f"in={in_point}")
        if out_point is not None:
            command.append(f"out={out_point}")

        command += ["-progress2", "-consumer", f"avformat:{output_path}"]
        command.append(f"vcodec={settings.video_codec}")
        command.append(f"acodec={settings.audio_codec}")
        if settings.crf is not None:
            command.append(f"crf={settings.crf}")
        if settings.preset:
            command.append(f"preset={settings.preset}")
        if settings.audio_bitrate:
            command.append(f"ab={settings.audio_bitrate}")

        threads = settings.threads if settings.threads > 0 else (os.cpu_count() or 1)
        command.append(f"real_time=-{threads}")

        if output_path.suffix.lower() == ".mp4":
            command.append("movflags=+faststart")
        return command

    def execute(
        self,
        input_path: Path,
        output_path: Path,
        settings: Dict[str, Any],
        on_progress: ProgressCallback,
        cancel_token: CancellationToken,
    ) -> bool:
        """Render ``input_path`` (.mlt) to ``output_path``.

        Besides MeltSettings keys, ``settings`` may carry ``in_point``,
        ``out_point``, ``video_tracks`` and ``audio_tracks``.
        """
        project_path = Path(input_path)
        output_path = Path(output_path)
        melt_settings = MeltSettings.from_dict(settings)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        temp_project: Optional[Path] = None
        if settings.get("video_tracks") or settings.get("audio_tracks"):
            try:
                temp_project = apply_track_selection(
                    project_path, settings.get("video_tracks"), settings.get("audio_tracks")
                )
            except (ET.ParseError, OSError, ValueError) as e:
                self.last_error = f"Track selection failed: {e}"
                self._logger.error(self.last_error)
                return False
            project_path = temp_project

        partial = staging_path(output_path)
        command = self.build_command(
            project_path,
            partial,
            melt_settings,
            settings.get("in_point"),
            settings.get("out_point"),
        )

        def on_line(line: str) -> None:
            match = MELT_PROGRESS_RE.search(line)
            if match:
                on_progress(float(match.group(2)), int(match.group(1)))

        self._logger.info(f"Rendering {project_path.name} -> {output_path}")
        try:
            return self._run(
                command, cancel_token, partial, on_output_line=on_line, final_path=output_path
            )
        finally:
            if temp_project is not None:
                try:
                    temp_project.unlink()
                except OSError as e:
                    self._logger.warning(f"Failed to delete temporary project {temp_project}: {e}")
