"""Tests for render backends: command lines, progress parsing and output hygiene."""
import stat
import sys
import textwrap
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest.mock import patch

import pytest

from renderqueue.backends import (
    AudioExtractionBackend,
    EncoderSettings,
    FrameExtractionBackend,
    FilterUpscaleBackend,
    MeltBackend,
    MeltSettings,
    RealCuganBackend,
    RealEsrganBackend,
    ReassemblyBackend,
    RifeBackend,
    RifeSettings,
    apply_track_selection,
    staging_path,
)
from renderqueue.backends.melt import parse_track_indices
from renderqueue.core.cancellation import CancellationToken
from renderqueue.exceptions import BackendError, OperationCancelledError
from renderqueue.utils.ffmpeg import (
    count_frames,
    get_video_info,
    parse_frame_rate,
    parse_progress_frame,
    parse_progress_time,
    probe_media,
)
from renderqueue.utils.process import ToolResult

SHOTCUT_PROJECT = """<?xml version="1.0" encoding="utf-8"?>
<mlt>
  <playlist id="background"/>
  <playlist id="playlist0"><property name="shotcut:video">1</property></playlist>
  <playlist id="playlist1"><property name="shotcut:video">1</property></playlist>
  <playlist id="playlist2"><property name="shotcut:audio">1</property></playlist>
  <playlist id="playlist3"><property name="shotcut:audio">1</property></playlist>
  <tractor id="tractor0">
    <property name="shotcut">1</property>
    <track producer="background"/>
    <track producer="playlist0"/>
    <track producer="playlist1"/>
    <track producer="playlist2" hide="video"/>
    <track producer="playlist3" hide="video"/>
  </tractor>
</mlt>
"""


def fake_tool(lines=(), returncode=0, write=None):
    """Replacement for run_tool that replays output and optionally writes a file."""
    calls = []

    def _run_tool(command, label, cancel_token, process_manager, graceful_timeout,
                  on_output_line=None, on_tick=None, **kwargs):
        calls.append(list(command))
        cancel_token.raise_if_cancelled()
        for line in lines:
            if on_output_line:
                on_output_line(line)
        if write is not None:
            write(command)
        return ToolResult(returncode=returncode, output_tail="\n".join(lines))

    return _run_tool, calls


class TestStagingPath:
    """Tests for staging_path."""

    def test_keeps_extension(self):
        """Test that the container extension survives."""
        assert staging_path(Path("/out/render.mp4")) == Path("/out/render.partial.mp4")


class TestTrackSelection:
    """Tests for MLT track hiding."""

    def test_parse_track_indices(self):
        """Test index list parsing."""
        assert parse_track_indices("0, 2") == {0, 2}
        assert parse_track_indices("") is None
        assert parse_track_indices(None) is None

    def test_hides_unselected_tracks(self, tmp_path):
        """Test that unselected video/audio tracks are hidden in a copy."""
        project = tmp_path / "edit.mlt"
        project.write_text(SHOTCUT_PROJECT, encoding="utf-8")

        copy = apply_track_selection(project, "1", "0")

        try:
            assert copy.parent == project.parent
            assert copy != project
            tracks = ET.parse(copy).getroot().find("tractor").findall("track")
            hides = {t.get("producer"): t.get("hide") for t in tracks}
            assert hides["background"] is None
            assert hides["playlist0"] == "video"
            assert hides["playlist1"] is None
            assert hides["playlist2"] == "video"
            assert hides["playlist3"] == "both"
        finally:
            copy.unlink()

        assert project.read_text(encoding="utf-8") == SHOTCUT_PROJECT

    def test_missing_tractor(self, tmp_path):
        """Test that a project without a tractor is rejected."""
        project = tmp_path / "empty.mlt"
        project.write_text("<mlt/>", encoding="utf-8")

        with pytest.raises(ValueError):
            apply_track_selection(project, "0", None)


class TestMeltBackend:
    """Tests for MeltBackend."""

    def test_build_command(self):
        """Test the melt command line."""
        backend = MeltBackend("melt")
        settings = MeltSettings(crf=20, preset="slow", audio_bitrate="192k", threads=4)

        command = backend.build_command(
            Path("edit.mlt"), Path("out.partial.mp4"), settings, in_point=10, out_point=99
        )

        assert command[:4] == ["melt", "edit.mlt", "in=10", "out=99"]
        assert "-progress2" in command
        assert command[command.index("-consumer") + 1] == "avformat:out.partial.mp4"
        assert "vcodec=libx264" in command
        assert "crf=20" in command
        assert "preset=slow" in command
        assert "ab=192k" in command
        assert "real_time=-4" in command
        assert "movflags=+faststart" in command

    def test_no_faststart_for_mkv(self):
        """Test that movflags is only set for mp4."""
        command = MeltBackend().build_command(Path("a.mlt"), Path("b.mkv"), MeltSettings())
        assert "movflags=+faststart" not in command

    def test_execute_reports_progress_and_renames_output(self, tmp_path):
        """Test progress parsing and the staged rename on success."""
        output = tmp_path / "out" / "render.mp4"

        def write(command):
            target = next(c for c in command if c.startswith("avformat:"))[len("avformat:"):]
            Path(target).write_bytes(b"video")

        run, calls = fake_tool(
            lines=[
                "Current Frame:         10, percentage:         10",
                "Current Frame:         50, percentage:         50",
                "Current Frame:        100, percentage:        100",
            ],
            write=write,
        )
        progress = []
        with patch("renderqueue.backends.base.run_tool", run):
            ok = MeltBackend().execute(
                tmp_path / "edit.mlt", output, {}, lambda p, f: progress.append((p, f)),
                CancellationToken(),
            )

        assert ok is True
        assert output.read_bytes() == b"video"
        assert not staging_path(output).exists()
        assert progress == [(10.0, 10), (50.0, 50), (100.0, 100)]

    def test_failure_leaves_no_output(self, tmp_path):
        """Test that a failed render removes the partial file."""
        output = tmp_path / "render.mp4"

        def write(command):
            staging_path(output).write_bytes(b"half")

        run, _ = fake_tool(lines=["Error: codec not found"], returncode=1, write=write)
        backend = MeltBackend()
        with patch("renderqueue.backends.base.run_tool", run):
            ok = backend.execute(tmp_path / "edit.mlt", output, {}, lambda p, f: None,
                                 CancellationToken())

        assert ok is False
        assert not output.exists()
        assert not staging_path(output).exists()
        assert "exited with code 1" in backend.last_error

    def test_cancellation_raises_and_cleans_up(self, tmp_path):
        """Test that a cancelled render raises and removes partial output."""
        output = tmp_path / "render.mp4"
        staging_path(output).write_bytes(b"half")
        token = CancellationToken()
        token.cancel()

        run, _ = fake_tool()
        with patch("renderqueue.backends.base.run_tool", run):
            with pytest.raises(OperationCancelledError):
                MeltBackend().execute(tmp_path / "edit.mlt", output, {}, lambda p, f: None, token)

        assert not staging_path(output).exists()

    def test_track_selection_uses_temporary_project(self, tmp_path):
        """Test that melt renders a filtered copy that is removed afterwards."""
        project = tmp_path / "edit.mlt"
        project.write_text(SHOTCUT_PROJECT, encoding="utf-8")
        run, calls = fake_tool(returncode=1)

        with patch("renderqueue.backends.base.run_tool", run):
            MeltBackend().execute(
                project, tmp_path / "out.mp4", {"video_tracks": "0"}, lambda p, f: None,
                CancellationToken(),
            )

        rendered_project = Path(calls[0][1])
        assert rendered_project != project
        assert rendered_project.name.startswith(".edit.tracks-")
        assert not rendered_project.exists()

    @pytest.mark.skipif(sys.platform == "win32", reason="uses a shebang script")
    def test_against_fake_melt_executable(self, tmp_path):
        """Test the full path through a real subprocess."""
        script = tmp_path / "melt"
        script.write_text(textwrap.dedent(f"""\
            #!{sys.executable}
            import sys
            target = [a for a in sys.argv if a.startswith("avformat:")][0][len("avformat:"):]
            for pct in (25, 50, 75, 100):
                sys.stdout.write(f"Current Frame: {{pct}}, percentage: {{pct}}\\r")
            sys.stdout.flush()
            open(target, "wb").write(b"rendered")
        """))
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        output = tmp_path / "final.mp4"
        progress = []

        ok = MeltBackend(str(script)).execute(
            tmp_path / "edit.mlt", output, {}, lambda p, f: progress.append(p),
            CancellationToken(),
        )

        assert ok is True
        assert output.read_bytes() == b"rendered"
        assert progress == [25.0, 50.0, 75.0, 100.0]


class TestFFmpegBackends:
    """Tests for the ffmpeg pipeline steps."""

    def test_audio_extraction_command(self, tmp_path):
        """Test that the first audio stream is copied to a staged file."""
        output = tmp_path / "audio.mka"
        run, calls = fake_tool(write=lambda c: Path(c[-1]).write_bytes(b"a"))

        with patch("renderqueue.backends.base.run_tool", run):
            ok = AudioExtractionBackend().execute(
                Path("in.mp4"), output, {"duration": 10.0}, lambda p, f: None,
                CancellationToken(),
            )

        command = calls[0]
        assert ok is True
        assert command[command.index("-map") + 1] == "0:a:0"
        assert command[command.index("-c:a") + 1] == "copy"
        assert command[-1] == str(staging_path(output))
        assert output.exists()

    def test_frame_extraction_progress_from_frames(self, tmp_path):
        """Test frame= based progress when the total is known."""
        run, calls = fake_tool(lines=["frame=   50 fps=100 time=00:00:02.00", "frame=  100 fps=100"])
        progress = []

        with patch("renderqueue.backends.base.run_tool", run):
            FrameExtractionBackend().execute(
                Path("in.mp4"), tmp_path / "frames", {"total_frames": 100, "hwaccel": True},
                lambda p, f: progress.append((p, f)), CancellationToken(),
            )

        command = calls[0]
        assert command[command.index("-hwaccel") + 1] == "auto"
        assert command[command.index("-fps_mode") + 1] == "passthrough"
        assert command[-1].endswith("%06d.png")
        assert progress == [(50.0, 50), (100.0, 100)]

    def test_progress_from_time_when_frames_unknown(self, tmp_path):
        """Test time= based progress against the duration."""
        run, _ = fake_tool(lines=["size= 100kB time=00:00:05.00 bitrate=1k"])
        progress = []

        with patch("renderqueue.backends.base.run_tool", run):
            AudioExtractionBackend().execute(
                Path("in.mp4"), tmp_path / "a.mka", {"duration": 10.0},
                lambda p, f: progress.append(p), CancellationToken(),
            )

        assert progress == [50.0]

    def test_reassembly_command_with_audio(self, tmp_path):
        """Test the encode command line."""
        command = ReassemblyBackend("ffmpeg").build_command(
            tmp_path / "frames",
            tmp_path / "out.mp4",
            59.94,
            EncoderSettings(crf=20, preset="slow"),
            audio_path=tmp_path / "audio.mka",
        )

        assert command[command.index("-framerate") + 1] == "59.94"
        assert command.count("-i") == 2
        assert command[command.index("-crf") + 1] == "20"
        assert command[command.index("-pix_fmt") + 1] == "yuv420p"
        assert "-shortest" in command
        assert "+faststart" in command
        assert command[-1] == str(tmp_path / "out.mp4")

    def test_reassembly_without_audio(self, tmp_path):
        """Test that no audio input or mapping is added without audio."""
        command = ReassemblyBackend().build_command(
            tmp_path / "frames", tmp_path / "out.mkv", 30.0, EncoderSettings()
        )

        assert command.count("-i") == 1
        assert "-c:a" not in command

    def test_encoder_settings_validation(self):
        """Test crf bounds."""
        with pytest.raises(ValueError):
            EncoderSettings(crf=60)

    @pytest.mark.parametrize("algorithm,expected", [
        ("xbr", "xbr=3"),
        ("hqx", "hqx=3"),
    ])
    def test_pattern_upscale_filters(self, tmp_path, algorithm, expected):
        """Test the xbr and hqx filters."""
        run, calls = fake_tool()
        backend = FilterUpscaleBackend(algorithm=algorithm)

        with patch("renderqueue.backends.base.run_tool", run):
            backend.execute(
                tmp_path / "frames", tmp_path / "upscaled", {"scale": 3}, lambda p, f: None,
                CancellationToken(),
            )

        command = calls[0]
        assert command[command.index("-vf") + 1] == expected
        assert backend.name == f"ffmpeg-{algorithm}"

    def test_unknown_upscale_filter(self):
        with pytest.raises(ValueError):
            FilterUpscaleBackend(algorithm="bicubic")

    def test_lanczos_scale_filter(self, tmp_path):
        """Test the non-AI upscale filter."""
        run, calls = fake_tool()

        with patch("renderqueue.backends.base.run_tool", run):
            FilterUpscaleBackend().execute(
                tmp_path / "frames", tmp_path / "upscaled", {"scale": 3}, lambda p, f: None,
                CancellationToken(),
            )

        command = calls[0]
        assert command[command.index("-vf") + 1] == "scale=iw*3:ih*3:flags=lanczos"


class TestFrameToolBackends:
    """Tests for RIFE and Real-ESRGAN."""

    def test_rife_command(self, tmp_path):
        """Test the RIFE command line and target frame count."""
        settings = RifeSettings(multiplier=4, gpu_id=1, uhd=True)

        command = RifeBackend("rife").build_command(
            tmp_path / "in", tmp_path / "out", settings, target_frames=400
        )

        assert command[command.index("-n") + 1] == "400"
        assert command[command.index("-m") + 1] == "rife-v4.6"
        assert command[command.index("-g") + 1] == "1"
        assert "-u" in command
        assert "-x" not in command

    def test_rife_rejects_bad_multiplier(self):
        """Test multiplier validation."""
        with pytest.raises(ValueError):
            RifeSettings(multiplier=3)

    def test_rife_execute_targets_multiplied_frames(self, tmp_path):
        """Test that execute asks for input_frames x multiplier frames."""
        run, calls = fake_tool()
        progress = []

        with patch("renderqueue.backends.base.run_tool", run):
            ok = RifeBackend().execute(
                tmp_path / "in", tmp_path / "out", {"multiplier": 2, "input_frames": 120},
                lambda p, f: progress.append((p, f)), CancellationToken(),
            )

        command = calls[0]
        assert ok is True
        assert command[command.index("-n") + 1] == "240"
        assert progress[-1] == (100.0, 240)

    def test_realesrgan_command(self, tmp_path):
        """Test the Real-ESRGAN command line."""
        command = RealEsrganBackend("realesrgan").build_command(
            tmp_path / "in", tmp_path / "out", "realesrgan-x4plus", 2, tile=256
        )

        assert command[command.index("-s") + 1] == "2"
        assert command[command.index("-t") + 1] == "256"
        assert "-g" not in command

    def test_realcugan_command(self, tmp_path):
        """Test that Real-CUGAN gets its model directory and denoise level."""
        run, calls = fake_tool()

        with patch("renderqueue.backends.base.run_tool", run):
            RealCuganBackend().execute(
                tmp_path / "in", tmp_path / "out",
                {"scale": 3, "noise": 1, "gpu_id": 0, "total_frames": 10},
                lambda p, f: None, CancellationToken(),
            )

        command = calls[0]
        assert command[0] == "realcugan-ncnn-vulkan"
        assert command[command.index("-m") + 1] == "models-se"
        assert command[command.index("-n") + 1] == "1"
        assert command[command.index("-s") + 1] == "3"
        assert command[command.index("-g") + 1] == "0"

    def test_frame_tool_failure_removes_output_dir(self, tmp_path):
        """Test that a failed frame tool leaves no half-filled directory."""
        out_dir = tmp_path / "upscaled"

        def write(command):
            (out_dir / "000001.png").write_bytes(b"png")

        run, _ = fake_tool(returncode=1, write=write)
        with patch("renderqueue.backends.base.run_tool", run):
            ok = RealEsrganBackend().execute(
                tmp_path / "in", out_dir, {"total_frames": 10}, lambda p, f: None,
                CancellationToken(),
            )

        assert ok is False
        assert not out_dir.exists()


class TestMediaProbe:
    """Tests for ffprobe helpers."""

    def test_parse_frame_rate(self):
        """Test rational and plain frame rates."""
        assert parse_frame_rate("30000/1001") == pytest.approx(29.97, abs=0.01)
        assert parse_frame_rate("25") == 25.0
        assert parse_frame_rate("0/0") == 30.0
        assert parse_frame_rate(None, default=24.0) == 24.0
        assert parse_frame_rate("garbage") == 30.0

    def test_probe_media(self):
        """Test extraction of the fields the pipeline needs."""
        raw = {
            "format": {"duration": "10.010000"},
            "streams": [
                {"codec_type": "video", "codec_name": "h264", "avg_frame_rate": "24000/1001",
                 "width": 1920, "height": 1080},
                {"codec_type": "audio", "codec_name": "aac"},
            ],
        }
        with patch("renderqueue.utils.ffmpeg.get_video_info", return_value=raw):
            info = probe_media("clip.mp4")

        assert info.duration == pytest.approx(10.01)
        assert info.fps == pytest.approx(23.976, abs=0.001)
        assert info.has_audio
        assert info.width == 1920
        assert info.expected_frame_count == 240

    def test_probe_media_without_audio(self):
        """Test a silent clip."""
        raw = {
            "format": {},
            "streams": [{"codec_type": "video", "r_frame_rate": "30/1", "duration": "2.0"}],
        }
        with patch("renderqueue.utils.ffmpeg.get_video_info", return_value=raw):
            info = probe_media("clip.mp4")

        assert info.duration == 2.0
        assert not info.has_audio
        assert info.audio_codec is None

    def test_missing_ffprobe(self, tmp_path):
        """Test that a missing ffprobe becomes a BackendError."""
        with pytest.raises(BackendError):
            get_video_info("clip.mp4", ffprobe_path=str(tmp_path / "no-ffprobe"))

    def test_count_frames(self, tmp_path):
        """Test that only PNG files are counted."""
        for name in ("000001.png", "000002.PNG", "notes.txt"):
            (tmp_path / name).write_bytes(b"x")

        assert count_frames(tmp_path) == 2
        assert count_frames(tmp_path / "missing") == 0

    def test_progress_line_parsers(self):
        """Test ffmpeg stats parsing."""
        line = "frame= 1234 fps= 60 q=28.0 size= 2048kB time=00:01:02.50 bitrate=268.4kbits/s"

        assert parse_progress_frame(line) == 1234
        assert parse_progress_time(line) == pytest.approx(62.5)
        assert parse_progress_time("Press [q] to stop") is None
