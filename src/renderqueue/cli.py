"""
renderqueue CLI - durable render job queue
Command-line interface for queueing, inspecting and running render jobs.
"""

import argparse
import dataclasses
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeRemainingColumn
from rich.table import Table

from . import __version__
from .config import ConfigFileManager, QueueConfig, load_config
from .core.events import Event, RenderProgressEvent
from .core.types import (
    RenderJob,
    RenderJobStatus,
    RenderType,
    format_size,
    frames_to_timecode,
)
from .exceptions import RenderQueueError
from .pipeline.settings import RenderSettings
from .scheduler.service import RenderQueueService
from .utils.logging import configure_from_cli, get_logger

STATUS_STYLES = {
    RenderJobStatus.PENDING: "cyan",
    RenderJobStatus.RUNNING: "bold blue",
    RenderJobStatus.PAUSED: "yellow",
    RenderJobStatus.COMPLETED: "green",
    RenderJobStatus.FAILED: "red",
    RenderJobStatus.CANCELLED: "dim",
    RenderJobStatus.DEAD_LETTER: "bold red",
}

console = Console()
err_console = Console(stderr=True)
logger = get_logger("cli")


def _status_text(status: RenderJobStatus) -> str:
    return f"[{STATUS_STYLES[status]}]{status.value}[/]"


def _resolve_job(service: RenderQueueService, job_id: str) -> RenderJob:
    """Find a job by full id or unique prefix."""
    job = service.get_job(job_id)
    if job is not None:
        return job
    matches = [j for j in service.get_all_jobs() if j.job_id.startswith(job_id)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise RenderQueueError(f"No job matches '{job_id}'")
    raise RenderQueueError(f"'{job_id}' matches {len(matches)} jobs, use a longer prefix")


def _read_settings(value: Optional[str]) -> str:
    """``--settings`` accepts inline JSON or ``@path`` to a JSON file."""
    if not value:
        return "{}"
    if value.startswith("@"):
        return Path(value[1:]).expanduser().read_text(encoding="utf-8")
    return value


def jobs_table(jobs: List[RenderJob], title: str = "Render jobs") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Source")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Created")
    for job in jobs:
        kind = job.render_type.value + (" (2-stage)" if job.is_two_stage else "")
        table.add_row(
            job.job_id[:8],
            job.display_name,
            kind,
            _status_text(job.status),
            f"{job.progress_percentage:.1f}%",
            f"{job.retry_count}/{job.max_retries}",
            job.created_at[:19].replace("T", " "),
        )
    return table


def job_detail_table(job: RenderJob) -> Table:
    table = Table(title=f"Job {job.job_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    rows = [
        ("Status", _status_text(job.status)),
        ("Type", job.render_type.value),
        ("Two-stage", "yes" if job.is_two_stage else "no"),
        ("Source", job.source_path),
        ("Output", job.output_path),
        ("Intermediate", job.intermediate_path or "-"),
        ("Progress", f"{job.progress_percentage:.1f}% (frame {job.current_frame})"),
        ("Retries", f"{job.retry_count}/{job.max_retries}"),
        ("Created", job.created_at),
        ("Started", job.started_at or "-"),
        ("Completed", job.completed_at or "-"),
        ("Output size", format_size(job.output_file_size_bytes)),
        ("Intermediate size", format_size(job.intermediate_file_size_bytes)),
    ]
    if job.in_point is not None or job.out_point is not None:
        start = frames_to_timecode(job.in_point or 0, job.frame_rate)
        end = frames_to_timecode(job.out_point, job.frame_rate) if job.out_point is not None else "end"
        rows.append(("Range", f"{start} - {end}"))
    if job.selected_video_tracks or job.selected_audio_tracks:
        rows.append(("Tracks", f"video {job.selected_video_tracks or 'all'}, "
                               f"audio {job.selected_audio_tracks or 'all'}"))
    if job.has_ownership:
        rows.append(("Owner", f"pid {job.process_id} on {job.machine_name}"))
    if job.last_error:
        rows.append(("Last error", f"[red]{job.last_error}[/]"))
    for field, value in rows:
        table.add_row(field, value)
    return table


# Commands

def cmd_add(service: RenderQueueService, args: argparse.Namespace) -> int:
    settings = _read_settings(args.settings)
    RenderSettings.from_json(settings)
    job = RenderJob.create(
        str(Path(args.source).expanduser().resolve()),
        str(Path(args.output).expanduser().resolve()),
        RenderType(args.type),
        render_settings=settings,
        is_two_stage=args.two_stage,
        intermediate_path=args.intermediate,
        selected_video_tracks=args.video_tracks,
        selected_audio_tracks=args.audio_tracks,
        in_point=args.in_point,
        out_point=args.out_point,
        frame_rate=args.frame_rate,
        max_retries=args.max_retries if args.max_retries is not None else service.config.max_retries,
    )
    if not service.enqueue(job):
        err_console.print(f"[red]Could not queue {job.display_name}[/]")
        return 1
    console.print(f"Queued [bold]{job.job_id}[/] ({job.display_name})")
    return 0


def cmd_list(service: RenderQueueService, args: argparse.Namespace) -> int:
    if args.status:
        jobs = service.store.get_by_status(RenderJobStatus(args.status), newest_first=True)
    else:
        jobs = service.get_all_jobs()
    if not jobs:
        console.print("No jobs.")
        return 0
    console.print(jobs_table(jobs))
    return 0


def cmd_show(service: RenderQueueService, args: argparse.Namespace) -> int:
    job = _resolve_job(service, args.job_id)
    console.print(job_detail_table(job))
    if args.trace and job.error_stack_trace:
        console.print(job.error_stack_trace, highlight=False)
    return 0


def cmd_stats(service: RenderQueueService, args: argparse.Namespace) -> int:
    stats = service.get_statistics()
    table = Table(title=stats.status_summary())
    table.add_column("Status")
    table.add_column("Jobs", justify="right")
    for status in RenderJobStatus:
        table.add_row(_status_text(status), str(getattr(stats, f"{status.value}_count")))
    table.add_row("[bold]total[/]", f"[bold]{stats.total_count}[/]")
    console.print(table)
    return 0


def _control(action: str):
    def command(service: RenderQueueService, args: argparse.Namespace) -> int:
        job = _resolve_job(service, args.job_id)
        ok = getattr(service, f"{action}_job")(job.job_id)
        if not ok:
            err_console.print(
                f"[yellow]Cannot {action} job {job.job_id} in status {job.status.value}[/]"
            )
            return 1
        console.print(f"Job {job.job_id}: {action} ok")
        return 0

    return command


def cmd_clear(service: RenderQueueService, args: argparse.Namespace) -> int:
    count = service.clear_finished_jobs()
    console.print(f"Removed {count} finished job(s)")
    return 0


def cmd_run(service: RenderQueueService, args: argparse.Namespace) -> int:
    """Run the scheduler in the foreground with live progress bars."""
    tasks: Dict[str, TaskID] = {}

    with Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        TextColumn("{task.fields[stage]}"),
        TimeRemainingColumn(),
        console=console,
    ) as progress:

        def on_progress(event: Event) -> None:
            if not isinstance(event, RenderProgressEvent):
                return
            task = tasks.get(event.job_id)
            if task is None:
                task = progress.add_task(event.job_id[:8], total=100.0, stage="")
                tasks[event.job_id] = task
            progress.update(task, completed=event.progress_percentage, stage=event.stage or "")

        def on_status(event: Event) -> None:
            if not isinstance(event, RenderProgressEvent):
                return
            reason = f" ({event.reason})" if event.reason else ""
            progress.console.print(f"{event.job_id[:8]} {_status_text(event.status)}{reason}")
            if event.error_message and event.status in (
                RenderJobStatus.FAILED, RenderJobStatus.DEAD_LETTER
            ):
                progress.console.print(f"  [red]{event.error_message}[/]")
            if event.status != RenderJobStatus.RUNNING and event.job_id in tasks:
                progress.remove_task(tasks.pop(event.job_id))

        service.subscribe_progress(on_progress)
        service.subscribe_status(on_status)
        service.start()
        service.start_queue()
        try:
            while True:
                if args.until_idle and service.is_idle():
                    break
                time.sleep(0.5)
        except KeyboardInterrupt:
            progress.console.print("[yellow]Stopping, running jobs will be cancelled[/]")
        finally:
            service.stop()

    console.print(service.get_statistics().status_summary())
    return 0


def cmd_config(config: QueueConfig, args: argparse.Namespace) -> int:
    if args.config_action == "init":
        path = ConfigFileManager().init_config("project" if args.project else "user")
        console.print(f"Wrote {path}")
    else:
        console.print(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="renderqueue",
        description="renderqueue - durable render job queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Queue an MLT project render
  renderqueue add project.mlt out.mp4

  # Render a project, then interpolate the result to double frame rate
  renderqueue add project.mlt smooth.mp4 --type interpolation --two-stage

  # Interpolate a video with custom settings
  renderqueue add clip.mp4 clip_60.mp4 --type interpolation --settings '{"rife": {"multiplier": 2}}'

  # Process everything in the queue, then exit
  renderqueue run --until-idle
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, help="Configuration file (YAML)")
    parser.add_argument("--db", type=str, help="Job database path (overrides config)")
    parser.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-format", type=str, default=None, choices=["text", "json"])
    parser.add_argument("--log-file", type=str, default=None)

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_parser = subparsers.add_parser("add", help="Queue a render job")
    add_parser.add_argument("source", help="MLT project or source video")
    add_parser.add_argument("output", help="Output video path")
    add_parser.add_argument("--type", choices=[t.value for t in RenderType],
                            default=RenderType.PROJECT_RENDER.value)
    add_parser.add_argument("--two-stage", action="store_true",
                            help="Render the project to an intermediate file before interpolating")
    add_parser.add_argument("--intermediate", type=str, default=None,
                            help="Intermediate file for two-stage jobs")
    add_parser.add_argument("--video-tracks", type=str, default=None,
                            help="Comma-separated 0-based video track indices to render")
    add_parser.add_argument("--audio-tracks", type=str, default=None,
                            help="Comma-separated 0-based audio track indices to render")
    add_parser.add_argument("--in", dest="in_point", type=int, default=None, help="First frame")
    add_parser.add_argument("--out", dest="out_point", type=int, default=None, help="Last frame")
    add_parser.add_argument("--frame-rate", type=float, default=30.0)
    add_parser.add_argument("--settings", type=str, default=None,
                            help="Render settings as JSON, or @file.json")
    add_parser.add_argument("--max-retries", type=int, default=None)
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", help="List jobs")
    list_parser.add_argument("--status", choices=[s.value for s in RenderJobStatus])
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Show one job")
    show_parser.add_argument("job_id")
    show_parser.add_argument("--trace", action="store_true", help="Print the last stack trace")
    show_parser.set_defaults(func=cmd_show)

    stats_parser = subparsers.add_parser("stats", help="Queue statistics")
    stats_parser.set_defaults(func=cmd_stats)

    for action, help_text in (
        ("cancel", "Cancel a job"),
        ("retry", "Requeue a failed or dead-lettered job"),
        ("delete", "Delete a job that is not running"),
    ):
        control_parser = subparsers.add_parser(action, help=help_text)
        control_parser.add_argument("job_id")
        control_parser.set_defaults(func=_control(action))

    clear_parser = subparsers.add_parser("clear", help="Delete completed, cancelled and dead-lettered jobs")
    clear_parser.set_defaults(func=cmd_clear)

    run_parser = subparsers.add_parser("run", help="Run the scheduler in the foreground")
    run_parser.add_argument("--until-idle", action="store_true",
                            help="Exit once no job is pending, running or waiting to retry")
    run_parser.add_argument("--concurrency", type=int, default=None,
                            help="Maximum concurrent renders (overrides config)")
    run_parser.set_defaults(func=cmd_run)

    config_parser = subparsers.add_parser("config", help="Show or create configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_action")
    config_subparsers.add_parser("show", help="Print the effective configuration")
    init_parser = config_subparsers.add_parser("init", help="Create a default config file")
    init_parser.add_argument("--project", action="store_true",
                             help="Write ./.renderqueue.yaml instead of the user file")
    config_parser.set_defaults(func=cmd_config)

    return parser


def build_config(args: argparse.Namespace) -> QueueConfig:
    config = load_config(args.config)
    overrides = {}
    if args.db:
        overrides["database_path"] = args.db
    if getattr(args, "concurrency", None):
        overrides["max_concurrent_renders"] = args.concurrency
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    service: Optional[RenderQueueService] = None
    try:
        config = build_config(args)
        configure_from_cli(
            log_level=args.log_level,
            log_format=args.log_format,
            log_file=args.log_file,
            base=config.logging,
        )
        if args.command == "config":
            return cmd_config(config, args)

        service = RenderQueueService(config)
        return args.func(service, args)
    except KeyboardInterrupt:
        err_console.print("[yellow]Operation cancelled by user[/]")
        return 1
    except (RenderQueueError, OSError, ValueError) as e:
        logger.debug(f"Command {args.command} failed", exc_info=True, command=args.command)
        err_console.print(f"[red]Error:[/] {e}")
        return 1
    finally:
        if service is not None:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
