from __future__ import annotations
import json
from rich.console import Console
from rich.markup import escape
from .models import Event, EventKind
from .utils import dt_to_iso, format_duration


SHA_DISPLAY_LENGTH = 7

_KIND_STYLE = {
    EventKind.RUN_QUEUED: "dim",
    EventKind.JOB_QUEUED: "dim",
    EventKind.RUN_STARTED: "cyan",
    EventKind.JOB_STARTED: "cyan",
    EventKind.STEP_STARTED: "cyan",
}

_CONCLUSION_STYLE = {
    "success": "green",
    "failure": "red",
    "cancelled": "yellow",
    "timed_out": "red",
    "skipped": "dim",
}


def format_event(e: Event) -> str:
    """
    One line per event, e.g.

        [2024-01-01T12:00:00Z] [JOB_COMPLETED] [SUCCESS] repo:o/r branch:main sha:abc1234 workflow:"CI" job:build - Duration: 2m 30s
    """
    parts = [f"[{dt_to_iso(e.timestamp)}]", f"[{e.kind.value}]"]
    if e.conclusion:
        parts.append(f"[{e.conclusion.upper()}]")
    parts.append(f"repo:{e.repository}")
    if e.branch:
        parts.append(f"branch:{e.branch}")
    if e.sha:
        parts.append(f"sha:{e.sha[:SHA_DISPLAY_LENGTH]}")
    parts.append(f'workflow:"{e.run_name}"')
    if e.job_name is not None:
        parts.append(f"job:{e.job_name}")
    if e.step_name is not None:
        parts.append(f"step:{e.step_name}")
    if e.duration is not None:
        parts.append(f"- Duration: {format_duration(e.duration)}")
    return " ".join(parts)


def event_to_json(e: Event) -> str:
    return json.dumps({
        "kind": e.kind.value,
        "timestamp": dt_to_iso(e.timestamp),
        "repository": e.repository,
        "branch": e.branch,
        "sha": e.sha,
        "workflow": e.run_name,
        "job": e.job_name,
        "step": e.step_name,
        "conclusion": e.conclusion,
        "duration_s": e.duration.total_seconds() if e.duration is not None else None,
    })


class ConsoleEmitter:
    """Prints each event on stdout. Logs go to stderr, so stdout stays pipeable."""

    def __init__(self, console: Console | None = None, color: bool = True, as_json: bool = False):
        self.console = console or Console(no_color=not color, highlight=False, soft_wrap=True)
        self.color = color
        self.as_json = as_json

    def __call__(self, e: Event) -> None:
        if self.as_json:
            self.console.print(event_to_json(e), markup=False)
            return
        line = escape(format_event(e))
        style = _CONCLUSION_STYLE.get((e.conclusion or "").lower()) or _KIND_STYLE.get(e.kind)
        if self.color and style:
            line = f"[{style}]{line}[/{style}]"
        self.console.print(line)
