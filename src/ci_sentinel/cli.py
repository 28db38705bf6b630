from __future__ import annotations
import asyncio
import logging
import platform
import signal
from pathlib import Path
import typer
from rich.console import Console

from .config import MissingTokenError, Settings, POLL_INTERVAL_SECONDS, REQUEST_TIMEOUT_SECONDS
from .detector import EventDetector
from .log import configure_logging
from .monitor import MonitorStats, WorkflowMonitor
from .providers.github_api import GitHubClient
from .render import ConsoleEmitter
from .state import DEFAULT_STATE_FILE, StateStore


# SECURITY: This CLI tool is 100% read-only. It only performs GET requests
# against the GitHub Actions API. No modifications, creations, or deletions.
app = typer.Typer(help="CI Sentinel: watch a repository's GitHub Actions runs and print every state change once.")
console = Console(stderr=True)
log = logging.getLogger(__name__)


@app.callback()
def _root():
    """CI Sentinel."""


@app.command("watch")
def cmd_watch(
    repo: str = typer.Option(..., "--repo", "-r", help="Repository in format 'owner/repo'"),
    token: str | None = typer.Option(None, "--token", "-t", help="GitHub token (or env GITHUB_TOKEN)"),
    interval: float | None = typer.Option(None, "--interval", help=f"Seconds between polls (default {POLL_INTERVAL_SECONDS:g}, env SENTINEL_POLL_INTERVAL)"),
    state_file: Path | None = typer.Option(None, "--state-file", help=f"Where emitted events are remembered (default {DEFAULT_STATE_FILE})"),
    timeout: float = typer.Option(REQUEST_TIMEOUT_SECONDS, "--timeout", help="HTTP timeout seconds"),
    format_: str = typer.Option("text", "--format", help="text|json", case_sensitive=False),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    no_color: bool = typer.Option(False, "--no-color", help="Plain output (for CI logs)"),
):
    """Poll GitHub Actions for REPO and print one line per run/job/step transition."""
    configure_logging(verbose=verbose, color=not no_color)
    try:
        settings = Settings.build(repo, token, poll_interval=interval, state_file=state_file, timeout=timeout)
    except MissingTokenError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=10)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)

    emitter = ConsoleEmitter(color=not no_color, as_json=format_.lower() == "json")
    try:
        stats = asyncio.run(_watch(settings, emitter))
    except KeyboardInterrupt:
        # Windows: asyncio.run re-raises Ctrl+C after cancelling the main task
        return
    if stats.fatal_error:
        raise typer.Exit(code=1)


async def _watch(settings: Settings, emitter: ConsoleEmitter) -> MonitorStats:
    async with GitHubClient(token=settings.token, api_base=settings.api_base, timeout=settings.timeout) as gh:
        monitor = WorkflowMonitor(
            source=gh,
            store=StateStore(settings.state_file),
            detector=EventDetector(settings.repository, staleness=settings.staleness),
            emit=emitter,
            settings=settings,
        )

        if platform.system() != "Windows":
            loop = asyncio.get_running_loop()

            def _shutdown(sig: signal.Signals) -> None:
                log.info("Received %s, shutting down gracefully...", sig.name)
                monitor.stop()

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _shutdown, sig)

        return await monitor.run()


def main():
    app()


if __name__ == "__main__":
    main()
