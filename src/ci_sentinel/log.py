from __future__ import annotations
import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(verbose: bool = False, color: bool = True) -> None:
    """Route all logging to stderr through rich; stdout carries only events."""
    handler = RichHandler(
        console=Console(stderr=True, no_color=not color),
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
        log_time_format="%Y-%m-%dT%H:%M:%S",
    )
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    # request lines from httpx are noise at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
