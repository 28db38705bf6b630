from __future__ import annotations
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from .detector import DEFAULT_STALENESS
from .providers.github_api import API_BASE
from .state import DEFAULT_STATE_FILE
from .utils import parse_repository


POLL_INTERVAL_SECONDS = 30.0
REQUEST_TIMEOUT_SECONDS = 10.0


class MissingTokenError(ValueError): ...


def _env_seconds(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


@dataclass(frozen=True)
class Settings:
    repository: str
    owner: str
    repo: str
    token: str = field(repr=False)
    poll_interval: float = POLL_INTERVAL_SECONDS
    staleness: timedelta = DEFAULT_STALENESS
    state_file: Path = Path(DEFAULT_STATE_FILE)
    timeout: float = REQUEST_TIMEOUT_SECONDS
    api_base: str = API_BASE

    @classmethod
    def build(
        cls,
        repository: str,
        token: str | None = None,
        *,
        poll_interval: float | None = None,
        state_file: str | Path | None = None,
        timeout: float | None = None,
    ) -> "Settings":
        """
        Resolve settings from explicit values, then environment (.env is loaded
        first), then defaults.

        Environment: GITHUB_TOKEN, SENTINEL_POLL_INTERVAL, SENTINEL_STATE_FILE,
        SENTINEL_STALENESS_SECONDS, GITHUB_API_URL.

        Raises MissingTokenError without a token and ValueError for a malformed
        repository or a non-numeric or non-positive interval.
        """
        load_dotenv(find_dotenv(usecwd=True))
        parsed = parse_repository(repository)
        token = (token or os.getenv("GITHUB_TOKEN") or "").strip()
        if not token:
            raise MissingTokenError("Missing GitHub token. Set --token or GITHUB_TOKEN env.")
        if poll_interval is None:
            interval = _env_seconds("SENTINEL_POLL_INTERVAL", POLL_INTERVAL_SECONDS)
        elif poll_interval <= 0:
            raise ValueError(f"--interval must be positive (got {poll_interval:g})")
        else:
            interval = poll_interval
        staleness = timedelta(seconds=_env_seconds("SENTINEL_STALENESS_SECONDS", DEFAULT_STALENESS.total_seconds()))
        return cls(
            repository=parsed.full_name,
            owner=parsed.owner,
            repo=parsed.repo,
            token=token,
            poll_interval=interval,
            staleness=staleness,
            state_file=Path(state_file or os.getenv("SENTINEL_STATE_FILE", DEFAULT_STATE_FILE)),
            timeout=timeout if timeout is not None else REQUEST_TIMEOUT_SECONDS,
            api_base=os.getenv("GITHUB_API_URL", API_BASE),
        )
