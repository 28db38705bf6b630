from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass
class ParsedRepository:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repository(value: str) -> ParsedRepository:
    parts = (value or "").split("/")
    # owner/repo, nothing more
    if len(parts) != 2:
        raise ValueError(f"Repository must be in format 'owner/repo' (got {value!r})")
    owner, repo = parts[0].strip(), parts[1].strip()
    if not owner or not repo:
        raise ValueError("Repository owner and name cannot be empty")
    return ParsedRepository(owner=owner, repo=repo)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def iso_to_dt(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00")).astimezone(timezone.utc)


def iso_to_dt_or_none(s: str | None) -> datetime | None:
    return iso_to_dt(s) if s else None


def dt_to_iso(dt: datetime) -> str:
    """UTC ISO 8601 with a Z suffix, e.g. 2024-01-01T12:00:00.123000Z"""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_ms(dt: datetime) -> int:
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def format_duration(d: timedelta) -> str:
    """2m 30s, 1h 15m 45s, 45s. Zero renders as 0s."""
    total = max(int(d.total_seconds()), 0)
    h, rest = divmod(total, 3600)
    m, s = divmod(rest, 60)
    parts = []
    if h:
        parts.append(f"{h}h")
    if m:
        parts.append(f"{m}m")
    if s or not parts:
        parts.append(f"{s}s")
    return " ".join(parts)
