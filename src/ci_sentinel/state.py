
# StateStore: what we have already told the user, per repository.

# Layout of the JSON file (kept stable so restarts stay compatible):
#
#   {
#     "owner/repo": {
#       "lastCheckTime": "2024-01-01T12:00:00Z",
#       "processedEventId": ["RUN_QUEUED_CI_1704110400000", ...]
#     }
#   }
#
# Fingerprints are kept in insertion order and capped; the oldest go first.

from __future__ import annotations
import json
import logging
import os
import tempfile
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Set

from .utils import dt_to_iso, iso_to_dt

log = logging.getLogger(__name__)

DEFAULT_STATE_FILE = ".sentinel-state.json"
MAX_FINGERPRINTS = 1000

_LAST_CHECK = "lastCheckTime"
_FINGERPRINTS = "processedEventId"


@dataclass
class RepositoryState:
    last_check_time: Optional[datetime] = None
    # dict as an insertion-ordered set
    fingerprints: Dict[str, None] = field(default_factory=dict)

    def to_json(self) -> dict:
        return {
            _LAST_CHECK: dt_to_iso(self.last_check_time) if self.last_check_time else None,
            _FINGERPRINTS: list(self.fingerprints),
        }

    @classmethod
    def from_json(cls, data: dict) -> "RepositoryState":
        raw_ts = data.get(_LAST_CHECK)
        return cls(
            last_check_time=iso_to_dt(raw_ts) if raw_ts else None,
            fingerprints=dict.fromkeys(data.get(_FINGERPRINTS) or []),
        )


class StateStore:
    """
    Durable per-repository record of the catch-up timestamp and the
    fingerprints of events already emitted.

    Load and persist failures never propagate: an unreadable file behaves
    like a first run, and a failed save leaves the in-memory state in charge
    until the next persist() succeeds.
    """

    def __init__(self, path: str | Path = DEFAULT_STATE_FILE, max_fingerprints: int = MAX_FINGERPRINTS) -> None:
        self.path = Path(path)
        self.max_fingerprints = max_fingerprints
        self._states: Dict[str, RepositoryState] = {}
        self._load()

    def last_check_time(self, repository: str) -> Optional[datetime]:
        state = self._states.get(repository)
        return state.last_check_time if state else None

    def set_last_check_time(self, repository: str, ts: datetime) -> None:
        self._state(repository).last_check_time = ts

    def seen_fingerprints(self, repository: str) -> Set[str]:
        state = self._states.get(repository)
        return set(state.fingerprints) if state else set()

    def mark_seen(self, repository: str, fp: str) -> None:
        seen = self._state(repository).fingerprints
        seen[fp] = None
        overflow = len(seen) - self.max_fingerprints
        if overflow > 0:
            for old in list(seen)[:overflow]:
                del seen[old]

    def persist(self) -> bool:
        """Write every repository atomically (temp file + rename). Returns False on I/O failure."""
        payload = {repo: state.to_json() for repo, state in self._states.items()}
        directory = self.path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=directory, prefix=f".{self.path.name}.", suffix=".tmp", delete=False
            ) as fh:
                tmp_name = fh.name
                json.dump(payload, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            return True
        except OSError as exc:
            log.warning("Could not save state to %s: %s", self.path, exc)
            if tmp_name:
                with suppress(OSError):
                    os.unlink(tmp_name)
            return False

    def _state(self, repository: str) -> RepositoryState:
        return self._states.setdefault(repository, RepositoryState())

    def _load(self) -> None:
        if not self.path.exists():
            log.debug("No state file at %s, starting fresh", self.path)
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("top-level JSON value is not an object")
            self._states = {repo: RepositoryState.from_json(data or {}) for repo, data in raw.items()}
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            log.warning("Could not load state from %s (%s); treating as first run", self.path, exc)
            self._states = {}
