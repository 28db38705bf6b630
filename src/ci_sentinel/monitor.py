
# WorkflowMonitor: the poll loop for one repository.

# Each cycle:
#   fetch runs since the catch-up point -> fetch jobs per run (sequential)
#   -> detect events -> drop already-emitted fingerprints -> emit
#   -> advance the catch-up point and persist (even when nothing happened)
#
# Every cycle resolves to one CycleOutcome and each outcome maps to one action:
#   SUCCESS      -> sleep, continue
#   RECOVERABLE  -> warn, sleep, continue
#   FATAL        -> explain, stop (the CLI exits non-zero)
#   CANCELLED    -> stop, no further I/O

from __future__ import annotations
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .config import Settings
from .detector import EventDetector
from .models import Event, Job, fingerprint
from .providers.base import RunSource
from .providers.github_api import (
    GitHubAuthError,
    GitHubNotFoundError,
    GitHubRateLimitError,
    GitHubTimeoutError,
)
from .state import StateStore
from .utils import dt_to_iso, format_duration, utcnow

log = logging.getLogger(__name__)

Emitter = Callable[[Event], Union[None, Awaitable[Any]]]


class CycleOutcome(Enum):
    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
    CANCELLED = "cancelled"


class MonitorCancelled(Exception):
    """Raised inside a cycle once stop() has been observed."""


@dataclass
class MonitorStats:
    cycles: int = 0
    events_emitted: int = 0
    elapsed: timedelta = timedelta(0)
    fatal_error: Optional[str] = None


class WorkflowMonitor:

    def __init__(
        self,
        source: RunSource,
        store: StateStore,
        detector: EventDetector,
        emit: Emitter,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.source = source
        self.store = store
        self.detector = detector
        self.settings = settings
        self.stats = MonitorStats()
        self._emit = emit
        self._clock = clock
        self._stop = asyncio.Event()
        # detected but not yet delivered; the detector will not report them again
        self._pending: List[Event] = []

    @property
    def repository(self) -> str:
        return self.settings.repository

    def stop(self) -> None:
        """Request shutdown. Wakes a pending sleep; an in-flight cycle stops before its next fetch."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def initialize(self) -> datetime:
        """Return the catch-up point, creating it (= now) on the very first run."""
        last = self.store.last_check_time(self.repository)
        if last is None:
            last = self._clock()
            self.store.set_last_check_time(self.repository, last)
            self.store.persist()
            log.info("First run for %s. Only events from now on will be reported.", self.repository)
        else:
            log.info("Previous run detected for %s. Catching up on events since %s.", self.repository, dt_to_iso(last))
        return last

    async def run(self) -> MonitorStats:
        started = time.monotonic()
        log.info("Monitoring %s every %ss. Press Ctrl+C to stop.", self.repository, self.settings.poll_interval)
        try:
            self.initialize()
            while not self.stopping:
                outcome = await self.run_cycle()
                if outcome in (CycleOutcome.FATAL, CycleOutcome.CANCELLED):
                    break
                if await self._sleep():
                    break
        finally:
            self.stats.elapsed = timedelta(seconds=time.monotonic() - started)
            log.info(
                "Monitoring stopped: %d poll cycle(s), %d event(s) emitted, %s elapsed.",
                self.stats.cycles, self.stats.events_emitted, format_duration(self.stats.elapsed),
            )
        return self.stats

    async def run_cycle(self) -> CycleOutcome:
        self.stats.cycles += 1
        try:
            await self.poll_once()
            return CycleOutcome.SUCCESS
        except MonitorCancelled:
            return CycleOutcome.CANCELLED
        except GitHubAuthError as exc:
            self.stats.fatal_error = str(exc)
            log.error(
                "Authentication failed for %s: %s Create a token with the actions:read scope "
                "and pass it via --token or GITHUB_TOKEN.", self.repository, exc,
            )
            return CycleOutcome.FATAL
        except GitHubNotFoundError as exc:
            self.stats.fatal_error = str(exc)
            log.error(
                "Repository %s was not found: %s Check the --repo spelling and that the token "
                "can read this repository.", self.repository, exc,
            )
            return CycleOutcome.FATAL
        except GitHubRateLimitError as exc:
            log.warning("Rate limited or forbidden, retrying in %ss: %s", self.settings.poll_interval, exc)
        except GitHubTimeoutError as exc:
            log.warning("Timed out talking to GitHub, retrying in %ss: %s", self.settings.poll_interval, exc)
        except Exception as exc:
            log.warning("Poll failed, retrying in %ss: %s", self.settings.poll_interval, exc)
        return CycleOutcome.RECOVERABLE

    async def poll_once(self) -> int:
        """One fetch -> detect -> dedupe -> emit -> persist pass. Returns the number of events emitted."""
        s = self.settings
        since = self.store.last_check_time(self.repository) or self._clock()

        self._check_stop()
        runs = await self.source.list_runs(s.owner, s.repo, since)
        jobs_by_run: Dict[int, List[Job]] = {}
        for run in runs:
            self._check_stop()
            jobs_by_run[run.id] = await self.source.list_jobs(s.owner, s.repo, run.id)
        self._check_stop()

        events = self._pending + self.detector.detect(runs, jobs_by_run)
        self._pending = []
        seen = self.store.seen_fingerprints(self.repository)
        emitted = 0
        for i, event in enumerate(events):
            fp = fingerprint(event)
            if fp in seen:
                log.debug("Skipping already emitted %s", fp)
                continue
            try:
                result = self._emit(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._pending = events[i:]
                log.debug("Delivery failed at %s, %d event(s) kept for the next cycle", fp, len(self._pending))
                self.store.persist()
                raise
            self.store.mark_seen(self.repository, fp)
            seen.add(fp)
            emitted += 1
            self.stats.events_emitted += 1

        self.store.set_last_check_time(self.repository, self._clock())
        self.store.persist()
        if emitted:
            log.debug("%d new event(s) for %s", emitted, self.repository)
        return emitted

    def _check_stop(self) -> None:
        if self.stopping:
            raise MonitorCancelled()

    async def _sleep(self) -> bool:
        """Wait one poll interval. Returns True when stop() interrupted the wait."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.settings.poll_interval)
            return True
        except asyncio.TimeoutError:
            return False

