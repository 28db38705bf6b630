
# EventDetector: turns successive full snapshots into discrete change events.

# The remote API never reports transitions, only the current state of every
# run, job and step. We keep the last observed snapshot of each entity in
# memory and compare. The maps live as long as the process and are never
# persisted: after a restart every entity is a first sighting, classified by
# its current status alone.

from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

from .models import COMPLETED, IN_PROGRESS, QUEUED, Event, EventKind, Job, Run, Step
from .utils import utcnow

log = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(hours=1)

StepKey = Tuple[int, str]


def _duration(start: datetime | None, end: datetime | None) -> timedelta | None:
    if start is None or end is None:
        return None
    return end - start


class EventDetector:
    """
    Compares the current runs and their jobs against what was observed on
    the previous pass.

    First sighting   -> one event for the current phase (queued, started or
                        completed), never the phases it raced through.
    Seen before      -> edge-triggered on queued->in_progress and
                        anything->completed.

    Entries not refreshed for longer than `staleness` are forgotten, so an id
    that reappears later is simply a first sighting again.
    """

    def __init__(
        self,
        repository: str,
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.staleness = staleness
        self._clock = clock

        self._runs: Dict[int, Run] = {}
        self._jobs: Dict[int, Job] = {}
        self._steps: Dict[StepKey, Step] = {}

        self._run_seen: Dict[int, datetime] = {}
        self._job_seen: Dict[int, datetime] = {}
        self._step_seen: Dict[StepKey, datetime] = {}

    def detect(self, runs: Sequence[Run], jobs_by_run: Mapping[int, Sequence[Job]]) -> List[Event]:
        now = self._clock()
        events: List[Event] = []

        for run in runs:
            events.extend(self._detect_run(run, self._runs.get(run.id)))
            for job in jobs_by_run.get(run.id, ()):
                events.extend(self._detect_job(run, job, self._jobs.get(job.id), now))
                for step in job.steps:
                    key = (job.id, step.name)
                    events.extend(self._detect_step(run, job, step, self._steps.get(key), now))
                    self._steps[key] = step
                    self._step_seen[key] = now
                self._jobs[job.id] = job
                self._job_seen[job.id] = now
            self._runs[run.id] = run
            self._run_seen[run.id] = now

        self._collect_stale(now)
        return events

    def tracked_counts(self) -> Tuple[int, int, int]:
        """(runs, jobs, steps) currently held in memory."""
        return len(self._runs), len(self._jobs), len(self._steps)

    # ── per-level comparison ────────────────────────────────────────────────

    def _detect_run(self, cur: Run, prev: Optional[Run]) -> List[Event]:
        if prev is None:
            if cur.status == QUEUED:
                return [self._event(EventKind.RUN_QUEUED, cur.updated_at, cur)]
            if cur.status == IN_PROGRESS:
                return [self._event(EventKind.RUN_STARTED, cur.updated_at, cur)]
            if cur.status == COMPLETED and cur.concluded_at is not None:
                # start was never observed, so no duration
                return [self._event(EventKind.RUN_COMPLETED, cur.concluded_at, cur, conclusion=cur.conclusion)]
            return []

        events: List[Event] = []
        if prev.status == QUEUED and cur.status == IN_PROGRESS:
            events.append(self._event(EventKind.RUN_STARTED, cur.updated_at, cur))
        if prev.status != COMPLETED and cur.status == COMPLETED:
            events.append(self._event(
                EventKind.RUN_COMPLETED, cur.concluded_at or cur.updated_at, cur, conclusion=cur.conclusion,
            ))
        return events

    def _detect_job(self, run: Run, cur: Job, prev: Optional[Job], now: datetime) -> List[Event]:
        if prev is None:
            if cur.status == QUEUED:
                # the API never reports when a job was queued
                return [self._event(EventKind.JOB_QUEUED, now, run, job=cur.name)]
            if cur.status == IN_PROGRESS:
                return [self._event(EventKind.JOB_STARTED, cur.started_at or now, run, job=cur.name)]
            if cur.status == COMPLETED and cur.completed_at is not None:
                return [self._completed(EventKind.JOB_COMPLETED, run, cur, cur.completed_at, job=cur.name)]
            return []

        events: List[Event] = []
        if prev.status == QUEUED and cur.status == IN_PROGRESS:
            events.append(self._event(EventKind.JOB_STARTED, cur.started_at or now, run, job=cur.name))
        if prev.status != COMPLETED and cur.status == COMPLETED:
            events.append(self._completed(EventKind.JOB_COMPLETED, run, cur, cur.completed_at or now, job=cur.name))
        return events

    def _detect_step(self, run: Run, job: Job, cur: Step, prev: Optional[Step], now: datetime) -> List[Event]:
        if prev is None:
            if cur.status == IN_PROGRESS:
                return [self._event(EventKind.STEP_STARTED, cur.started_at or now, run, job=job.name, step=cur.name)]
            if cur.status == COMPLETED and cur.completed_at is not None:
                return [self._completed(EventKind.STEP_COMPLETED, run, cur, cur.completed_at, job=job.name, step=cur.name)]
            return []

        events: List[Event] = []
        if prev.status == QUEUED and cur.status == IN_PROGRESS:
            events.append(self._event(EventKind.STEP_STARTED, cur.started_at or now, run, job=job.name, step=cur.name))
        if prev.status != COMPLETED and cur.status == COMPLETED:
            events.append(self._completed(
                EventKind.STEP_COMPLETED, run, cur, cur.completed_at or now, job=job.name, step=cur.name,
            ))
        return events

    # ── helpers ─────────────────────────────────────────────────────────────

    def _event(
        self,
        kind: EventKind,
        ts: datetime,
        run: Run,
        *,
        job: str | None = None,
        step: str | None = None,
        conclusion: str | None = None,
        duration: timedelta | None = None,
    ) -> Event:
        return Event(
            kind=kind, timestamp=ts, repository=self.repository, branch=run.head_branch, sha=run.head_sha,
            run_name=run.name, job_name=job, step_name=step, conclusion=conclusion, duration=duration,
        )

    def _completed(self, kind: EventKind, run: Run, entity: Job | Step, ts: datetime, **names: str) -> Event:
        return self._event(
            kind, ts, run, conclusion=entity.conclusion,
            duration=_duration(entity.started_at, entity.completed_at), **names,
        )

    def _collect_stale(self, now: datetime) -> None:
        dropped = (
            _drop_stale(self._runs, self._run_seen, now, self.staleness)
            + _drop_stale(self._jobs, self._job_seen, now, self.staleness)
            + _drop_stale(self._steps, self._step_seen, now, self.staleness)
        )
        if dropped:
            log.debug("Dropped %d stale tracking entr%s for %s", dropped, "y" if dropped == 1 else "ies", self.repository)


def _drop_stale(
    observed: Dict[Hashable, object], seen: Dict[Hashable, datetime], now: datetime, staleness: timedelta
) -> int:
    stale = [key for key, ts in seen.items() if now - ts > staleness]
    for key in stale:
        seen.pop(key, None)
        observed.pop(key, None)
    return len(stale)
