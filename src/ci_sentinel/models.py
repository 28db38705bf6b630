from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from .utils import epoch_ms


QUEUED = "queued"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"


class EventKind(str, Enum):
    RUN_QUEUED = "RUN_QUEUED"
    RUN_STARTED = "RUN_STARTED"
    RUN_COMPLETED = "RUN_COMPLETED"
    JOB_QUEUED = "JOB_QUEUED"
    JOB_STARTED = "JOB_STARTED"
    JOB_COMPLETED = "JOB_COMPLETED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"


@dataclass(frozen=True)
class Step:
    name: str
    status: str
    conclusion: Optional[str] = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class Job:
    id: int
    run_id: int
    name: str
    status: str
    conclusion: Optional[str] = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    steps: Tuple[Step, ...] = ()


@dataclass(frozen=True)
class Run:
    id: int
    name: str
    status: str
    head_branch: str
    head_sha: str
    updated_at: datetime
    conclusion: Optional[str] = None
    concluded_at: datetime | None = None


@dataclass(frozen=True)
class Event:
    """
    One self-contained "something changed" fact.

    Fields not meaningful for the kind are None: run events carry no job or
    step name, only *_COMPLETED events carry a conclusion, and duration is
    present only when both ends of the interval were reported.
    """
    kind: EventKind
    timestamp: datetime
    repository: str
    branch: str
    sha: str
    run_name: str
    job_name: Optional[str] = None
    step_name: Optional[str] = None
    conclusion: Optional[str] = None
    duration: timedelta | None = None


_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def _escape(name: str) -> str:
    # every non-alphanumeric char becomes ~<hex>~, so "_" only ever separates parts
    return _NON_ALNUM.sub(lambda m: f"~{ord(m.group()):x}~", name)


def fingerprint(event: Event) -> str:
    # KIND_run[_job][_step]_millis
    parts = [event.kind.value, _escape(event.run_name)]
    if event.job_name is not None:
        parts.append(_escape(event.job_name))
    if event.step_name is not None:
        parts.append(_escape(event.step_name))
    parts.append(str(epoch_ms(event.timestamp)))
    return "_".join(parts)
