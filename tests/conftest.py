from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest

from ci_sentinel.models import Job, Run, Step

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_run(id: int = 1, status: str = "queued", conclusion: str | None = None, updated: float = 0,
             concluded: float | None = None, name: str = "CI") -> Run:
    return Run(id=id, name=name, status=status, head_branch="main", head_sha="abcdef1234567890",
               updated_at=at(updated), conclusion=conclusion,
               concluded_at=at(concluded) if concluded is not None else None)


def make_job(id: int = 10, run_id: int = 1, status: str = "queued", conclusion: str | None = None,
             started: float | None = None, completed: float | None = None, steps: tuple = (),
             name: str = "build") -> Job:
    return Job(id=id, run_id=run_id, name=name, status=status, conclusion=conclusion,
               started_at=at(started) if started is not None else None,
               completed_at=at(completed) if completed is not None else None, steps=steps)


def make_step(name: str = "compile", status: str = "queued", conclusion: str | None = None,
              started: float | None = None, completed: float | None = None) -> Step:
    return Step(name=name, status=status, conclusion=conclusion,
                started_at=at(started) if started is not None else None,
                completed_at=at(completed) if completed is not None else None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
