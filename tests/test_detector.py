from datetime import timedelta

from ci_sentinel.detector import EventDetector
from ci_sentinel.models import EventKind

from conftest import at, make_job, make_run, make_step


def kinds(events):
    return [e.kind for e in events]


def test_first_sighting_classifies_by_current_status(clock):
    d = EventDetector("o/r", clock=clock)
    events = d.detect([
        make_run(1, "queued", updated=1),
        make_run(2, "in_progress", updated=2),
        make_run(3, "completed", "failure", updated=3, concluded=3),
    ], {})
    assert kinds(events) == [EventKind.RUN_QUEUED, EventKind.RUN_STARTED, EventKind.RUN_COMPLETED]
    assert events[0].timestamp == at(1)
    assert events[2].conclusion == "failure"
    assert events[2].duration is None
    assert all(e.repository == "o/r" and e.branch == "main" for e in events)


def test_completed_run_without_conclusion_time_is_not_reported_on_first_sighting(clock):
    d = EventDetector("o/r", clock=clock)
    assert d.detect([make_run(1, "completed", "success", updated=5)], {}) == []


def test_run_transitions_are_edge_triggered(clock):
    d = EventDetector("o/r", clock=clock)
    d.detect([make_run(1, "queued")], {})

    started = d.detect([make_run(1, "in_progress", updated=10)], {})
    assert kinds(started) == [EventKind.RUN_STARTED]
    assert started[0].timestamp == at(10)

    # no conclusion time: falls back to updated_at
    done = d.detect([make_run(1, "completed", "success", updated=20)], {})
    assert kinds(done) == [EventKind.RUN_COMPLETED]
    assert done[0].timestamp == at(20)
    assert done[0].conclusion == "success"


def test_queued_straight_to_completed_emits_only_completion(clock):
    d = EventDetector("o/r", clock=clock)
    d.detect([make_run(1, "queued")], {})
    events = d.detect([make_run(1, "completed", "success", updated=30, concluded=29)], {})
    assert kinds(events) == [EventKind.RUN_COMPLETED]
    assert events[0].timestamp == at(29)


def test_unchanged_snapshot_yields_nothing_the_second_time(clock):
    d = EventDetector("o/r", clock=clock)
    run = make_run(1, "in_progress")
    job = make_job(10, status="in_progress", started=1, steps=(make_step("compile", "in_progress", started=2),))
    assert len(d.detect([run], {1: [job]})) == 3
    assert d.detect([run], {1: [job]}) == []


def test_job_queued_uses_fabricated_now(clock):
    d = EventDetector("o/r", clock=clock)
    clock.advance(minutes=5)
    events = d.detect([make_run(1, "queued")], {1: [make_job(10, status="queued")]})
    assert kinds(events) == [EventKind.RUN_QUEUED, EventKind.JOB_QUEUED]
    assert events[1].timestamp == clock.now
    assert events[1].job_name == "build"
    assert events[1].step_name is None


def test_job_lifecycle_with_duration(clock):
    d = EventDetector("o/r", clock=clock)
    run = make_run(1, "in_progress")
    d.detect([run], {1: [make_job(10, status="queued")]})

    started = d.detect([run], {1: [make_job(10, status="in_progress", started=5)]})
    assert kinds(started) == [EventKind.JOB_STARTED]
    assert started[0].timestamp == at(5)

    done = d.detect([run], {1: [make_job(10, status="completed", conclusion="success", started=5, completed=155)]})
    assert kinds(done) == [EventKind.JOB_COMPLETED]
    assert done[0].duration == timedelta(seconds=150)
    assert done[0].conclusion == "success"


def test_job_completed_without_start_time_omits_duration(clock):
    d = EventDetector("o/r", clock=clock)
    run = make_run(1, "in_progress")
    events = d.detect([run], {1: [make_job(10, status="completed", conclusion="skipped", completed=9)]})
    assert kinds(events) == [EventKind.RUN_STARTED, EventKind.JOB_COMPLETED]
    assert events[1].duration is None


def test_step_events_keyed_by_job_and_name(clock):
    d = EventDetector("o/r", clock=clock)
    run = make_run(1, "in_progress")
    jobs = {1: [
        make_job(10, status="in_progress", started=0, steps=(make_step("test", "queued"),)),
        make_job(11, status="in_progress", started=0, steps=(make_step("test", "in_progress", started=1),), name="lint"),
    ]}
    first = d.detect([run], jobs)
    step_events = [e for e in first if e.step_name]
    # no STEP_QUEUED exists
    assert [(e.kind, e.job_name) for e in step_events] == [(EventKind.STEP_STARTED, "lint")]

    jobs = {1: [
        make_job(10, status="in_progress", started=0, steps=(make_step("test", "in_progress", started=3),)),
        make_job(11, status="in_progress", started=0, steps=(
            make_step("test", "completed", "success", started=1, completed=61),), name="lint"),
    ]}
    second = d.detect([run], jobs)
    assert [(e.kind, e.job_name) for e in second] == [
        (EventKind.STEP_STARTED, "build"),
        (EventKind.STEP_COMPLETED, "lint"),
    ]
    assert second[1].duration == timedelta(seconds=60)


def test_events_are_ordered_run_then_job_then_steps(clock):
    d = EventDetector("o/r", clock=clock)
    steps = (make_step("a", "completed", "success", 1, 2), make_step("b", "in_progress", started=2))
    events = d.detect([make_run(1, "in_progress")], {1: [make_job(10, status="in_progress", started=1, steps=steps)]})
    assert kinds(events) == [
        EventKind.RUN_STARTED, EventKind.JOB_STARTED, EventKind.STEP_COMPLETED, EventKind.STEP_STARTED,
    ]
    assert [e.step_name for e in events] == [None, None, "a", "b"]


def test_stale_entries_are_forgotten(clock):
    d = EventDetector("o/r", staleness=timedelta(hours=1), clock=clock)
    d.detect([make_run(1, "queued")], {1: [make_job(10, steps=(make_step(),))]})
    assert d.tracked_counts() == (1, 1, 1)

    clock.advance(minutes=30)
    d.detect([], {})
    assert d.tracked_counts() == (1, 1, 1)

    clock.advance(minutes=31)
    d.detect([], {})
    assert d.tracked_counts() == (0, 0, 0)

    # reappears in progress: treated as a first sighting, not a transition
    events = d.detect([make_run(1, "in_progress", updated=7200)], {})
    assert kinds(events) == [EventKind.RUN_STARTED]


def test_refreshed_entries_survive_gc(clock):
    d = EventDetector("o/r", staleness=timedelta(hours=1), clock=clock)
    for _ in range(5):
        d.detect([make_run(1, "in_progress")], {})
        clock.advance(minutes=30)
    assert d.tracked_counts() == (1, 0, 0)
