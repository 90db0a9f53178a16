import threading
import time

import pytest

from coursestream.domain import JobStatus
from coursestream.worker import JobScheduler


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def gate(tools):
    """Holds every HLS encode until released"""
    event = threading.Event()

    def hold(cmd):
        if "hls" in cmd:
            event.wait(5)

    tools.before_run = hold
    yield event
    event.set()


def status_of(orchestrator, job_id):
    return orchestrator.get_job(job_id).status


def test_tick_fills_free_slots_only(orchestrator, settings, make_upload, gate):
    settings.max_concurrent_jobs = 2
    scheduler = JobScheduler(orchestrator, poll_interval=0.05)
    ids = [orchestrator.submit(*make_upload(), "instructor1", options={"qualities": ["240p"]}).job_id
           for _ in range(3)]
    try:
        assert scheduler.tick() == 2
        assert scheduler.tick() == 0
        assert status_of(orchestrator, ids[2]) == JobStatus.PENDING

        gate.set()
        assert wait_for(lambda: status_of(orchestrator, ids[1]) == JobStatus.COMPLETED)
        assert scheduler.tick() == 1
        assert wait_for(lambda: status_of(orchestrator, ids[2]) == JobStatus.COMPLETED)
    finally:
        gate.set()
        scheduler.stop()


def test_background_scheduler_runs_jobs_in_order(services, orchestrator, settings, make_upload, gate):
    settings.max_concurrent_jobs = 1
    scheduler = services.scheduler
    first = orchestrator.submit(*make_upload(), "instructor1", options={"qualities": ["240p"]}).job_id
    second = orchestrator.submit(*make_upload(), "instructor1", options={"qualities": ["240p"]}).job_id

    scheduler.start()
    try:
        assert wait_for(lambda: status_of(orchestrator, first) == JobStatus.PROCESSING)
        assert status_of(orchestrator, second) == JobStatus.PENDING

        gate.set()
        assert wait_for(lambda: status_of(orchestrator, second) == JobStatus.COMPLETED)
        done = [orchestrator.get_job(first), orchestrator.get_job(second)]
        assert done[0].status == JobStatus.COMPLETED
        assert done[0].started_at <= done[1].started_at
    finally:
        gate.set()
        scheduler.stop()


def test_cancelled_slot_is_reused(services, orchestrator, settings, make_upload, gate):
    settings.max_concurrent_jobs = 1
    scheduler = services.scheduler
    first = orchestrator.submit(*make_upload(), "instructor1", options={"qualities": ["240p"]}).job_id
    second = orchestrator.submit(*make_upload(), "instructor1", options={"qualities": ["240p"]}).job_id

    scheduler.start()
    try:
        assert wait_for(lambda: status_of(orchestrator, first) == JobStatus.PROCESSING)
        orchestrator.cancel(first, "instructor1")
        assert wait_for(lambda: status_of(orchestrator, second) == JobStatus.PROCESSING)
        gate.set()
        assert wait_for(lambda: status_of(orchestrator, second) == JobStatus.COMPLETED)
        assert status_of(orchestrator, first) == JobStatus.CANCELLED
    finally:
        gate.set()
        scheduler.stop()
