"""Test the stage worker: slot-bounded claiming and job threads."""

import threading
import time

import pytest
from pydantic import BaseModel
from sqlalchemy import create_engine

from dns_engine.infrastructure.sql.database import get_session_factory, init_db
from dns_engine.infrastructure.sql.job_repository import SqlJobRepository
from dns_engine.jobs.models import JobState, StageOutcome
from dns_engine.jobs.queue import JobQueue
from dns_engine.jobs.worker import StageWorker


class Ping(BaseModel):
    n: int


class GatedHandler:
    """Blocks each job until the test opens its gate."""

    def __init__(self):
        self.entered = {}
        self.gates = {}

    def prepare(self, n):
        self.entered[n] = threading.Event()
        self.gates[n] = threading.Event()

    def __call__(self, payload):
        self.entered[payload.n].set()
        self.gates[payload.n].wait(timeout=5)
        return StageOutcome.completed()


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# Job threads write concurrently, so these tests use a file database with a
# connection per thread instead of the shared in-memory one.
@pytest.fixture
def job_repository(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'jobs.db'}", connect_args={"check_same_thread": False, "timeout": 10})
    init_db(engine)

    yield SqlJobRepository(get_session_factory(engine))

    engine.dispose()


@pytest.fixture
def queue(job_repository):
    return JobQueue(job_repository, lease_seconds=60)


@pytest.fixture
def handler(queue):
    handler = GatedHandler()
    queue.register("ping", handler, payload_model=Ping)
    return handler


@pytest.fixture
def worker(queue):
    return StageWorker(worker_id="worker-test", queue=queue, poll_interval=0.01, max_slots=2)


class TestStageWorker:

    def test_claims_no_more_than_free_slots(self, worker, queue, handler, job_repository):
        jobs = []
        for n in (1, 2, 3):
            handler.prepare(n)
            jobs.append(queue.enqueue("ping", Ping(n=n)))

        assert worker.tick() == 2
        assert wait_until(lambda: sum(e.is_set() for e in handler.entered.values()) == 2)
        started = [n for n, event in handler.entered.items() if event.is_set()]

        # Both slots are busy
        assert worker.tick() == 0
        assert worker.slots.free_slots() == 0

        still_running = 2
        for n in started:
            handler.gates[n].set()
            still_running -= 1
            assert wait_until(lambda: len(worker.running_jobs()) == still_running)

        (remaining,) = set(handler.gates) - set(started)
        handler.gates[remaining].set()
        assert worker.tick() == 1
        assert wait_until(lambda: worker.running_jobs() == [])

        assert all(job_repository.get(job.job_id).state == JobState.COMPLETED for job in jobs)
        assert worker.slots.free_slots() == 2

    def test_idle_tick(self, worker, handler):
        assert worker.tick() == 0
        assert worker.slots.free_slots() == 2

    def test_start_and_stop(self, worker, queue, handler, job_repository):
        handler.prepare(1)
        handler.gates[1].set()
        job = queue.enqueue("ping", Ping(n=1))

        worker.start()
        try:
            assert wait_until(lambda: job_repository.get(job.job_id).state == JobState.COMPLETED)
        finally:
            worker.stop()

        assert worker.running_jobs() == []
