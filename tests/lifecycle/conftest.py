"""
Lifecycle Test Fixtures.

Base fixtures:
  - Empty in-memory and SQLite stores
  - Mocked clock at fixed time
  - Recording / failing notification gateways
  - Dispatcher that never sleeps

Per-test fixtures:
  - Jobs opened through the service
  - Jobs advanced along the primary path to a given state
"""

import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Generator

import pytest

from src.lifecycle import (
    Actor,
    ActorRole,
    InMemoryJobStore,
    Job,
    JobLifecycleService,
    JobState,
    NotificationDispatchFailure,
    NotificationDispatcher,
    NotificationGateway,
    SQLiteJobStore,
    StateMachineEngine,
)


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0)

PASSING_CHECKLIST = {
    "functionality_test": True,
    "visual_inspection": True,
    "customer_requirements": True,
    "documentation_complete": True,
}

# (target state, acting role, payload) for each step of the primary path
PRIMARY_PATH = (
    (JobState.IN_DIAGNOSIS, ActorRole.TECHNICIAN, {"technician_id": "tech-1"}),
    (JobState.AWAITING_APPROVAL, ActorRole.TECHNICIAN, {
        "diagnosis_notes": "Cracked display, battery swollen",
        "estimated_hours": 2,
        "estimated_cost": 180.0,
    }),
    (JobState.APPROVED, ActorRole.CUSTOMER, {}),
    (JobState.IN_PROGRESS, ActorRole.TECHNICIAN, {}),
    (JobState.TESTING, ActorRole.TECHNICIAN, {"actual_hours": 1.5}),
    (JobState.QUALITY_CHECK, ActorRole.TECHNICIAN, {"testing_results": "All functional tests passed"}),
    (JobState.COMPLETED, ActorRole.ORG_MANAGER, {"quality_checklist": PASSING_CHECKLIST}),
    (JobState.CUSTOMER_APPROVED, ActorRole.CUSTOMER, {"customer_signature": "sig-0001"}),
    (JobState.DELIVERED, ActorRole.TECHNICIAN, {"delivery_receipt": "rcpt-0001"}),
)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def now_iso(self) -> str:
        return self._current.isoformat() + "Z"

    def tick(self, seconds: int = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class RecordingGateway(NotificationGateway):
    """Gateway that records every intent it is asked to send."""

    def __init__(self):
        self.sent = []
        self._lock = threading.Lock()

    def send(self, intent) -> None:
        with self._lock:
            self.sent.append(intent)

    def templates(self) -> list:
        with self._lock:
            return [intent.template for intent in self.sent]


class FailingGateway(NotificationGateway):
    """
    Gateway that fails a configurable number of times before succeeding.

    fail_times=None fails forever.
    """

    def __init__(self, fail_times=None):
        self.fail_times = fail_times
        self.attempts = 0
        self.sent = []
        self._lock = threading.Lock()

    def send(self, intent) -> None:
        with self._lock:
            self.attempts += 1
            if self.fail_times is None or self.attempts <= self.fail_times:
                raise NotificationDispatchFailure(intent.intent_id, "SMS provider unavailable")
            self.sent.append(intent)


def steps_after(state: JobState) -> tuple:
    """Primary path steps still ahead of a job in `state`."""
    path_states = [step[0] for step in PRIMARY_PATH]
    if state in path_states:
        return PRIMARY_PATH[path_states.index(state) + 1:]
    return PRIMARY_PATH


def no_sleep(delay: float) -> None:
    pass


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def sqlite_store(temp_db_path: str) -> SQLiteJobStore:
    """Create a fresh SQLiteJobStore with empty database."""
    return SQLiteJobStore(temp_db_path)


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    """Create an empty InMemoryJobStore."""
    return InMemoryJobStore()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, temp_db_path: str):
    """Run the test against both store implementations."""
    if request.param == "memory":
        return InMemoryJobStore()
    return SQLiteJobStore(temp_db_path)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def engine() -> StateMachineEngine:
    return StateMachineEngine()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def dispatcher(gateway: RecordingGateway) -> NotificationDispatcher:
    """Dispatcher delivering to the recording gateway without backoff sleeps."""
    return NotificationDispatcher(gateway, sleep=no_sleep)


@pytest.fixture
def service(memory_store, engine, dispatcher) -> JobLifecycleService:
    """Lifecycle service over an in-memory store."""
    return JobLifecycleService(memory_store, engine=engine, dispatcher=dispatcher)


@pytest.fixture
def sqlite_service(sqlite_store, engine, dispatcher) -> JobLifecycleService:
    """Lifecycle service over a SQLite store."""
    return JobLifecycleService(sqlite_store, engine=engine, dispatcher=dispatcher)


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def make_actor() -> Callable:
    """Factory fixture for actors; the id defaults to a role-derived name."""

    def _make(role: ActorRole, actor_id: str = None) -> Actor:
        return Actor(actor_id=actor_id or f"{role.value.lower()}-1", role=role)

    return _make


@pytest.fixture
def new_job() -> Callable:
    """Factory fixture for unsaved CREATED snapshots."""

    def _create(technician_id: str = None, attributes: dict = None) -> Job:
        return Job.create(
            customer_id="cust-1",
            organization_id="org-1",
            technician_id=technician_id,
            attributes=attributes or {"device": "Phone X", "issue": "Screen broken"},
        )

    return _create


@pytest.fixture
def advance_snapshot(engine: StateMachineEngine, make_actor: Callable) -> Callable:
    """
    Factory fixture walking a snapshot along the primary path with the engine.

    Returns a function (job, target_state) -> Job.
    """

    def _advance(job: Job, target: JobState) -> Job:
        for state, role, payload in steps_after(job.state):
            if job.state == target:
                break
            job = engine.apply_transition(job, state, make_actor(role), payload).job
        assert job.state == target, f"{target.value} is not on the primary path"
        return job

    return _advance


@pytest.fixture
def open_job(service: JobLifecycleService) -> Callable:
    """Factory fixture for jobs opened through the service."""

    def _open(technician_id: str = None, attributes: dict = None) -> Job:
        return service.open_job(
            customer_id="cust-1",
            organization_id="org-1",
            technician_id=technician_id,
            attributes=attributes or {"device": "Laptop Y", "issue": "Won't boot"},
        )

    return _open


@pytest.fixture
def advance(service: JobLifecycleService, make_actor: Callable) -> Callable:
    """
    Factory fixture walking a stored job along the primary path.

    Returns a function (job_id, target_state) -> Job.
    """

    def _advance(job_id: str, target: JobState) -> Job:
        job = service.get_job(job_id)
        for state, role, payload in steps_after(job.state):
            if job.state == target:
                break
            job = service.transition(job_id, state, make_actor(role), payload).job
        assert job.state == target, f"{target.value} is not on the primary path"
        return job

    return _advance
