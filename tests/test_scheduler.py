"""Summary: Tests for the single-flight capture scheduler.

Importance: Covers auto-filing, review routing, failures, and exclusivity end to end.
Alternatives: Test classification and filing separately without the worker loop.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable

import pytest

from capturepilot.effects import EffectApplier
from capturepilot.errors import ClassificationError
from capturepilot.models import (
    STATUS_NEEDS_REVIEW,
    STATUS_SUCCESS,
    ClassificationResult,
    Project,
)
from capturepilot.review import ReviewResolutionHandler
from capturepilot.scheduler import Lease, ProcessingOutcome, SingleFlightScheduler
from capturepilot.storage.sqlite_store import SqliteStore


def _scheduler(store: SqliteStore, classifier: Any, timeout: float = 5.0) -> SingleFlightScheduler:
    return SingleFlightScheduler(
        store=store,
        classifier=classifier,
        applier=EffectApplier(store),
        timeout_seconds=timeout,
    )


async def _wait_for_status(store: SqliteStore, capture_id: str, timeout: float = 5.0) -> str:
    """Summary: Poll until a capture leaves pending or the timeout passes."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = store.require_capture(capture_id).status
        if status != "pending":
            return status
        await asyncio.sleep(0.02)
    raise AssertionError(f"Capture {capture_id} still pending")


def test_lease_is_exclusive() -> None:
    """Summary: Verify only one capture can hold the lease."""

    lease = Lease()
    assert lease.acquire("a") is True
    assert lease.acquire("b") is False
    lease.release("b")
    assert lease.holder == "a"
    lease.release("a")
    assert lease.acquire("b") is True


@pytest.mark.asyncio
async def test_high_confidence_capture_is_filed(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify a 95% new-project classification is filed automatically.

    Importance: The common path needs no human involvement.
    Alternatives: Require confirmation for new projects.
    """

    record = store.add_capture("Buy milk")
    scheduler = _scheduler(store, scripted(make_result(name="Errands", confidence=95, is_new=True)))
    outcomes = await scheduler.drain()

    assert [outcome.route for outcome in outcomes] == ["auto"]
    stored = store.require_capture(record.id)
    assert stored.status == STATUS_SUCCESS
    assert [project.name for project in store.list_projects()] == ["Errands"]
    tasks = store.list_tasks()
    assert [(task.title, task.original_thought) for task in tasks] == [("Buy milk", "Buy milk")]
    assert len(store.list_activities(activity_type="ai-processed")) == 1


@pytest.mark.asyncio
async def test_low_confidence_capture_waits_for_review(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify a 70% match is parked without side effects.

    Importance: Uncertain classifications never create entities on their own.
    Alternatives: File uncertain captures into an inbox project.
    """

    kitchen = store.create_project(Project(name="Kitchen Renovation"))
    record = store.add_capture("Call the contractor about tiles")
    classifier = scripted(
        make_result(name="Kitchen Renovation", confidence=70, is_new=False, project_id=kitchen.id)
    )
    outcomes = await _scheduler(store, classifier).drain()

    assert outcomes[0].route == "review"
    stored = store.require_capture(record.id)
    assert stored.status == STATUS_NEEDS_REVIEW
    assert stored.project_match.confidence == 70
    assert stored.error is None
    assert store.list_tasks() == []
    assert len(store.list_projects()) == 1
    assert store.list_activities() == []
    assert classifier.calls[0][1] == [{"id": kitchen.id, "name": "Kitchen Renovation"}]


@pytest.mark.asyncio
async def test_classification_failure_flags_error(store: SqliteStore, scripted: Any) -> None:
    """Summary: Verify a failed classification lands in review with the error match.

    Importance: Failures are visible to the user instead of lost.
    Alternatives: Retry failed captures forever.
    """

    record = store.add_capture("something")
    outcomes = await _scheduler(store, scripted(ClassificationError("malformed"))).drain()

    assert outcomes[0].route == "error"
    stored = store.require_capture(record.id)
    assert stored.status == STATUS_NEEDS_REVIEW
    assert stored.project_match.name == "Error"
    assert stored.project_match.confidence == 0
    assert stored.project_match.is_new is False
    assert stored.tags_applied.time == "15 min"
    assert stored.error == "malformed"
    assert store.list_projects() == []


@pytest.mark.asyncio
async def test_classification_timeout_flags_error(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify a slow classifier counts as a failure."""

    record = store.add_capture("slow one")
    classifier = scripted(make_result(confidence=99), delay=0.5)
    outcomes = await _scheduler(store, classifier, timeout=0.05).drain()

    assert outcomes[0].route == "error"
    stored = store.require_capture(record.id)
    assert stored.status == STATUS_NEEDS_REVIEW
    assert "timed out" in stored.error
    await asyncio.sleep(0.6)
    assert store.require_capture(record.id).status == STATUS_NEEDS_REVIEW
    assert store.list_tasks() == []


@pytest.mark.asyncio
async def test_concurrent_claims_process_one_capture(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify simultaneous claims produce a single filing.

    Importance: Many notifications for one capture must not create duplicate projects.
    Alternatives: Rely on project name uniqueness.
    """

    store.add_capture("Buy milk")
    scheduler = _scheduler(store, scripted(make_result(), delay=0.05))
    results = await asyncio.gather(*(scheduler.process_next() for _ in range(10)))

    assert len([result for result in results if result is not None]) == 1
    assert len(store.list_projects()) == 1
    assert len(store.list_tasks()) == 1


@pytest.mark.asyncio
async def test_worker_coalesces_notifications(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify the background worker handles bursts one capture at a time.

    Importance: At most one classification is in flight per process.
    Alternatives: Spawn a task per notification.
    """

    active = 0
    peak = 0
    guard = threading.Lock()

    def classify(text: str, known: list[dict[str, str]]) -> ClassificationResult:
        nonlocal active, peak
        with guard:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with guard:
            active -= 1
        return make_result(name=f"Project {text}", title=text)

    scheduler = _scheduler(store, scripted(classify))
    seen: list[ProcessingOutcome] = []
    scheduler.add_observer(seen.append)
    await scheduler.start()
    try:
        records = [store.add_capture(f"thought {index}") for index in range(5)]
        statuses = [await _wait_for_status(store, record.id) for record in records]
    finally:
        await scheduler.stop()

    assert statuses == [STATUS_SUCCESS] * 5
    assert peak == 1
    assert len(store.list_tasks()) == 5
    assert [outcome.capture_id for outcome in seen] == [record.id for record in records]
    assert not scheduler.running


@pytest.mark.asyncio
async def test_worker_processes_backlog_on_start(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify captures stored before startup are processed."""

    record = store.add_capture("Buy milk")
    scheduler = _scheduler(store, scripted(make_result()))
    await scheduler.start()
    try:
        assert await _wait_for_status(store, record.id) == STATUS_SUCCESS
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_observer_failure_does_not_stop_processing(
    store: SqliteStore, scripted: Any, make_result: Callable[..., ClassificationResult]
) -> None:
    """Summary: Verify a broken observer cannot break the pipeline."""

    def broken(outcome: ProcessingOutcome) -> None:
        raise RuntimeError("observer failure")

    store.add_capture("one")
    store.add_capture("two")
    scheduler = _scheduler(store, scripted(make_result()))
    remove = scheduler.add_observer(broken)
    outcomes = await scheduler.drain()
    remove()
    assert [outcome.status for outcome in outcomes] == [STATUS_SUCCESS, STATUS_SUCCESS]


@pytest.mark.asyncio
async def test_partial_filing_failure_resumes_on_accept(
    store: SqliteStore,
    scripted: Any,
    make_result: Callable[..., ClassificationResult],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Summary: Verify a filing crash parks the capture and accept finishes it once.

    Importance: Retrying after a partial failure never duplicates the project.
    Alternatives: Leave half-filed captures pending.
    """

    record = store.add_capture("Buy milk")
    original = store.log_capture_activity

    def failing_log(capture_id: str, entry: Any) -> bool:
        raise RuntimeError("log unavailable")

    monkeypatch.setattr(store, "log_capture_activity", failing_log)
    outcomes = await _scheduler(store, scripted(make_result(confidence=97))).drain()
    assert outcomes[0].route == "error"
    parked = store.require_capture(record.id)
    assert parked.status == STATUS_NEEDS_REVIEW
    assert parked.apply_progress == "task-created"
    assert parked.project_match.name == "Errands"
    assert "log unavailable" in parked.error
    assert parked.project_match.id == parked.applied_project_id
    assert parked.project_match.is_new is False

    monkeypatch.setattr(store, "log_capture_activity", original)
    ReviewResolutionHandler(store, EffectApplier(store)).accept(record.id)
    assert store.require_capture(record.id).status == STATUS_SUCCESS
    assert len(store.list_projects()) == 1
    assert len(store.list_tasks()) == 1
    assert len(store.list_activities()) == 1


@pytest.mark.asyncio
async def test_reassign_after_partial_filing_uses_chosen_project(
    store: SqliteStore,
    scripted: Any,
    make_result: Callable[..., ClassificationResult],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Summary: Verify a reviewer's project choice wins over the one resolved before a crash.

    Importance: Accept files under the displayed project, not a leftover from the failed run.
    Alternatives: Lock the project once filing has started.
    """

    kitchen = store.create_project(Project(name="Kitchen Renovation"))
    record = store.add_capture("Buy milk")
    original = store.create_capture_task

    def failing_task(capture_id: str, task: Any) -> str:
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "create_capture_task", failing_task)
    await _scheduler(store, scripted(make_result(confidence=97))).drain()
    parked = store.require_capture(record.id)
    assert parked.apply_progress == "project-resolved"
    assert parked.project_match.id == parked.applied_project_id
    assert parked.project_match.is_new is False
    assert parked.project_match.name == "Errands"

    monkeypatch.setattr(store, "create_capture_task", original)
    effect = ReviewResolutionHandler(store, EffectApplier(store)).reassign(record.id, kitchen.id)

    assert effect.project_id == kitchen.id
    task = store.get_task(effect.task_id)
    assert task.project_id == kitchen.id
    stored = store.require_capture(record.id)
    assert stored.status == STATUS_SUCCESS
    assert stored.applied_project_id == kitchen.id
    assert stored.project_match.id == kitchen.id
    assert len(store.list_tasks()) == 1


@pytest.mark.asyncio
async def test_created_project_after_partial_filing_receives_task(
    store: SqliteStore,
    scripted: Any,
    make_result: Callable[..., ClassificationResult],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Summary: Verify a task created before a crash moves to the reviewer's new project."""

    record = store.add_capture("Buy milk")
    original = store.log_capture_activity

    def failing_log(capture_id: str, entry: Any) -> bool:
        raise RuntimeError("log unavailable")

    monkeypatch.setattr(store, "log_capture_activity", failing_log)
    await _scheduler(store, scripted(make_result(confidence=97))).drain()
    assert store.require_capture(record.id).apply_progress == "task-created"

    monkeypatch.setattr(store, "log_capture_activity", original)
    handler = ReviewResolutionHandler(store, EffectApplier(store))
    effect = handler.create_project_and_accept(record.id, "Groceries")

    groceries = [project for project in store.list_projects() if project.name == "Groceries"]
    assert len(groceries) == 1
    assert effect.project_id == groceries[0].id
    tasks = store.list_tasks()
    assert len(tasks) == 1
    assert tasks[0].project_id == groceries[0].id
    assert store.list_tasks(project_id=groceries[0].id) == tasks
    filed = store.list_activities(activity_type="ai-processed")
    assert filed[0].description == 'Filed "Buy milk" to Groceries'
