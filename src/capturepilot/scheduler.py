"""Summary: Single-flight scheduler that drives captures through the pipeline.

Importance: Guarantees one capture is classified and filed at a time per process.
Alternatives: Let every store listener process captures on its own.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable

from capturepilot.classifier import Classifier
from capturepilot.effects import AppliedEffect, EffectApplier
from capturepilot.errors import ClassificationError, InvalidTransitionError
from capturepilot.models import (
    DEFAULT_LIST,
    ERROR_MATCH,
    STATUS_PENDING,
    CaptureRecord,
    ClassificationResult,
    Pending,
    TagSet,
)
from capturepilot.routing import AUTO_APPLY_THRESHOLD, route
from capturepilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

ROUTE_AUTO = "auto"
ROUTE_REVIEW = "review"
ROUTE_ERROR = "error"


class Lease:
    """Summary: Exclusive claim on the one capture being processed.

    Importance: While held, no other capture may be claimed.
    Alternatives: Use a boolean busy flag without an owner.
    """

    def __init__(self) -> None:
        self._holder: str | None = None
        self._lock = threading.Lock()

    @property
    def holder(self) -> str | None:
        return self._holder

    def acquire(self, record_id: str) -> bool:
        """Summary: Claim the lease for a capture if nobody holds it."""

        with self._lock:
            if self._holder is not None:
                return False
            self._holder = record_id
            return True

    def release(self, record_id: str) -> None:
        """Summary: Release the lease if this capture holds it."""

        with self._lock:
            if self._holder == record_id:
                self._holder = None


@dataclass(frozen=True)
class ProcessingOutcome:
    """Summary: What happened to one capture during processing.

    Importance: Observers learn results without processing captures themselves.
    Alternatives: Have observers re-read the store after every change.
    """

    capture_id: str
    route: str
    status: str
    effect: AppliedEffect | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "captureId": self.capture_id,
            "route": self.route,
            "status": self.status,
            "effect": self.effect.to_dict() if self.effect else None,
            "error": self.error,
        }


Observer = Callable[[ProcessingOutcome], None]


class SingleFlightScheduler:
    """Summary: Push-driven worker that processes the oldest pending capture.

    Importance: Change notifications only wake the worker, so bursts coalesce.
    Alternatives: Poll the store on a timer.
    """

    def __init__(
        self,
        store: SqliteStore,
        classifier: Classifier,
        applier: EffectApplier,
        threshold: int = AUTO_APPLY_THRESHOLD,
        timeout_seconds: float = 30.0,
    ) -> None:
        """Summary: Initialize the scheduler with its collaborators.

        Importance: The classifier and applier are injected so tests can script them.
        Alternatives: Build collaborators from configuration internally.
        """

        self.store = store
        self.classifier = classifier
        self.applier = applier
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds
        self.lease = Lease()
        self._observers: list[Observer] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        """Summary: Register a callback for each processed capture.

        Importance: UI and API layers watch outcomes without touching the pipeline.
        Alternatives: Let observers subscribe to the store directly.
        """

        self._observers.append(observer)

        def remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    async def start(self) -> None:
        """Summary: Subscribe to the store and start the worker loop.

        Importance: Captures already pending at startup are processed immediately.
        Alternatives: Process only captures that arrive after startup.
        """

        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._stopping = False
        self._unsubscribe = self.store.subscribe(self._on_change)
        self._wake.set()
        self._task = self._loop.create_task(self._run())
        logger.info("Capture scheduler started.")

    async def stop(self) -> None:
        """Summary: Unsubscribe and let the worker finish its current capture.

        Importance: In-flight work is never cancelled mid-saga.
        Alternatives: Cancel the worker task immediately.
        """

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is None:
            return
        self._stopping = True
        if self._wake is not None:
            self._wake.set()
        await self._task
        self._task = None
        logger.info("Capture scheduler stopped.")

    async def drain(self) -> list[ProcessingOutcome]:
        """Summary: Process pending captures until none are left.

        Importance: Gives the CLI and tests a one-shot way to run the pipeline.
        Alternatives: Start the background worker and wait for it.
        """

        outcomes: list[ProcessingOutcome] = []
        attempted: set[str] = set()
        while True:
            outcome = await self.process_next(exclude=attempted)
            if outcome is None:
                return outcomes
            attempted.add(outcome.capture_id)
            outcomes.append(outcome)

    async def process_next(self, exclude: set[str] | None = None) -> ProcessingOutcome | None:
        """Summary: Claim and process the oldest pending capture.

        Importance: Returns None when nothing is pending or the lease is taken.
        Alternatives: Block until the lease frees up.
        """

        record = self.store.oldest_pending(exclude=exclude)
        if record is None:
            return None
        if not self.lease.acquire(record.id):
            return None
        try:
            outcome = await self._process(record)
        finally:
            self.lease.release(record.id)
        self._publish(outcome)
        return outcome

    async def _run(self) -> None:
        assert self._wake is not None
        while not self._stopping:
            await self._wake.wait()
            self._wake.clear()
            if self._stopping:
                break
            try:
                await self.drain()
            except Exception:
                logger.exception("Capture scheduler pass failed.")

    def _on_change(self, collection: str, record_id: str) -> None:
        """Summary: Wake the worker from any thread after a capture write."""

        if collection != "captures":
            return
        loop = self._loop
        if loop is None or loop.is_closed() or self._wake is None:
            return
        try:
            loop.call_soon_threadsafe(self._wake.set)
        except RuntimeError:
            logger.debug("Scheduler loop closed before capture %s notification.", record_id)

    async def _process(self, record: CaptureRecord) -> ProcessingOutcome:
        """Summary: Classify, route, and file one claimed capture.

        Importance: Every failure ends with the capture out of pending or logged.
        Alternatives: Leave failed captures pending for a later retry.
        """

        logger.info("Processing capture %s.", record.id)
        known_projects = [
            {"id": project.id, "name": project.name}
            for project in self.store.list_projects(status="active")
        ]
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.classifier.classify, record.original_text, known_projects),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._flag_error(
                record, f"Classification timed out after {self.timeout_seconds:g}s"
            )
        except ClassificationError as exc:
            return self._flag_error(record, str(exc))
        except Exception as exc:
            logger.exception("Classifier raised unexpectedly for capture %s.", record.id)
            return self._flag_error(record, str(exc) or exc.__class__.__name__)

        if route(result, self.threshold) == ROUTE_REVIEW:
            return self._flag_review(record, result)
        try:
            effect = self.applier.apply(record, result)
        except Exception as exc:
            logger.exception("Filing failed for capture %s; sending to review.", record.id)
            draft = self._resolved_draft(record, result)
            return self._flag_review(record, draft, error=f"Filing failed: {exc}")
        return ProcessingOutcome(
            capture_id=record.id,
            route=ROUTE_AUTO,
            status=self.store.require_capture(record.id).status,
            effect=effect,
        )

    def _flag_review(
        self, record: CaptureRecord, result: ClassificationResult, error: str | None = None
    ) -> ProcessingOutcome:
        """Summary: Park a classified capture for review with its draft match."""

        state = Pending().flag(result.project_match, error=error)
        status = self._transition(
            record,
            state,
            rewritten_text=result.rewritten_title,
            tags=result.tags,
            list_hint=result.gtd_list,
        )
        logger.info(
            "Capture %s needs review (confidence %s).", record.id, result.project_match.confidence
        )
        return ProcessingOutcome(
            capture_id=record.id,
            route=ROUTE_REVIEW if error is None else ROUTE_ERROR,
            status=status,
            error=error,
        )

    def _resolved_draft(
        self, record: CaptureRecord, result: ClassificationResult
    ) -> ClassificationResult:
        """Summary: Point the review draft at a project already resolved before a failure.

        Importance: Reviewers see the existing project instead of a proposal to create it again.
        Alternatives: Show the classifier's original proposal.
        """

        current = self.store.require_capture(record.id)
        if not current.applied_project_id:
            return result
        project = self.store.get_project(current.applied_project_id)
        match = replace(
            result.project_match,
            id=current.applied_project_id,
            name=project.name if project else result.project_match.name,
            is_new=False,
        )
        return replace(result, project_match=match)

    def _flag_error(self, record: CaptureRecord, message: str) -> ProcessingOutcome:
        """Summary: Park a capture that could not be classified."""

        logger.warning("Classification failed for capture %s: %s", record.id, message)
        status = self._transition(
            record,
            Pending().flag(ERROR_MATCH, error=message),
            rewritten_text=record.original_text,
            tags=TagSet(),
            list_hint=DEFAULT_LIST,
        )
        return ProcessingOutcome(capture_id=record.id, route=ROUTE_ERROR, status=status, error=message)

    def _transition(self, record: CaptureRecord, state: Any, **fields: Any) -> str:
        try:
            return self.store.transition_capture(record.id, STATUS_PENDING, state, **fields).status
        except InvalidTransitionError:
            current = self.store.require_capture(record.id)
            logger.warning("Capture %s moved to %s while processing.", record.id, current.status)
            return current.status

    def _publish(self, outcome: ProcessingOutcome) -> None:
        for observer in list(self._observers):
            try:
                observer(outcome)
            except Exception:
                logger.exception("Processing observer failed for capture %s.", outcome.capture_id)
