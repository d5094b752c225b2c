"""Summary: Effect applier that files a classified capture.

Importance: Turns one classification into exactly one project, task, and audit entry.
Alternatives: Write all entities in one large transaction per capture.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from capturepilot.errors import InvalidTransitionError
from capturepilot.models import (
    ACTIVITY_AI_PROCESSED,
    DEFAULT_OUTCOME,
    PROGRESS_LOGGED,
    PROGRESS_PROJECT_RESOLVED,
    PROGRESS_TASK_CREATED,
    STATUS_SUCCESS,
    ActivityEntry,
    CaptureRecord,
    ClassificationResult,
    NeedsReview,
    Pending,
    Project,
    ProjectMatch,
    Task,
    require_state,
)
from capturepilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

_PROGRESS_ORDER = (None, PROGRESS_PROJECT_RESOLVED, PROGRESS_TASK_CREATED, PROGRESS_LOGGED)
UNTITLED_PROJECT = "Untitled Project"


@dataclass(frozen=True)
class AppliedEffect:
    """Summary: What filing a capture produced.

    Importance: Gives callers the ids of the project and task tied to a capture.
    Alternatives: Re-query the store after filing.
    """

    capture_id: str
    project_id: str
    project_name: str
    project_created: bool
    task_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "captureId": self.capture_id,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "projectCreated": self.project_created,
            "taskId": self.task_id,
        }


@dataclass(frozen=True)
class EffectApplier:
    """Summary: Applies a classification to the store as a resumable saga.

    Importance: Each step advances a persisted marker so retries never duplicate entities.
    Alternatives: Deduplicate projects and tasks after the fact.
    """

    store: SqliteStore

    def apply(self, capture: CaptureRecord, classification: ClassificationResult) -> AppliedEffect:
        """Summary: Resolve the project, create the task, log, and close the capture.

        Importance: Resumes from the last completed step when re-run.
        Alternatives: Abort and roll back on the first failing step.
        """

        record = self.store.require_capture(capture.id)
        if record.status == STATUS_SUCCESS:
            return self._stored_effect(record)
        if not isinstance(record.state, (Pending, NeedsReview)):
            raise InvalidTransitionError(f"Capture {record.id} is {record.status} and cannot be filed")

        match = classification.project_match
        progress = _PROGRESS_ORDER.index(record.apply_progress)

        if progress < 1:
            project_id, _ = self._resolve_project(record.id, match)
        else:
            project_id = record.applied_project_id or ""
            if isinstance(record.state, NeedsReview) and progress < 3 and match.id != project_id:
                project_id = self._repoint_project(record.id, match)
        project = self.store.get_project(project_id)
        project_name = project.name if project else match.name
        project_created = project_id != match.id

        title = classification.rewritten_title or record.original_text
        if progress < 2:
            task_id = self.store.create_capture_task(
                record.id,
                Task(
                    title=title,
                    gtd_list=classification.gtd_list,
                    tags=classification.tags,
                    original_thought=record.original_text,
                    project_id=project_id,
                ),
            )
        else:
            task_id = record.applied_task_id or ""

        if progress < 3:
            self.store.log_capture_activity(
                record.id,
                ActivityEntry(
                    type=ACTIVITY_AI_PROCESSED,
                    description=f'Filed "{title}" to {project_name}',
                    detail="Created new project automatically" if project_created else None,
                    metadata={
                        "project_id": project_id,
                        "project_name": project_name,
                        "task_id": task_id,
                        "original_text": record.original_text,
                        "rewritten_text": title,
                    },
                ),
            )

        final_match = replace(match, name=project_name).confirmed(project_id)
        if isinstance(record.state, Pending):
            next_state = record.state.succeed(final_match)
        else:
            next_state = record.state.accept(final_match)
        self.store.transition_capture(
            record.id,
            record.status,
            next_state,
            rewritten_text=title,
            tags=classification.tags,
            list_hint=classification.gtd_list,
        )
        logger.info("Filed capture %s into project %s as task %s.", record.id, project_id, task_id)
        return AppliedEffect(
            capture_id=record.id,
            project_id=project_id,
            project_name=project_name,
            project_created=project_created,
            task_id=task_id,
        )

    def apply_reviewed(self, capture: CaptureRecord) -> AppliedEffect:
        """Summary: File a capture under review using its displayed fields.

        Importance: Accept files exactly what the reviewer last saw, edits included.
        Alternatives: Re-run classification at accept time.
        """

        record = self.store.require_capture(capture.id)
        require_state(record.state, NeedsReview)
        classification = ClassificationResult(
            rewritten_title=record.rewritten_text or record.original_text,
            gtd_list=record.list_hint,
            tags=record.tags_applied,
            project_match=record.project_match,
        )
        return self.apply(record, classification)

    def _resolve_project(self, capture_id: str, match: ProjectMatch) -> tuple[str, bool]:
        """Summary: Trust a supplied project id, otherwise create the named project.

        Importance: A match with is_new false but no id still files the capture.
        Alternatives: Reject inconsistent matches outright.
        """

        if not match.is_new and match.id:
            return self.store.resolve_capture_project(capture_id, None, project_id=match.id)
        project = _project_for(match)
        project_id, created = self.store.resolve_capture_project(capture_id, project)
        if created:
            logger.info("Created project %s (%s) for capture %s.", project.name, project_id, capture_id)
        return project_id, created

    def _repoint_project(self, capture_id: str, match: ProjectMatch) -> str:
        """Summary: File a partly filed capture under the project the reviewer chose.

        Importance: Review edits made after a filing failure are not overridden.
        Alternatives: Keep the project resolved before the failure.
        """

        if match.id:
            project_id = self.store.repoint_capture_project(capture_id, None, project_id=match.id)
        else:
            project_id = self.store.repoint_capture_project(capture_id, _project_for(match))
        logger.info("Moved capture %s to project %s after review.", capture_id, project_id)
        return project_id

    def _stored_effect(self, record: CaptureRecord) -> AppliedEffect:
        project_id = record.applied_project_id or record.project_match.id or ""
        project = self.store.get_project(project_id)
        task_id = record.applied_task_id or ""
        return AppliedEffect(
            capture_id=record.id,
            project_id=project_id,
            project_name=project.name if project else record.project_match.name,
            project_created=bool(record.project_match.is_new),
            task_id=task_id,
        )


def _project_for(match: ProjectMatch) -> Project:
    return Project(name=match.name or UNTITLED_PROJECT, outcome=match.outcome or DEFAULT_OUTCOME)
