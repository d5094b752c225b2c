"""Summary: Core application services for CapturePilot.

Importance: Gives the CLI and API one place to create and read captures and their results.
Alternatives: Let entrypoints talk to the store directly.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from capturepilot.errors import RecordNotFoundError
from capturepilot.models import (
    CAPTURE_STATUSES,
    DEFAULT_LIST,
    GTD_LISTS,
    PROJECT_STATUSES,
    CaptureRecord,
    Project,
    TagSet,
    Task,
)
from capturepilot.storage.sqlite_store import (
    SqliteStore,
    StoredActivity,
    StoredProject,
    StoredTask,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureService:
    """Summary: Creates and lists captures.

    Importance: Every thought enters the pipeline through here.
    Alternatives: Insert captures from each entrypoint.
    """

    store: SqliteStore

    def capture(self, text: str) -> CaptureRecord:
        """Summary: Store a new pending capture.

        Importance: The store notification wakes the scheduler.
        Alternatives: Classify synchronously before storing.
        """

        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Capture text is required")
        record = self.store.add_capture(cleaned)
        logger.info("Captured %s.", record.id)
        return record

    def get(self, capture_id: str) -> CaptureRecord:
        """Summary: Return a capture or raise when it is missing."""

        return self.store.require_capture(capture_id)

    def list_captures(self, status: str | None = None, limit: int = 100) -> list[CaptureRecord]:
        """Summary: List captures, newest first, optionally by status.

        Importance: Powers the inbox log.
        Alternatives: Only show pending captures.
        """

        if status is not None and status not in CAPTURE_STATUSES:
            raise ValueError(f"Unknown capture status {status!r}")
        return self.store.list_captures(status=status, limit=limit)


@dataclass(frozen=True)
class ProjectService:
    """Summary: Manages projects and the tasks filed under them.

    Importance: Supports manual entries alongside pipeline filing.
    Alternatives: Only let the pipeline create projects and tasks.
    """

    store: SqliteStore

    def create_project(self, name: str, outcome: str | None = None) -> StoredProject:
        """Summary: Create a project by hand."""

        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Project name is required")
        project = self.store.create_project(
            Project(name=cleaned, outcome=outcome) if outcome else Project(name=cleaned)
        )
        logger.info("Created project %s.", project.id)
        return project

    def list_projects(self, status: str | None = None) -> list[StoredProject]:
        """Summary: List projects, newest first."""

        if status is not None and status not in PROJECT_STATUSES:
            raise ValueError(f"Unknown project status {status!r}")
        return self.store.list_projects(status=status)

    def add_task(self, title: str, project_id: str | None = None, gtd_list: str = DEFAULT_LIST) -> StoredTask:
        """Summary: Create a task by hand.

        Importance: A manual task records its own title as the originating thought.
        Alternatives: Require every task to come from a capture.
        """

        cleaned = title.strip()
        if not cleaned:
            raise ValueError("Task title is required")
        if gtd_list not in GTD_LISTS:
            raise ValueError(f"Unknown list {gtd_list!r}")
        if project_id and self.store.get_project(project_id) is None:
            raise RecordNotFoundError(f"Project {project_id} not found")
        task = self.store.add_task(
            Task(
                title=cleaned,
                gtd_list=gtd_list,
                tags=TagSet(),
                original_thought=cleaned,
                project_id=project_id or None,
            )
        )
        logger.info("Added task %s.", task.id)
        return task

    def list_tasks(self, project_id: str | None = None, limit: int = 200) -> list[StoredTask]:
        """Summary: List tasks, oldest first, optionally for one project."""

        return self.store.list_tasks(project_id=project_id, limit=limit)


@dataclass(frozen=True)
class ActivityService:
    """Summary: Reads the activity feed.

    Importance: Shows users what the pipeline filed and why.
    Alternatives: Read application logs.
    """

    store: SqliteStore

    def recent(self, limit: int = 50, activity_type: str | None = None) -> list[StoredActivity]:
        """Summary: Return recent activity entries, newest first."""

        return self.store.list_activities(limit=limit, activity_type=activity_type)


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Provides access to AI audit logs.

    Importance: Enables review of AI usage and outputs.
    Alternatives: Use raw database queries or log files.
    """

    store: SqliteStore

    def list_requests(self, limit: int = 20) -> list[dict[str, str | int]]:
        """Summary: Return recent AI requests.

        Importance: Supports auditing prompts and purposes.
        Alternatives: Skip AI request storage.
        """

        return [
            {
                "id": request.id,
                "provider": request.provider,
                "model": request.model,
                "purpose": request.purpose,
                "timestamp": request.timestamp,
            }
            for request in self.store.list_ai_requests(limit)
        ]

    def list_responses(self, limit: int = 20) -> list[dict[str, str | int]]:
        """Summary: Return recent AI responses.

        Importance: Supports auditing outputs and latency.
        Alternatives: Skip AI response storage.
        """

        return [
            {
                "id": response.id,
                "request_id": response.request_id,
                "latency_ms": response.latency_ms,
                "token_estimate": response.token_estimate,
            }
            for response in self.store.list_ai_responses(limit)
        ]
