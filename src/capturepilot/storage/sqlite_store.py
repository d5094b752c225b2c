"""Summary: SQLite storage implementation for CapturePilot.

Importance: Provides local-first persistence with change notification for the pipeline.
Alternatives: Use a hosted document store with realtime listeners.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator
from uuid import uuid4

from capturepilot.errors import InvalidTransitionError, RecordNotFoundError
from capturepilot.models import (
    PROGRESS_LOGGED,
    PROGRESS_PROJECT_RESOLVED,
    PROGRESS_TASK_CREATED,
    STATUS_NEEDS_REVIEW,
    STATUS_PENDING,
    ActivityEntry,
    AiRequest,
    AiResponse,
    CaptureRecord,
    CaptureState,
    Pending,
    Project,
    ProjectMatch,
    TagSet,
    Task,
    build_state,
)


logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, str], None]

_CAPTURE_COLUMNS = """
    id, original_text, timestamp, status, rewritten_text, tags_json, match_json,
    list_hint, error, apply_progress, applied_project_id, applied_task_id
"""


@dataclass(frozen=True)
class StoredProject:
    """Summary: Project record with database identifier.

    Importance: Lets tasks and captures reference projects by id.
    Alternatives: Use project names as natural keys.
    """

    id: str
    name: str
    outcome: str
    status: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "outcome": self.outcome,
            "status": self.status,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class StoredTask:
    """Summary: Task record with database identifier.

    Importance: Allows tracking action items linked to projects and captures.
    Alternatives: Store tasks as free-form notes.
    """

    id: str
    title: str
    status: str
    gtd_list: str
    project_id: str | None
    tags: TagSet
    original_thought: str
    category: str | None
    subtasks: list[dict[str, Any]]
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "list": self.gtd_list,
            "projectId": self.project_id,
            "tags": self.tags.to_dict(),
            "originalThought": self.original_thought,
            "category": self.category,
            "subtasks": self.subtasks,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class StoredActivity:
    """Summary: Activity log record with database identifier.

    Importance: Supports the activity feed and audit reviews.
    Alternatives: Read activity from application logs.
    """

    id: str
    type: str
    description: str
    detail: str | None
    metadata: dict[str, Any]
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "detail": self.detail,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class StoredAiRequest:
    """Summary: AI request record with database identifier.

    Importance: Enables listing prompts sent to providers.
    Alternatives: Keep requests only in logs.
    """

    id: int
    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: str


@dataclass(frozen=True)
class StoredAiResponse:
    """Summary: AI response record with database identifier.

    Importance: Enables listing outputs and latency per request.
    Alternatives: Keep responses only in logs.
    """

    id: int
    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


def now_ms() -> int:
    """Summary: Current wall clock time in epoch milliseconds.

    Importance: Matches the numeric timestamps used across records.
    Alternatives: Store ISO-8601 strings.
    """

    return int(time.time() * 1000)


class SqliteStore:
    """Summary: SQLite-backed storage for CapturePilot.

    Importance: Holds captures, projects, tasks, and audit trails in one file.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)
        self._listeners: list[ChangeListener] = []
        self._listeners_lock = threading.Lock()

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before captures arrive.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS captures (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    original_text TEXT NOT NULL,
                    timestamp INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    rewritten_text TEXT NOT NULL DEFAULT '',
                    tags_json TEXT NOT NULL,
                    match_json TEXT NOT NULL,
                    list_hint TEXT NOT NULL DEFAULT 'next',
                    error TEXT,
                    apply_progress TEXT,
                    applied_project_id TEXT,
                    applied_task_id TEXT
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS captures_status_order ON captures (status, timestamp, seq)"
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    status TEXT NOT NULL,
                    list TEXT NOT NULL,
                    project_id TEXT,
                    tags_json TEXT NOT NULL,
                    original_thought TEXT NOT NULL,
                    category TEXT,
                    subtasks_json TEXT NOT NULL DEFAULT '[]',
                    created_at INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS activities (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    detail TEXT,
                    metadata_json TEXT NOT NULL,
                    timestamp INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            connection.commit()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Summary: Register a callback fired after every committed write.

        Importance: Lets the scheduler react to new captures without polling.
        Alternatives: Poll the captures table on an interval.
        """

        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def add_capture(self, text: str) -> CaptureRecord:
        """Summary: Persist a new pending capture.

        Importance: Entry point for every thought the user throws at the inbox.
        Alternatives: Queue captures in memory until classified.
        """

        record = CaptureRecord(
            id=str(uuid4()),
            original_text=text,
            timestamp=now_ms(),
            state=Pending(),
        )
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO captures (
                    id, original_text, timestamp, status, rewritten_text, tags_json, match_json, list_hint
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.original_text,
                    record.timestamp,
                    record.status,
                    record.rewritten_text,
                    json.dumps(record.tags_applied.to_dict()),
                    json.dumps(record.project_match.to_dict()),
                    record.list_hint,
                ),
            )
            connection.commit()
        self._notify("captures", record.id)
        return record

    def get_capture(self, record_id: str) -> CaptureRecord | None:
        """Summary: Retrieve a capture by id.

        Importance: Gives services a fresh view before each write.
        Alternatives: Cache captures in memory.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {_CAPTURE_COLUMNS} FROM captures WHERE id = ?", (record_id,))
            row = cursor.fetchone()
        return _capture_from_row(row) if row else None

    def require_capture(self, record_id: str) -> CaptureRecord:
        """Summary: Retrieve a capture or raise when it is missing.

        Importance: Keeps not-found handling uniform across services.
        Alternatives: Check for None at every call site.
        """

        record = self.get_capture(record_id)
        if record is None:
            raise RecordNotFoundError(f"Capture {record_id} not found")
        return record

    def list_captures(self, status: str | None = None, limit: int = 100) -> list[CaptureRecord]:
        """Summary: List captures, newest first.

        Importance: Powers the inbox log and the review queue.
        Alternatives: Page through captures by cursor.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if status is None:
                cursor.execute(
                    f"SELECT {_CAPTURE_COLUMNS} FROM captures ORDER BY timestamp DESC, seq DESC LIMIT ?",
                    (limit,),
                )
            else:
                cursor.execute(
                    f"""
                    SELECT {_CAPTURE_COLUMNS} FROM captures
                    WHERE status = ?
                    ORDER BY timestamp DESC, seq DESC
                    LIMIT ?
                    """,
                    (status, limit),
                )
            rows = cursor.fetchall()
        return [_capture_from_row(row) for row in rows]

    def oldest_pending(self, exclude: set[str] | None = None) -> CaptureRecord | None:
        """Summary: Return the oldest capture still pending.

        Importance: Defines the processing order of the pipeline.
        Alternatives: Process pending captures newest first.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_CAPTURE_COLUMNS} FROM captures
                WHERE status = ?
                ORDER BY timestamp ASC, seq ASC
                """,
                (STATUS_PENDING,),
            )
            for row in cursor:
                record = _capture_from_row(row)
                if exclude and record.id in exclude:
                    continue
                return record
        return None

    def transition_capture(
        self,
        record_id: str,
        expected_status: str,
        state: CaptureState,
        rewritten_text: str | None = None,
        tags: TagSet | None = None,
        list_hint: str | None = None,
    ) -> CaptureRecord:
        """Summary: Move a capture to a new state if it is still in the expected one.

        Importance: Applies status changes as compare-and-set so they never go backwards.
        Alternatives: Overwrite the status unconditionally.
        """

        assignments = ["status = ?", "match_json = ?", "error = ?"]
        values: list[Any] = [
            state.status,
            json.dumps(state.match.to_dict()),
            getattr(state, "error", None),
        ]
        if rewritten_text is not None:
            assignments.append("rewritten_text = ?")
            values.append(rewritten_text)
        if tags is not None:
            assignments.append("tags_json = ?")
            values.append(json.dumps(tags.to_dict()))
        if list_hint is not None:
            assignments.append("list_hint = ?")
            values.append(list_hint)
        values.extend([record_id, expected_status])
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"UPDATE captures SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                values,
            )
            updated = cursor.rowcount
            connection.commit()
        if not updated:
            current = self.require_capture(record_id)
            raise InvalidTransitionError(
                f"Capture {record_id} is {current.status}, expected {expected_status}"
            )
        self._notify("captures", record_id)
        return self.require_capture(record_id)

    def update_capture_draft(
        self,
        record_id: str,
        rewritten_text: str,
        tags: TagSet,
        match: ProjectMatch,
        list_hint: str,
    ) -> CaptureRecord:
        """Summary: Save human edits to a capture awaiting review.

        Importance: Accept files whatever the reviewer last saw.
        Alternatives: Pass edits only at accept time.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE captures
                SET rewritten_text = ?, tags_json = ?, match_json = ?, list_hint = ?
                WHERE id = ? AND status = ?
                """,
                (
                    rewritten_text,
                    json.dumps(tags.to_dict()),
                    json.dumps(match.to_dict()),
                    list_hint,
                    record_id,
                    STATUS_NEEDS_REVIEW,
                ),
            )
            updated = cursor.rowcount
            connection.commit()
        if not updated:
            current = self.require_capture(record_id)
            raise InvalidTransitionError(
                f"Capture {record_id} is {current.status}, expected {STATUS_NEEDS_REVIEW}"
            )
        self._notify("captures", record_id)
        return self.require_capture(record_id)

    def resolve_capture_project(
        self, capture_id: str, project: Project | None, project_id: str | None = None
    ) -> tuple[str, bool]:
        """Summary: Record the project a capture is filed under, creating it if given.

        Importance: Creates at most one project per capture even when retried.
        Alternatives: Create the project and mark progress in separate writes.
        """

        new_id = str(uuid4()) if project is not None else project_id
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE captures SET apply_progress = ?, applied_project_id = ?
                WHERE id = ? AND apply_progress IS NULL
                """,
                (PROGRESS_PROJECT_RESOLVED, new_id, capture_id),
            )
            if not cursor.rowcount:
                connection.rollback()
                existing = self.require_capture(capture_id)
                return existing.applied_project_id or "", False
            if project is not None:
                self._insert_project(cursor, new_id, project)
            connection.commit()
        if project is not None:
            self._notify("projects", new_id)
        self._notify("captures", capture_id)
        return new_id or "", project is not None

    def repoint_capture_project(
        self, capture_id: str, project: Project | None, project_id: str | None = None
    ) -> str:
        """Summary: Move a partly filed capture, and its task if created, to another project.

        Importance: A reviewer's project choice wins over the one resolved before a failure.
        Alternatives: Refuse project changes once filing has started.
        """

        new_id = str(uuid4()) if project is not None else project_id
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE captures SET applied_project_id = ?
                WHERE id = ? AND apply_progress IN (?, ?)
                """,
                (new_id, capture_id, PROGRESS_PROJECT_RESOLVED, PROGRESS_TASK_CREATED),
            )
            if not cursor.rowcount:
                connection.rollback()
                current = self.require_capture(capture_id)
                raise InvalidTransitionError(
                    f"Capture {capture_id} filing is {current.apply_progress}, project cannot change"
                )
            if project is not None:
                self._insert_project(cursor, new_id, project)
            cursor.execute(
                """
                UPDATE tasks SET project_id = ?
                WHERE id = (SELECT applied_task_id FROM captures WHERE id = ?)
                """,
                (new_id, capture_id),
            )
            connection.commit()
        if project is not None:
            self._notify("projects", new_id)
        self._notify("captures", capture_id)
        return new_id or ""

    def create_capture_task(self, capture_id: str, task: Task) -> str:
        """Summary: Create the task for a capture once its project is resolved.

        Importance: Creates at most one task per capture even when retried.
        Alternatives: Deduplicate tasks by original thought after the fact.
        """

        task_id = str(uuid4())
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                UPDATE captures SET apply_progress = ?, applied_task_id = ?
                WHERE id = ? AND apply_progress = ?
                """,
                (PROGRESS_TASK_CREATED, task_id, capture_id, PROGRESS_PROJECT_RESOLVED),
            )
            if not cursor.rowcount:
                connection.rollback()
                existing = self.require_capture(capture_id)
                return existing.applied_task_id or ""
            self._insert_task(cursor, task_id, task)
            connection.commit()
        self._notify("tasks", task_id)
        self._notify("captures", capture_id)
        return task_id

    def log_capture_activity(self, capture_id: str, entry: ActivityEntry) -> bool:
        """Summary: Append the activity entry for a capture once its task exists.

        Importance: Writes exactly one audit entry per filed capture.
        Alternatives: Tolerate duplicate audit entries on retry.
        """

        activity_id = str(uuid4())
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE captures SET apply_progress = ? WHERE id = ? AND apply_progress = ?",
                (PROGRESS_LOGGED, capture_id, PROGRESS_TASK_CREATED),
            )
            if not cursor.rowcount:
                connection.rollback()
                return False
            self._insert_activity(cursor, activity_id, entry)
            connection.commit()
        self._notify("activities", activity_id)
        self._notify("captures", capture_id)
        return True

    def create_project(self, project: Project) -> StoredProject:
        """Summary: Persist a project outside the capture pipeline.

        Importance: Supports reviewers creating projects by hand.
        Alternatives: Only let the classifier create projects.
        """

        project_id = str(uuid4())
        with self._connection() as connection:
            cursor = connection.cursor()
            self._insert_project(cursor, project_id, project)
            connection.commit()
        self._notify("projects", project_id)
        stored = self.get_project(project_id)
        assert stored is not None
        return stored

    def get_project(self, project_id: str) -> StoredProject | None:
        """Summary: Retrieve a project by id.

        Importance: Resolves project names for activity entries and reassignment.
        Alternatives: Carry names alongside every id.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, name, outcome, status, created_at FROM projects WHERE id = ?",
                (project_id,),
            )
            row = cursor.fetchone()
        return StoredProject(*row) if row else None

    def list_projects(self, status: str | None = None) -> list[StoredProject]:
        """Summary: List projects, newest first.

        Importance: Supplies the classifier with known projects.
        Alternatives: Send only project names to the classifier.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if status is None:
                cursor.execute(
                    "SELECT id, name, outcome, status, created_at FROM projects ORDER BY created_at DESC, rowid DESC"
                )
            else:
                cursor.execute(
                    """
                    SELECT id, name, outcome, status, created_at FROM projects
                    WHERE status = ? ORDER BY created_at DESC, rowid DESC
                    """,
                    (status,),
                )
            rows = cursor.fetchall()
        return [StoredProject(*row) for row in rows]

    def add_task(self, task: Task) -> StoredTask:
        """Summary: Persist a task outside the capture pipeline.

        Importance: Supports manual task entry alongside automatic filing.
        Alternatives: Route every task through a capture.
        """

        task_id = str(uuid4())
        with self._connection() as connection:
            cursor = connection.cursor()
            self._insert_task(cursor, task_id, task)
            connection.commit()
        self._notify("tasks", task_id)
        stored = self.get_task(task_id)
        assert stored is not None
        return stored

    def get_task(self, task_id: str) -> StoredTask | None:
        """Summary: Retrieve a task by id.

        Importance: Supports subtask decomposition and traceability checks.
        Alternatives: Filter tasks in memory after listing all.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, title, status, list, project_id, tags_json, original_thought,
                       category, subtasks_json, created_at
                FROM tasks WHERE id = ?
                """,
                (task_id,),
            )
            row = cursor.fetchone()
        return _task_from_row(row) if row else None

    def list_tasks(self, project_id: str | None = None, limit: int = 200) -> list[StoredTask]:
        """Summary: List tasks, optionally for one project, oldest first.

        Importance: Powers project views and task grouping.
        Alternatives: Query tasks by list bucket only.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if project_id is None:
                cursor.execute(
                    """
                    SELECT id, title, status, list, project_id, tags_json, original_thought,
                           category, subtasks_json, created_at
                    FROM tasks ORDER BY created_at ASC, rowid ASC LIMIT ?
                    """,
                    (limit,),
                )
            else:
                cursor.execute(
                    """
                    SELECT id, title, status, list, project_id, tags_json, original_thought,
                           category, subtasks_json, created_at
                    FROM tasks WHERE project_id = ? ORDER BY created_at ASC, rowid ASC LIMIT ?
                    """,
                    (project_id, limit),
                )
            rows = cursor.fetchall()
        return [_task_from_row(row) for row in rows]

    def set_task_categories(self, assignments: dict[str, str]) -> int:
        """Summary: Stamp category names onto tasks in one transaction.

        Importance: Applies a grouping result atomically.
        Alternatives: Update each task in its own write.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            updated = 0
            for task_id, category in assignments.items():
                cursor.execute("UPDATE tasks SET category = ? WHERE id = ?", (category, task_id))
                updated += cursor.rowcount
            connection.commit()
        for task_id in assignments:
            self._notify("tasks", task_id)
        return updated

    def append_subtasks(self, task_id: str, titles: list[str]) -> StoredTask:
        """Summary: Append generated subtasks to a task.

        Importance: Keeps existing subtasks while adding new ones verbatim.
        Alternatives: Replace the subtask list on every decomposition.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT subtasks_json FROM tasks WHERE id = ?", (task_id,))
            row = cursor.fetchone()
            if not row:
                raise RecordNotFoundError(f"Task {task_id} not found")
            subtasks = json.loads(row[0] or "[]")
            subtasks.extend({"id": str(uuid4()), "title": title, "completed": False} for title in titles)
            cursor.execute(
                "UPDATE tasks SET subtasks_json = ? WHERE id = ?", (json.dumps(subtasks), task_id)
            )
            connection.commit()
        self._notify("tasks", task_id)
        stored = self.get_task(task_id)
        assert stored is not None
        return stored

    def add_activity(self, entry: ActivityEntry) -> str:
        """Summary: Append an activity entry outside the capture pipeline.

        Importance: Records reviewer actions such as creating projects.
        Alternatives: Only audit automatic filings.
        """

        activity_id = str(uuid4())
        with self._connection() as connection:
            cursor = connection.cursor()
            self._insert_activity(cursor, activity_id, entry)
            connection.commit()
        self._notify("activities", activity_id)
        return activity_id

    def list_activities(self, limit: int = 50, activity_type: str | None = None) -> list[StoredActivity]:
        """Summary: List activity entries, newest first.

        Importance: Powers the activity feed.
        Alternatives: Tail application logs.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if activity_type is None:
                cursor.execute(
                    """
                    SELECT id, type, description, detail, metadata_json, timestamp
                    FROM activities ORDER BY timestamp DESC, rowid DESC LIMIT ?
                    """,
                    (limit,),
                )
            else:
                cursor.execute(
                    """
                    SELECT id, type, description, detail, metadata_json, timestamp
                    FROM activities WHERE type = ? ORDER BY timestamp DESC, rowid DESC LIMIT ?
                    """,
                    (activity_type, limit),
                )
            rows = cursor.fetchall()
        return [
            StoredActivity(
                id=row[0],
                type=row[1],
                description=row[2],
                detail=row[3],
                metadata=json.loads(row[4] or "{}"),
                timestamp=row[5],
            )
            for row in rows
        ]

    def log_ai_request(self, request: AiRequest) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and providers used by the system.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_requests (provider, model, prompt, purpose, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    request.provider,
                    request.model,
                    request.prompt,
                    request.purpose,
                    request.timestamp.isoformat(),
                ),
            )
            request_id = cursor.lastrowid
            connection.commit()
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        """Summary: Persist an AI response for auditing.

        Importance: Enables traceability of AI outputs and latency.
        Alternatives: Store responses in a flat log file.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
            connection.commit()
        return int(response_id)

    def list_ai_requests(self, limit: int) -> list[StoredAiRequest]:
        """Summary: List recent AI requests.

        Importance: Supports auditing prompts and purposes.
        Alternatives: Skip AI request storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, provider, model, prompt, purpose, timestamp
                FROM ai_requests ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiRequest(*row) for row in rows]

    def list_ai_responses(self, limit: int) -> list[StoredAiResponse]:
        """Summary: List recent AI responses.

        Importance: Supports auditing outputs and latency.
        Alternatives: Skip AI response storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, request_id, response_text, latency_ms, token_estimate
                FROM ai_responses ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiResponse(*row) for row in rows]

    def _insert_project(self, cursor: sqlite3.Cursor, project_id: str, project: Project) -> None:
        cursor.execute(
            "INSERT INTO projects (id, name, outcome, status, created_at) VALUES (?, ?, ?, ?, ?)",
            (project_id, project.name, project.outcome, project.status, now_ms()),
        )

    def _insert_task(self, cursor: sqlite3.Cursor, task_id: str, task: Task) -> None:
        cursor.execute(
            """
            INSERT INTO tasks (
                id, title, status, list, project_id, tags_json, original_thought, category, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                task.title,
                task.status,
                task.gtd_list,
                task.project_id,
                json.dumps(task.tags.to_dict()),
                task.original_thought,
                task.category,
                now_ms(),
            ),
        )

    def _insert_activity(self, cursor: sqlite3.Cursor, activity_id: str, entry: ActivityEntry) -> None:
        cursor.execute(
            """
            INSERT INTO activities (id, type, description, detail, metadata_json, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                activity_id,
                entry.type,
                entry.description,
                entry.detail,
                json.dumps(entry.metadata),
                now_ms(),
            ),
        )

    def _notify(self, collection: str, record_id: str) -> None:
        """Summary: Fan a committed change out to subscribers.

        Importance: A failing subscriber must not undo a committed write.
        Alternatives: Let listener errors propagate to the writer.
        """

        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(collection, record_id)
            except Exception:
                logger.exception("Change listener failed for %s %s.", collection, record_id)

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=30)
        try:
            yield connection
        finally:
            connection.close()


def _capture_from_row(row: tuple[Any, ...]) -> CaptureRecord:
    """Summary: Convert a captures row into a CaptureRecord."""

    (
        record_id,
        original_text,
        timestamp,
        status,
        rewritten_text,
        tags_json,
        match_json,
        list_hint,
        error,
        apply_progress,
        applied_project_id,
        applied_task_id,
    ) = row
    match = ProjectMatch.from_dict(json.loads(match_json or "{}"))
    return CaptureRecord(
        id=record_id,
        original_text=original_text,
        timestamp=int(timestamp),
        state=build_state(status, match, error),
        rewritten_text=rewritten_text or "",
        tags_applied=TagSet.from_dict(json.loads(tags_json or "{}")),
        list_hint=list_hint or "next",
        apply_progress=apply_progress,
        applied_project_id=applied_project_id,
        applied_task_id=applied_task_id,
    )


def _task_from_row(row: tuple[Any, ...]) -> StoredTask:
    """Summary: Convert a tasks row into a StoredTask."""

    return StoredTask(
        id=row[0],
        title=row[1],
        status=row[2],
        gtd_list=row[3],
        project_id=row[4],
        tags=TagSet.from_dict(json.loads(row[5] or "{}")),
        original_thought=row[6],
        category=row[7],
        subtasks=json.loads(row[8] or "[]"),
        created_at=row[9],
    )
