"""Summary: Domain model dataclasses for CapturePilot.

Importance: Defines captures, classifications, and the entities they are filed into.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, ClassVar, Union

from capturepilot.errors import InvalidTransitionError

TIME_ESTIMATES = ("5 min", "15 min", "30 min", "60 min+")
CONTEXT_TAGS = ("@calls", "@computer", "@errands", "@home", "@office", "Admin")
GTD_LISTS = ("next", "waiting", "someday")
PROJECT_STATUSES = ("active", "completed", "archived")
TASK_STATUSES = ("todo", "done")

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_NEEDS_REVIEW = "needs-review"
STATUS_DISCARDED = "discarded"
CAPTURE_STATUSES = (STATUS_PENDING, STATUS_SUCCESS, STATUS_NEEDS_REVIEW, STATUS_DISCARDED)

PROGRESS_PROJECT_RESOLVED = "project-resolved"
PROGRESS_TASK_CREATED = "task-created"
PROGRESS_LOGGED = "logged"

ACTIVITY_AI_PROCESSED = "ai-processed"
ACTIVITY_USER_CREATE_PROJECT = "user-create-project"

DEFAULT_OUTCOME = "No outcome defined"
REVIEW_OUTCOME = "Created from review"
DEFAULT_TIME = "15 min"
DEFAULT_LIST = "next"


@dataclass(frozen=True)
class TagSet:
    """Summary: Tags applied to a capture or task.

    Importance: Carries one time estimate and free-form context labels.
    Alternatives: Store tags as a flat list of strings.
    """

    time: str = DEFAULT_TIME
    contexts: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize tags for JSON storage and responses."""

        return {"time": self.time, "contexts": list(self.contexts)}

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "TagSet":
        """Summary: Build tags from a stored or submitted mapping."""

        if not data:
            return TagSet()
        return TagSet(
            time=data.get("time") or DEFAULT_TIME,
            contexts=tuple(data.get("contexts") or ()),
        )


@dataclass(frozen=True)
class ProjectMatch:
    """Summary: The classifier's choice of project for a capture.

    Importance: Confidence here gates automatic filing.
    Alternatives: Store only a project id without provenance.
    """

    name: str
    confidence: int
    is_new: bool
    id: str | None = None
    outcome: str | None = None

    def confirmed(self, project_id: str) -> "ProjectMatch":
        """Summary: Return the match pinned to a resolved project.

        Importance: Records the final project with full confidence for audit.
        Alternatives: Keep the original confidence on success.
        """

        return replace(self, id=project_id, confidence=100)

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize the match using the external field names."""

        return {
            "id": self.id,
            "name": self.name,
            "confidence": self.confidence,
            "isNew": self.is_new,
            "outcome": self.outcome,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "ProjectMatch":
        """Summary: Build a match from a stored or submitted mapping."""

        if not data:
            return EMPTY_MATCH
        return ProjectMatch(
            name=data.get("name") or "",
            confidence=int(data.get("confidence") or 0),
            is_new=bool(data.get("isNew", data.get("is_new", False))),
            id=data.get("id") or None,
            outcome=data.get("outcome") or None,
        )


EMPTY_MATCH = ProjectMatch(name="", confidence=0, is_new=False)
ERROR_MATCH = ProjectMatch(name="Error", confidence=0, is_new=False)


@dataclass(frozen=True)
class ClassificationResult:
    """Summary: Structured output produced from a capture.

    Importance: Feeds both the confidence gate and the effect applier.
    Alternatives: Pass the raw provider JSON around.
    """

    rewritten_title: str
    gtd_list: str
    tags: TagSet
    project_match: ProjectMatch

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize the result in the classification wire format."""

        return {
            "rewrittenTitle": self.rewritten_title,
            "list": self.gtd_list,
            "tags": self.tags.to_dict(),
            "projectMatch": self.project_match.to_dict(),
        }


@dataclass(frozen=True)
class Pending:
    """Summary: A capture waiting to be classified.

    Importance: Only pending captures can be claimed by the scheduler.
    Alternatives: Use a nullable processed_at column.
    """

    status: ClassVar[str] = STATUS_PENDING

    @property
    def match(self) -> ProjectMatch:
        return EMPTY_MATCH

    def succeed(self, final_match: ProjectMatch) -> "Succeeded":
        """Summary: Move straight to success after automatic filing."""

        return Succeeded(final_match=final_match)

    def flag(self, draft_match: ProjectMatch, error: str | None = None) -> "NeedsReview":
        """Summary: Send the capture to the human review queue."""

        return NeedsReview(draft_match=draft_match, error=error)


@dataclass(frozen=True)
class Succeeded:
    """Summary: A capture filed into a project and task.

    Importance: Terminal state carrying the confirmed project match.
    Alternatives: Drop the match once filed.
    """

    final_match: ProjectMatch
    status: ClassVar[str] = STATUS_SUCCESS

    @property
    def match(self) -> ProjectMatch:
        return self.final_match


@dataclass(frozen=True)
class NeedsReview:
    """Summary: A capture waiting for a human decision.

    Importance: Holds the editable draft match and any classification error.
    Alternatives: Keep review drafts in a separate table.
    """

    draft_match: ProjectMatch
    error: str | None = None
    status: ClassVar[str] = STATUS_NEEDS_REVIEW

    @property
    def match(self) -> ProjectMatch:
        return self.draft_match

    def revise(self, draft_match: ProjectMatch) -> "NeedsReview":
        """Summary: Replace the draft match after a human edit."""

        return NeedsReview(draft_match=draft_match, error=self.error)

    def accept(self, final_match: ProjectMatch) -> Succeeded:
        """Summary: Resolve the review by filing the capture."""

        return Succeeded(final_match=final_match)

    def discard(self) -> "Discarded":
        """Summary: Resolve the review without creating anything."""

        return Discarded(draft_match=self.draft_match)


@dataclass(frozen=True)
class Discarded:
    """Summary: A capture the user chose not to file.

    Importance: Terminal state; the record is kept for history.
    Alternatives: Delete discarded captures.
    """

    draft_match: ProjectMatch
    status: ClassVar[str] = STATUS_DISCARDED

    @property
    def match(self) -> ProjectMatch:
        return self.draft_match


CaptureState = Union[Pending, Succeeded, NeedsReview, Discarded]


def build_state(status: str, match: ProjectMatch, error: str | None = None) -> CaptureState:
    """Summary: Rebuild a capture state variant from stored columns.

    Importance: Keeps the persisted status string and the variant in sync.
    Alternatives: Pickle the variant directly.
    """

    if status == STATUS_PENDING:
        return Pending()
    if status == STATUS_SUCCESS:
        return Succeeded(final_match=match)
    if status == STATUS_NEEDS_REVIEW:
        return NeedsReview(draft_match=match, error=error)
    if status == STATUS_DISCARDED:
        return Discarded(draft_match=match)
    raise InvalidTransitionError(f"Unknown capture status {status!r}")


def require_state(state: CaptureState, expected: type) -> Any:
    """Summary: Assert a capture is in the expected state variant.

    Importance: Turns forbidden transitions into explicit errors.
    Alternatives: Check status strings at each call site.
    """

    if not isinstance(state, expected):
        raise InvalidTransitionError(
            f"Capture is {state.status}, expected {expected.status}"
        )
    return state


@dataclass(frozen=True)
class CaptureRecord:
    """Summary: A raw thought and what happened to it.

    Importance: Root truth for everything the user has thrown at the inbox.
    Alternatives: Store captures as tasks with a draft flag.
    """

    id: str
    original_text: str
    timestamp: int
    state: CaptureState
    rewritten_text: str = ""
    tags_applied: TagSet = TagSet()
    list_hint: str = DEFAULT_LIST
    apply_progress: str | None = None
    applied_project_id: str | None = None
    applied_task_id: str | None = None

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def project_match(self) -> ProjectMatch:
        return self.state.match

    @property
    def error(self) -> str | None:
        return getattr(self.state, "error", None)

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize the capture for API and CLI output."""

        return {
            "id": self.id,
            "originalText": self.original_text,
            "rewrittenText": self.rewritten_text,
            "tagsApplied": self.tags_applied.to_dict(),
            "projectMatch": self.project_match.to_dict(),
            "list": self.list_hint,
            "status": self.status,
            "error": self.error,
            "timestamp": self.timestamp,
            "applyProgress": self.apply_progress,
        }


@dataclass(frozen=True)
class Project:
    """Summary: A project that tasks are filed under.

    Importance: The name is what the classifier matches against.
    Alternatives: Use free-form tags instead of projects.
    """

    name: str
    outcome: str = DEFAULT_OUTCOME
    status: str = "active"


@dataclass(frozen=True)
class Task:
    """Summary: An actionable task produced from a capture or by hand.

    Importance: Keeps a back-reference to the thought that produced it.
    Alternatives: Store tasks without provenance.
    """

    title: str
    gtd_list: str
    tags: TagSet
    original_thought: str
    project_id: str | None = None
    status: str = "todo"
    category: str | None = None


@dataclass(frozen=True)
class ActivityEntry:
    """Summary: An append-only audit trail entry.

    Importance: Explains what the pipeline did and why.
    Alternatives: Rely on application logs only.
    """

    type: str
    description: str
    detail: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and future tuning based on outputs.
    Alternatives: Store only final outputs on the capture record.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int
