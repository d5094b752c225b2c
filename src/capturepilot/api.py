"""Summary: FastAPI application for CapturePilot.

Importance: Exposes capture, review, and assist endpoints for UI clients and workers.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from capturepilot.app import AppServices, build_services
from capturepilot.config import AppConfig
from capturepilot.errors import (
    AssistError,
    ClassificationError,
    InvalidTransitionError,
    RecordNotFoundError,
)
from capturepilot.models import ProjectMatch, TagSet


logger = logging.getLogger(__name__)


class KnownProject(BaseModel):
    """Summary: Project reference sent alongside a classification request."""

    id: str
    name: str


class ProcessRequest(BaseModel):
    """Summary: Request payload for classifying raw text.

    Importance: Mirrors the contract used by remote classifier workers.
    Alternatives: Read the project list from the store on every call.
    """

    model_config = ConfigDict(populate_by_name=True)

    text: str
    existing_projects: list[KnownProject] = Field(default_factory=list, alias="existingProjects")


class SubtaskRequest(BaseModel):
    """Summary: Request payload for subtask decomposition."""

    title: str
    context: str | None = None


class TaskRef(BaseModel):
    """Summary: Task reference sent for grouping."""

    id: str
    title: str


class GroupTasksRequest(BaseModel):
    """Summary: Request payload for grouping tasks into categories.

    Importance: Keeps grouping independent from stored projects.
    Alternatives: Only group tasks already stored in a project.
    """

    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(default="", alias="projectName")
    tasks: list[TaskRef] = Field(default_factory=list)
    existing_groups: list[str] = Field(default_factory=list, alias="existingGroups")


class ChatRequest(BaseModel):
    """Summary: Request payload for the task assistant chat.

    Importance: Clients may send their own task snapshot as context.
    Alternatives: Always answer from the stored tasks.
    """

    message: str
    context: dict[str, Any] | str | None = None


class CaptureCreateRequest(BaseModel):
    """Summary: Request payload for capturing a thought."""

    text: str


class TagsBody(BaseModel):
    """Summary: Tags submitted with a review edit."""

    time: str = "15 min"
    contexts: list[str] = Field(default_factory=list)


class ProjectMatchBody(BaseModel):
    """Summary: Project match submitted with a review edit."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    confidence: int = Field(default=100, ge=0, le=100)
    is_new: bool = Field(default=False, alias="isNew")
    id: str | None = None
    outcome: str | None = None


class CaptureEditRequest(BaseModel):
    """Summary: Request payload for editing a review draft.

    Importance: Only the fields present are changed.
    Alternatives: Require the full draft on every edit.
    """

    model_config = ConfigDict(populate_by_name=True)

    rewritten_text: str | None = Field(default=None, alias="rewrittenText")
    tags: TagsBody | None = None
    project_match: ProjectMatchBody | None = Field(default=None, alias="projectMatch")
    gtd_list: str | None = Field(default=None, alias="list")


class ReassignRequest(BaseModel):
    """Summary: Request payload for filing a capture under an existing project."""

    project_id: str


class CreateProjectRequest(BaseModel):
    """Summary: Request payload for creating a project.

    Importance: Used both for manual projects and for review resolution.
    Alternatives: Create projects only through the pipeline.
    """

    name: str
    outcome: str | None = None


class TaskCreateRequest(BaseModel):
    """Summary: Request payload for manual task creation."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    project_id: str | None = None
    gtd_list: str = Field(default="next", alias="list")


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to CapturePilot services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if config.auto_process:
            await services.scheduler.start()
        try:
            yield
        finally:
            await services.scheduler.stop()

    app = FastAPI(title="CapturePilot API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.exception_handler(RecordNotFoundError)
    async def not_found(_: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(_: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ClassificationError)
    async def classification_failed(_: Request, exc: ClassificationError) -> JSONResponse:
        logger.warning("Classification request failed: %s", exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(AssistError)
    async def assist_failed(_: Request, exc: AssistError) -> JSONResponse:
        logger.warning("Assist request failed: %s", exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def bad_request(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health() -> dict[str, Any]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok", "scheduler": services.scheduler.running}

    @app.post("/process", dependencies=[Depends(require_api_key)])
    def process(payload: ProcessRequest) -> dict[str, Any]:
        """Summary: Classify raw text against a list of known projects.

        Importance: Serves remote workers configured with a classifier URL.
        Alternatives: Require every worker to hold provider credentials.
        """

        if not payload.text.strip():
            raise HTTPException(status_code=400, detail="Text is required")
        known = [{"id": project.id, "name": project.name} for project in payload.existing_projects]
        result = services.local_classifier.classify(payload.text, known)
        return result.to_dict()

    @app.post("/subtasks", dependencies=[Depends(require_api_key)])
    def subtasks(payload: SubtaskRequest) -> dict[str, Any]:
        """Summary: Break a task title into subtasks."""

        return {"subtasks": services.subtasks.decompose(payload.title, payload.context)}

    @app.post("/group-tasks", dependencies=[Depends(require_api_key)])
    def group_tasks(payload: GroupTasksRequest) -> dict[str, Any]:
        """Summary: Group tasks into categories.

        Importance: Every submitted task id appears in exactly one group.
        Alternatives: Return the provider's grouping unmodified.
        """

        tasks = [{"id": task.id, "title": task.title} for task in payload.tasks]
        groups = services.grouping.group(payload.project_name, tasks, payload.existing_groups)
        return {"groups": groups}

    @app.post("/chat", dependencies=[Depends(require_api_key)])
    def chat(payload: ChatRequest) -> dict[str, Any]:
        """Summary: Answer a question about tasks and projects."""

        return {"reply": services.chat.reply(payload.message, payload.context)}

    @app.post("/captures", dependencies=[Depends(require_api_key)])
    def create_capture(payload: CaptureCreateRequest) -> dict[str, Any]:
        """Summary: Capture a raw thought for processing."""

        return services.captures.capture(payload.text).to_dict()

    @app.get("/captures", dependencies=[Depends(require_api_key)])
    def list_captures(
        status: str | None = None, limit: int = Query(default=100, ge=1, le=500)
    ) -> list[dict[str, Any]]:
        """Summary: List captures, newest first."""

        return [record.to_dict() for record in services.captures.list_captures(status, limit)]

    @app.post("/captures/process", dependencies=[Depends(require_api_key)])
    async def process_captures() -> dict[str, Any]:
        """Summary: Process every pending capture now.

        Importance: Lets clients run the pipeline when the background worker is off.
        Alternatives: Only process captures in the background.
        """

        outcomes = await services.scheduler.drain()
        return {"processed": [outcome.to_dict() for outcome in outcomes]}

    @app.get("/captures/{capture_id}", dependencies=[Depends(require_api_key)])
    def get_capture(capture_id: str) -> dict[str, Any]:
        """Summary: Fetch one capture."""

        return services.captures.get(capture_id).to_dict()

    @app.patch("/captures/{capture_id}", dependencies=[Depends(require_api_key)])
    def edit_capture(capture_id: str, payload: CaptureEditRequest) -> dict[str, Any]:
        """Summary: Edit the draft of a capture under review."""

        tags = (
            TagSet(time=payload.tags.time, contexts=tuple(payload.tags.contexts))
            if payload.tags
            else None
        )
        match = (
            ProjectMatch(
                name=payload.project_match.name,
                confidence=payload.project_match.confidence,
                is_new=payload.project_match.is_new,
                id=payload.project_match.id,
                outcome=payload.project_match.outcome,
            )
            if payload.project_match
            else None
        )
        record = services.review.edit(
            capture_id,
            rewritten_text=payload.rewritten_text,
            tags=tags,
            project_match=match,
            gtd_list=payload.gtd_list,
        )
        return record.to_dict()

    @app.post("/captures/{capture_id}/accept", dependencies=[Depends(require_api_key)])
    def accept_capture(capture_id: str) -> dict[str, Any]:
        """Summary: Accept a capture under review."""

        return services.review.accept(capture_id).to_dict()

    @app.post("/captures/{capture_id}/discard", dependencies=[Depends(require_api_key)])
    def discard_capture(capture_id: str) -> dict[str, Any]:
        """Summary: Discard a capture under review."""

        return services.review.discard(capture_id).to_dict()

    @app.post("/captures/{capture_id}/reassign", dependencies=[Depends(require_api_key)])
    def reassign_capture(capture_id: str, payload: ReassignRequest) -> dict[str, Any]:
        """Summary: File a capture under review into an existing project."""

        return services.review.reassign(capture_id, payload.project_id).to_dict()

    @app.post("/captures/{capture_id}/create-project", dependencies=[Depends(require_api_key)])
    def create_project_for_capture(capture_id: str, payload: CreateProjectRequest) -> dict[str, Any]:
        """Summary: Create a project and file a capture under review into it."""

        if payload.outcome:
            effect = services.review.create_project_and_accept(capture_id, payload.name, payload.outcome)
        else:
            effect = services.review.create_project_and_accept(capture_id, payload.name)
        return effect.to_dict()

    @app.get("/projects", dependencies=[Depends(require_api_key)])
    def list_projects(status: str | None = None) -> list[dict[str, Any]]:
        """Summary: List projects, newest first."""

        return [project.to_dict() for project in services.projects.list_projects(status)]

    @app.post("/projects", dependencies=[Depends(require_api_key)])
    def create_project(payload: CreateProjectRequest) -> dict[str, Any]:
        """Summary: Create a project by hand."""

        return services.projects.create_project(payload.name, payload.outcome).to_dict()

    @app.post("/projects/{project_id}/group-tasks", dependencies=[Depends(require_api_key)])
    def group_project_tasks(project_id: str) -> dict[str, Any]:
        """Summary: Group a project's uncategorized tasks and save their categories."""

        return {"groups": services.grouping.apply_to_project(project_id)}

    @app.get("/tasks", dependencies=[Depends(require_api_key)])
    def list_tasks(
        project_id: str | None = None, limit: int = Query(default=200, ge=1, le=1000)
    ) -> list[dict[str, Any]]:
        """Summary: List tasks, oldest first."""

        return [task.to_dict() for task in services.projects.list_tasks(project_id, limit)]

    @app.post("/tasks", dependencies=[Depends(require_api_key)])
    def create_task(payload: TaskCreateRequest) -> dict[str, Any]:
        """Summary: Create a task by hand."""

        task = services.projects.add_task(payload.title, payload.project_id, payload.gtd_list)
        return task.to_dict()

    @app.post("/tasks/{task_id}/subtasks", dependencies=[Depends(require_api_key)])
    def decompose_task(task_id: str) -> dict[str, Any]:
        """Summary: Decompose a stored task and append the subtasks."""

        return services.subtasks.apply_to_task(task_id).to_dict()

    @app.get("/activities", dependencies=[Depends(require_api_key)])
    def list_activities(
        limit: int = Query(default=50, ge=1, le=500),
        activity_type: str | None = Query(default=None, alias="type"),
    ) -> list[dict[str, Any]]:
        """Summary: List recent activity entries."""

        return [entry.to_dict() for entry in services.activity.recent(limit, activity_type)]

    @app.get("/ai/requests", dependencies=[Depends(require_api_key)])
    def list_ai_requests(limit: int = Query(default=20, ge=1, le=200)) -> list[dict[str, Any]]:
        """Summary: List recent AI requests.

        Importance: Supports auditing prompts and AI usage.
        Alternatives: Inspect the SQLite database manually.
        """

        return services.ai_audit.list_requests(limit)

    @app.get("/ai/responses", dependencies=[Depends(require_api_key)])
    def list_ai_responses(limit: int = Query(default=20, ge=1, le=200)) -> list[dict[str, Any]]:
        """Summary: List recent AI responses."""

        return services.ai_audit.list_responses(limit)

    return app
