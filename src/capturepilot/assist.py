"""Summary: AI assist requests for breaking down, grouping, and discussing tasks.

Importance: Adds structure to filed tasks without touching the capture pipeline.
Alternatives: Ask users to split and group tasks by hand.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from capturepilot.ai import PURPOSE_CHAT, PURPOSE_GROUPING, PURPOSE_SUBTASKS, AuditedAiClient
from capturepilot.errors import AssistError, RecordNotFoundError
from capturepilot.prompts import build_chat_prompt, build_grouping_prompt, build_subtask_prompt
from capturepilot.storage.sqlite_store import SqliteStore, StoredTask


logger = logging.getLogger(__name__)

MIN_SUBTASKS = 3
MAX_SUBTASKS = 6
UNCATEGORIZED = "Uncategorized"
CHAT_TASK_LIMIT = 200


class SubtaskPayload(BaseModel):
    """Summary: Wire schema of a decomposition response."""

    subtasks: list[str]


class GroupPayload(BaseModel):
    """Summary: One category and the task ids placed in it."""

    model_config = ConfigDict(populate_by_name=True)

    category_name: str = Field(alias="categoryName")
    task_ids: list[str] = Field(alias="taskIds", default_factory=list)


class GroupingPayload(BaseModel):
    """Summary: Wire schema of a grouping response."""

    groups: list[GroupPayload]


class ChatPayload(BaseModel):
    """Summary: Wire schema of a chat reply."""

    reply: str


@dataclass(frozen=True)
class SubtaskService:
    """Summary: Decomposes a task into short sequential subtasks.

    Importance: Makes large tasks actionable without manual planning.
    Alternatives: Keep tasks monolithic.
    """

    store: SqliteStore
    ai: AuditedAiClient

    def decompose(self, title: str, context: str | None = None) -> list[str]:
        """Summary: Ask the AI provider for three to six subtasks.

        Importance: Replies with fewer than three usable steps are treated as failures.
        Alternatives: Accept any number of subtasks.
        """

        if not title.strip():
            raise ValueError("Task title is required")
        prompt = build_subtask_prompt(title.strip(), context)
        payload = _parse(self._generate(prompt, PURPOSE_SUBTASKS), SubtaskPayload)
        subtasks = [item.strip() for item in payload.subtasks if item and item.strip()]
        if len(subtasks) < MIN_SUBTASKS:
            raise AssistError(f"Expected at least {MIN_SUBTASKS} subtasks, got {len(subtasks)}")
        return subtasks[:MAX_SUBTASKS]

    def apply_to_task(self, task_id: str) -> StoredTask:
        """Summary: Decompose a stored task and append the subtasks verbatim.

        Importance: Existing subtasks on the task are preserved.
        Alternatives: Replace the task's subtasks.
        """

        task = self.store.get_task(task_id)
        if task is None:
            raise RecordNotFoundError(f"Task {task_id} not found")
        project = self.store.get_project(task.project_id) if task.project_id else None
        context = f"Project: {project.name}" if project else None
        titles = self.decompose(task.title, context)
        updated = self.store.append_subtasks(task_id, titles)
        logger.info("Added %s subtasks to task %s.", len(titles), task_id)
        return updated

    def _generate(self, prompt: str, purpose: str) -> str:
        try:
            return self.ai.generate(prompt, purpose=purpose)
        except Exception as exc:
            raise AssistError(f"Subtask provider failed: {exc}") from exc


@dataclass(frozen=True)
class GroupingService:
    """Summary: Sorts a project's tasks into sub-categories.

    Importance: Keeps long projects scannable.
    Alternatives: Group tasks by list bucket only.
    """

    store: SqliteStore
    ai: AuditedAiClient

    def group(
        self,
        project_name: str,
        tasks: list[dict[str, str]],
        existing_groups: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Summary: Ask the AI provider to group tasks and normalize the answer.

        Importance: Each input task id lands in exactly one group.
        Alternatives: Trust the provider's grouping as returned.
        """

        if not tasks:
            return []
        prompt = build_grouping_prompt(project_name, tasks, existing_groups or [])
        try:
            response_text = self.ai.generate(prompt, purpose=PURPOSE_GROUPING)
        except Exception as exc:
            raise AssistError(f"Grouping provider failed: {exc}") from exc
        payload = _parse(response_text, GroupingPayload)
        return normalize_groups(payload.groups, [task["id"] for task in tasks])

    def apply_to_project(self, project_id: str) -> list[dict[str, Any]]:
        """Summary: Group a project's uncategorized tasks and stamp their category.

        Importance: Categorized tasks keep their current group.
        Alternatives: Regroup every task on each request.
        """

        project = self.store.get_project(project_id)
        if project is None:
            raise RecordNotFoundError(f"Project {project_id} not found")
        tasks = self.store.list_tasks(project_id=project_id, limit=1000)
        existing = sorted({task.category for task in tasks if task.category})
        uncategorized = [{"id": task.id, "title": task.title} for task in tasks if not task.category]
        groups = self.group(project.name, uncategorized, existing)
        assignments = {
            task_id: group["categoryName"] for group in groups for task_id in group["taskIds"]
        }
        if assignments:
            self.store.set_task_categories(assignments)
        logger.info("Grouped %s tasks in project %s.", len(assignments), project_id)
        return groups


@dataclass(frozen=True)
class ChatService:
    """Summary: Answers questions about the stored tasks and projects.

    Importance: Lets users ask what is on their plate without browsing every list.
    Alternatives: Only offer keyword search over tasks.
    """

    store: SqliteStore
    ai: AuditedAiClient

    def reply(self, message: str, context: dict[str, Any] | str | None = None) -> str:
        """Summary: Ask the AI provider to answer a message from a task snapshot.

        Importance: Without a supplied context the current store is summarized.
        Alternatives: Require clients to always send their own context.
        """

        if not message.strip():
            raise ValueError("Message is required")
        snapshot = self.snapshot() if context is None else context
        prompt = build_chat_prompt(message.strip(), snapshot)
        try:
            response_text = self.ai.generate(prompt, purpose=PURPOSE_CHAT)
        except Exception as exc:
            raise AssistError(f"Chat provider failed: {exc}") from exc
        answer = _parse(response_text, ChatPayload).reply.strip()
        if not answer:
            raise AssistError("Chat reply was empty")
        logger.info("Answered chat message (%s chars).", len(answer))
        return answer

    def snapshot(self) -> dict[str, Any]:
        """Summary: Summarize stored tasks and projects for the chat prompt."""

        tasks = self.store.list_tasks(limit=CHAT_TASK_LIMIT)
        return {
            "tasks": [
                {"id": task.id, "title": task.title, "list": task.gtd_list, "tags": task.tags.to_dict()}
                for task in tasks
            ],
            "projects": [
                {"name": project.name, "status": project.status, "outcome": project.outcome}
                for project in self.store.list_projects()
            ],
        }


def normalize_groups(groups: list[GroupPayload], task_ids: list[str]) -> list[dict[str, Any]]:
    """Summary: Make a grouping cover each task id exactly once.

    Importance: Unknown ids are dropped, repeats keep their first group, and missing ids
    go to Uncategorized.
    Alternatives: Reject imperfect groupings outright.
    """

    known = set(task_ids)
    seen: set[str] = set()
    ordered: dict[str, list[str]] = {}
    for group in groups:
        name = group.category_name.strip() or UNCATEGORIZED
        for task_id in group.task_ids:
            if task_id not in known or task_id in seen:
                continue
            seen.add(task_id)
            ordered.setdefault(name, []).append(task_id)
    missing = [task_id for task_id in dict.fromkeys(task_ids) if task_id not in seen]
    if missing:
        ordered.setdefault(UNCATEGORIZED, []).extend(missing)
    return [{"categoryName": name, "taskIds": ids} for name, ids in ordered.items() if ids]


def _parse(response_text: str, model: type[BaseModel]) -> Any:
    """Summary: Validate an assist reply against its wire schema."""

    if not (response_text or "").strip():
        raise AssistError("Assist response was empty")
    try:
        return model.model_validate(json.loads(response_text))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise AssistError(f"Assist response was malformed: {exc}") from exc
