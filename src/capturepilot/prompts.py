"""Summary: Prompt templates for classification and assist requests.

Importance: Keeps model instructions in one place and out of service code.
Alternatives: Inline prompt strings in each provider call.
"""

from __future__ import annotations

import json
from typing import Any

from capturepilot.models import CONTEXT_TAGS, TIME_ESTIMATES

INPUT_MARKER = "INPUT:"

CLASSIFICATION_PROMPT = """
You are the Action Processor of a GTD-based second brain.
Transform a raw thought into a standardized task and assign it to a project.
Return JSON only. No markdown. No explanation.

{project_context}

Rules:
- REWRITE the thought into an actionable task title but keep it close to the original.
  Start with a strong verb if one is missing. Do not drop specific details.
  "Buy milk" stays "Buy milk". Only clarify when the input is too vague to act on.
- CLASSIFY into one GTD list: "next" (do it soon), "waiting" (waiting on someone), "someday" (maybe later).
- TAG with exactly one time tag and any relevant context tags.
- MATCH an existing project from the list above when it clearly fits: set "isNew" to false and give its id.
  Otherwise propose a new project name and a concrete outcome, and set "isNew" to true.
- "confidence" (0-100) describes how sure you are about the project choice only,
  not about the rewrite.

Allowed time tags: {time_tags}
Allowed context tags: {context_tags}

Schema:
{{
  "rewrittenTitle": "string",
  "list": "next|waiting|someday",
  "tags": {{"time": "one time tag", "contexts": ["context tag"]}},
  "projectMatch": {{
    "id": "existing project id or null",
    "name": "existing or new project name",
    "isNew": false,
    "outcome": "required when isNew, else null",
    "confidence": 0
  }}
}}
""".strip()

SUBTASK_PROMPT = """
You are a GTD task decomposer.
Break the task into 3-6 logical, sequential subtasks.
Each subtask is a short actionable phrase starting with a verb.
Return JSON only: {"subtasks": ["string", "string", "string"]}
""".strip()

GROUPING_PROMPT = """
You are a project manager organizing uncategorized tasks into sub-categories.
Assign each task to one of the existing categories when it clearly fits, using the exact name.
Otherwise create a short descriptive category such as "Research" or "Admin".
Group every task provided exactly once. Do not rename existing categories.
Return JSON only: {"groups": [{"categoryName": "string", "taskIds": ["id"]}]}
""".strip()

CHAT_PROMPT = """
You are the assistant of a GTD-based second brain task manager.
Answer the user strictly from the tasks and projects in the context.
If asked to show or pull tasks, list the matching task titles.
If asked to tidy up, suggest old or low priority tasks to review.
You cannot create, edit, or delete tasks. Say so if asked.
Be concise.
Return JSON only: {"reply": "string"}
""".strip()


def build_classification_prompt(text: str, known_projects: list[dict[str, str]]) -> str:
    """Summary: Build the classification prompt for a capture.

    Importance: Gives the model the current project list as matching context.
    Alternatives: Let the model invent project ids without context.
    """

    if known_projects:
        lines = "\n".join(f"- {project['id']}: {project['name']}" for project in known_projects)
        project_context = f"EXISTING PROJECTS (ID: Name):\n{lines}"
    else:
        project_context = "NO EXISTING PROJECTS."
    instructions = CLASSIFICATION_PROMPT.format(
        project_context=project_context,
        time_tags=", ".join(f'"{tag}"' for tag in TIME_ESTIMATES),
        context_tags=", ".join(f'"{tag}"' for tag in CONTEXT_TAGS),
    )
    return _with_input(instructions, {"text": text, "existingProjects": known_projects})


def build_subtask_prompt(title: str, context: str | None) -> str:
    """Summary: Build the subtask decomposition prompt."""

    return _with_input(SUBTASK_PROMPT, {"title": title, "context": context or "None"})


def build_grouping_prompt(
    project_name: str, tasks: list[dict[str, str]], existing_groups: list[str]
) -> str:
    """Summary: Build the task grouping prompt."""

    return _with_input(
        GROUPING_PROMPT,
        {
            "projectName": project_name or "Unnamed Project",
            "tasks": tasks,
            "existingGroups": existing_groups,
        },
    )


def build_chat_prompt(message: str, context: Any) -> str:
    """Summary: Build the assistant chat prompt from a message and a task snapshot."""

    return _with_input(CHAT_PROMPT, {"message": message, "context": context})


def extract_input(prompt: str) -> dict[str, Any]:
    """Summary: Recover the structured input embedded at the end of a prompt.

    Importance: Lets offline providers answer without parsing free text.
    Alternatives: Pass structured payloads to providers separately.
    """

    _, marker, payload = prompt.rpartition(f"\n{INPUT_MARKER} ")
    if not marker:
        return {}
    try:
        data = json.loads(payload.strip())
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _with_input(instructions: str, payload: dict[str, Any]) -> str:
    return f"{instructions}\n\n{INPUT_MARKER} {json.dumps(payload, ensure_ascii=False)}"
