"""Summary: Command-line interface for CapturePilot.

Importance: Provides a local-first entry point for capturing and reviewing thoughts.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

from capturepilot.app import build_services
from capturepilot.config import AppConfig
from capturepilot.models import CAPTURE_STATUSES, REVIEW_OUTCOME


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="CapturePilot CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    capture = subparsers.add_parser("capture", help="Capture a raw thought")
    capture.add_argument("text", type=str)
    capture.add_argument("--process", action="store_true", help="Process pending captures afterwards")

    subparsers.add_parser("process", help="Process every pending capture")

    list_captures = subparsers.add_parser("list-captures", help="List captures")
    list_captures.add_argument("--status", choices=CAPTURE_STATUSES, default=None)
    list_captures.add_argument("--limit", type=int, default=20)

    review = subparsers.add_parser("review", help="List captures waiting for review")
    review.add_argument("--limit", type=int, default=20)

    accept = subparsers.add_parser("accept", help="Accept a capture under review")
    accept.add_argument("capture_id", type=str)

    discard = subparsers.add_parser("discard", help="Discard a capture under review")
    discard.add_argument("capture_id", type=str)

    reassign = subparsers.add_parser("reassign", help="File a capture under an existing project")
    reassign.add_argument("capture_id", type=str)
    reassign.add_argument("project_id", type=str)

    create_project = subparsers.add_parser(
        "create-project", help="Create a project and file a capture under it"
    )
    create_project.add_argument("capture_id", type=str)
    create_project.add_argument("name", type=str)
    create_project.add_argument("--outcome", type=str, default=REVIEW_OUTCOME)

    subparsers.add_parser("list-projects", help="List projects")

    list_tasks = subparsers.add_parser("list-tasks", help="List tasks")
    list_tasks.add_argument("--project-id", type=str, default=None)

    activity = subparsers.add_parser("activity", help="Show recent activity")
    activity.add_argument("--limit", type=int, default=20)

    subtasks = subparsers.add_parser("subtasks", help="Break a task into subtasks")
    subtasks.add_argument("task_id", type=str)

    group_tasks = subparsers.add_parser("group-tasks", help="Group a project's uncategorized tasks")
    group_tasks.add_argument("project_id", type=str)

    chat = subparsers.add_parser("chat", help="Ask the assistant about your tasks")
    chat.add_argument("message", type=str)

    ai_requests = subparsers.add_parser("ai-requests", help="List recent AI requests")
    ai_requests.add_argument("--limit", type=int, default=20)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the capture workflow without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()

    if args.command == "serve":
        import uvicorn

        from capturepilot.api import create_app

        uvicorn.run(
            create_app(config),
            host=args.host or config.api_host,
            port=args.port or config.api_port,
        )
        return

    services = build_services(config)

    if args.command == "capture":
        record = services.captures.capture(args.text)
        print(f"Captured {record.id}.")
        if args.process:
            _print_outcomes(asyncio.run(services.scheduler.drain()))
        return

    if args.command == "process":
        _print_outcomes(asyncio.run(services.scheduler.drain()))
        return

    if args.command == "list-captures":
        for record in services.captures.list_captures(args.status, args.limit):
            print(f"{record.id} [{record.status}] {record.rewritten_text or record.original_text}")
        return

    if args.command == "review":
        for record in services.review.pending_reviews(args.limit):
            match = record.project_match
            suffix = f" error={record.error}" if record.error else ""
            print(
                f"{record.id} {record.rewritten_text or record.original_text} -> "
                f"{match.name} ({match.confidence}%){suffix}"
            )
        return

    if args.command == "accept":
        _print_json(services.review.accept(args.capture_id).to_dict())
        return

    if args.command == "discard":
        record = services.review.discard(args.capture_id)
        print(f"Discarded {record.id}.")
        return

    if args.command == "reassign":
        _print_json(services.review.reassign(args.capture_id, args.project_id).to_dict())
        return

    if args.command == "create-project":
        effect = services.review.create_project_and_accept(args.capture_id, args.name, args.outcome)
        _print_json(effect.to_dict())
        return

    if args.command == "list-projects":
        for project in services.projects.list_projects():
            print(f"{project.id} [{project.status}] {project.name}: {project.outcome}")
        return

    if args.command == "list-tasks":
        for task in services.projects.list_tasks(args.project_id):
            category = f" <{task.category}>" if task.category else ""
            print(f"{task.id} [{task.gtd_list}] {task.title}{category}")
        return

    if args.command == "activity":
        for entry in services.activity.recent(args.limit):
            detail = f" ({entry.detail})" if entry.detail else ""
            print(f"{entry.timestamp} {entry.type}: {entry.description}{detail}")
        return

    if args.command == "subtasks":
        task = services.subtasks.apply_to_task(args.task_id)
        for subtask in task.subtasks:
            print(f"- {subtask['title']}")
        return

    if args.command == "group-tasks":
        for group in services.grouping.apply_to_project(args.project_id):
            print(f"{group['categoryName']}: {', '.join(group['taskIds'])}")
        return

    if args.command == "chat":
        print(services.chat.reply(args.message))
        return

    if args.command == "ai-requests":
        for request in services.ai_audit.list_requests(args.limit):
            print(f"{request['id']} {request['provider']}/{request['model']} {request['purpose']}")
        return

    parser.error(f"Unknown command {args.command}")


def _print_outcomes(outcomes: list[Any]) -> None:
    if not outcomes:
        print("No pending captures.")
        return
    for outcome in outcomes:
        error = f" ({outcome.error})" if outcome.error else ""
        print(f"{outcome.capture_id}: {outcome.route} -> {outcome.status}{error}")


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    run_cli()
