"""Summary: Shared fixtures for CapturePilot tests.

Importance: Gives every test an isolated store and scriptable classifiers.
Alternatives: Rebuild stores and fakes inside each test module.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable

import pytest

from capturepilot.classifier import Classifier
from capturepilot.models import ClassificationResult, ProjectMatch, TagSet
from capturepilot.storage.sqlite_store import SqliteStore


class ScriptedClassifier(Classifier):
    """Summary: Classifier that replays scripted results or errors.

    Importance: Drives pipeline scenarios without an AI provider.
    Alternatives: Patch the mock provider's keyword rules.
    """

    def __init__(self, *script: Any, delay: float = 0.0) -> None:
        self._script = list(script)
        self._delay = delay
        self.calls: list[tuple[str, list[dict[str, str]]]] = []

    def classify(self, text: str, known_projects: list[dict[str, str]]) -> ClassificationResult:
        self.calls.append((text, known_projects))
        if self._delay:
            time.sleep(self._delay)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(text, known_projects)
        return item


def build_result(
    name: str = "Errands",
    confidence: int = 95,
    is_new: bool = True,
    project_id: str | None = None,
    title: str = "Buy milk",
    gtd_list: str = "next",
    time_tag: str = "5 min",
    contexts: tuple[str, ...] = ("@errands",),
    outcome: str | None = None,
) -> ClassificationResult:
    """Summary: Build a classification result with overridable fields."""

    return ClassificationResult(
        rewritten_title=title,
        gtd_list=gtd_list,
        tags=TagSet(time=time_tag, contexts=contexts),
        project_match=ProjectMatch(
            name=name,
            confidence=confidence,
            is_new=is_new,
            id=project_id,
            outcome=outcome,
        ),
    )


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    """Summary: Provide an initialized store backed by a temp database."""

    sqlite_store = SqliteStore(str(tmp_path / "capturepilot.db"))
    sqlite_store.initialize()
    return sqlite_store


@pytest.fixture
def make_result() -> Callable[..., ClassificationResult]:
    """Summary: Provide the classification result builder."""

    return build_result


@pytest.fixture
def scripted() -> type[ScriptedClassifier]:
    """Summary: Provide the scripted classifier class."""

    return ScriptedClassifier
