"""Summary: Classification clients that turn raw captures into structured results.

Importance: Isolates prompt building, provider calls, and response validation.
Alternatives: Parse provider output inline inside the scheduler.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from capturepilot.ai import PURPOSE_CLASSIFY, AuditedAiClient
from capturepilot.config import AppConfig
from capturepilot.errors import ClassificationError
from capturepilot.models import (
    DEFAULT_TIME,
    ClassificationResult,
    ProjectMatch,
    TagSet,
)
from capturepilot.prompts import build_classification_prompt


logger = logging.getLogger(__name__)


class TagsPayload(BaseModel):
    """Summary: Tag block of a classification response."""

    time: Literal["5 min", "15 min", "30 min", "60 min+"] = DEFAULT_TIME
    contexts: list[str] = Field(default_factory=list)


class ProjectMatchPayload(BaseModel):
    """Summary: Project block of a classification response.

    Importance: Rejects confidences outside 0..100 before they reach routing.
    Alternatives: Clamp out-of-range confidences silently.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    name: str = Field(min_length=1)
    is_new: bool = Field(alias="isNew")
    outcome: str | None = None
    confidence: float = Field(ge=0, le=100)


class ClassificationPayload(BaseModel):
    """Summary: Wire schema of a classification response.

    Importance: Any response failing this schema is a classification failure.
    Alternatives: Trust provider JSON and fill gaps with defaults.
    """

    model_config = ConfigDict(populate_by_name=True)

    rewritten_title: str = Field(alias="rewrittenTitle", min_length=1)
    gtd_list: Literal["next", "waiting", "someday"] = Field(alias="list")
    tags: TagsPayload = Field(default_factory=TagsPayload)
    project_match: ProjectMatchPayload = Field(alias="projectMatch")

    def to_result(self) -> ClassificationResult:
        """Summary: Convert the validated payload into the domain result."""

        match = self.project_match
        return ClassificationResult(
            rewritten_title=self.rewritten_title.strip(),
            gtd_list=self.gtd_list,
            tags=TagSet(time=self.tags.time, contexts=tuple(self.tags.contexts)),
            project_match=ProjectMatch(
                name=match.name.strip(),
                confidence=int(round(match.confidence)),
                is_new=match.is_new,
                id=match.id or None,
                outcome=match.outcome or None,
            ),
        )


class Classifier(ABC):
    """Summary: Interface for classifying a capture against known projects.

    Importance: Lets the scheduler run against in-process or remote classifiers.
    Alternatives: Hardcode a single provider call.
    """

    @abstractmethod
    def classify(self, text: str, known_projects: list[dict[str, str]]) -> ClassificationResult:
        """Summary: Classify raw text, raising ClassificationError on failure.

        Importance: A single failure type keeps the scheduler's error path simple.
        Alternatives: Return None on failure.
        """


@dataclass(frozen=True)
class AiClassifier(Classifier):
    """Summary: Classifier that prompts the configured AI provider.

    Importance: Records every classification prompt and response for audit.
    Alternatives: Use a keyword classifier with no AI involvement.
    """

    ai: AuditedAiClient

    def classify(self, text: str, known_projects: list[dict[str, str]]) -> ClassificationResult:
        """Summary: Build the prompt, call the provider, and validate the reply.

        Importance: Provider failures and malformed replies surface as one error type.
        Alternatives: Retry until the provider returns valid JSON.
        """

        prompt = build_classification_prompt(text, known_projects)
        try:
            response_text = self.ai.generate(prompt, purpose=PURPOSE_CLASSIFY)
        except Exception as exc:
            raise ClassificationError(f"Classification provider failed: {exc}") from exc
        result = parse_classification(response_text)
        logger.info(
            "Classified capture into %s (confidence %s).",
            result.project_match.name,
            result.project_match.confidence,
        )
        return result


@dataclass(frozen=True)
class HttpClassifier(Classifier):
    """Summary: Classifier that calls a remote classification endpoint.

    Importance: Lets several workers share one classification service.
    Alternatives: Embed provider credentials in every worker.
    """

    url: str
    timeout: float = 30.0
    api_key: str = ""

    def classify(self, text: str, known_projects: list[dict[str, str]]) -> ClassificationResult:
        """Summary: POST the capture and parse the returned classification.

        Importance: Speaks the same contract as the local POST /process route.
        Alternatives: Use a message queue between workers and classifier.
        """

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        request = urllib.request.Request(
            url=self.url,
            data=json.dumps({"text": text, "existingProjects": known_projects}).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise ClassificationError(f"Classification service returned HTTP {exc.code}") from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise ClassificationError(f"Classification service unreachable: {exc}") from exc
        return parse_classification(body)


def parse_classification(response_text: str) -> ClassificationResult:
    """Summary: Validate a raw classification response.

    Importance: Empty, non-JSON, and off-schema replies all become ClassificationError.
    Alternatives: Use a permissive parser that guesses missing fields.
    """

    cleaned = _strip_fences(response_text)
    if not cleaned:
        raise ClassificationError("Classification response was empty")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ClassificationError("Classification response was not valid JSON") from exc
    try:
        payload = ClassificationPayload.model_validate(data)
    except ValidationError as exc:
        raise ClassificationError(f"Classification response failed validation: {exc}") from exc
    return payload.to_result()


def build_classifier(config: AppConfig, ai: AuditedAiClient) -> Classifier:
    """Summary: Pick the remote classifier when configured, else the AI one.

    Importance: Keeps classifier selection in one place.
    Alternatives: Choose the classifier in every entrypoint.
    """

    if config.classifier_url:
        return HttpClassifier(
            url=config.classifier_url,
            timeout=config.classification_timeout_seconds,
            api_key=config.api_key,
        )
    return AiClassifier(ai=ai)


def _strip_fences(text: str) -> str:
    stripped = (text or "").strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`")
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()
