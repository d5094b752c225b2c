"""Summary: AI provider abstraction and implementations.

Importance: Centralizes LLM access for portability and auditability.
Alternatives: Call provider SDKs directly in each service.
"""

from __future__ import annotations

import json
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from capturepilot.config import AppConfig
from capturepilot.models import AiRequest, AiResponse
from capturepilot.prompts import extract_input
from capturepilot.storage.sqlite_store import SqliteStore

PURPOSE_CLASSIFY = "classify_capture"
PURPOSE_SUBTASKS = "decompose_subtasks"
PURPOSE_GROUPING = "group_tasks"
PURPOSE_CHAT = "chat"

_CONTEXT_KEYWORDS = {
    "@errands": ("buy", "pick up", "store", "shop", "groceries", "return"),
    "@calls": ("call", "phone", "ring"),
    "@computer": ("email", "draft", "write", "code", "online", "book"),
    "@home": ("clean", "fix", "laundry", "garden", "cook"),
}
_CONTEXT_PROJECTS = {
    "@errands": "Errands",
    "@calls": "Calls",
    "@computer": "Computer Work",
    "@home": "Home",
}


class AiProvider(ABC):
    """Summary: Abstract interface for AI text generation.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    @abstractmethod
    def generate_text(self, prompt: str, purpose: str) -> tuple[str, int]:
        """Summary: Generate a response for a prompt.

        Importance: Standardizes AI outputs for downstream services.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic AI provider for local testing.

    Importance: Enables offline workflows and repeatable tests.
    Alternatives: Use a small local LLM for all development tasks.
    """

    def generate_text(self, prompt: str, purpose: str) -> tuple[str, int]:
        """Summary: Return a canned JSON answer for each known purpose.

        Importance: Allows the full pipeline to run without external dependencies.
        Alternatives: Use fixture-based responses loaded from files.
        """

        started = time.time()
        data = extract_input(prompt)
        if purpose == PURPOSE_CLASSIFY:
            response = json.dumps(_mock_classification(data))
        elif purpose == PURPOSE_SUBTASKS:
            response = json.dumps(_mock_subtasks(data))
        elif purpose == PURPOSE_GROUPING:
            response = json.dumps(_mock_groups(data))
        elif purpose == PURPOSE_CHAT:
            response = json.dumps(_mock_chat(data))
        else:
            response = f"[mock:{purpose}] {prompt[:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return response, latency_ms


class OllamaProvider(AiProvider):
    """Summary: AI provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive workflows on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    def __init__(self, base_url: str, model: str, timeout: float = 60) -> None:
        """Summary: Initialize the Ollama provider.

        Importance: Stores connection details for repeated requests.
        Alternatives: Lazily resolve URLs per request.
        """

        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout

    def generate_text(self, prompt: str, purpose: str) -> tuple[str, int]:
        """Summary: Generate JSON text using the Ollama HTTP API.

        Importance: Enables local inference for classification.
        Alternatives: Use Ollama's CLI and parse its output.
        """

        payload = json.dumps(
            {"model": self._model, "prompt": prompt, "stream": False, "format": "json"}
        )
        request = urllib.request.Request(
            url=f"{self._base_url}/api/generate",
            data=payload.encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        raw = _send(request, self._timeout, "Ollama")
        latency_ms = int((time.time() - started) * 1000)
        return raw.get("response", ""), latency_ms


class OpenAiProvider(AiProvider):
    """Summary: AI provider using OpenAI's chat completion API.

    Importance: Enables higher-quality classification when configured.
    Alternatives: Use other cloud providers or a local model.
    """

    def __init__(self, api_key: str, model: str, timeout: float = 60) -> None:
        """Summary: Initialize the OpenAI provider.

        Importance: Stores credentials for future requests.
        Alternatives: Pass the API key per request from a caller.
        """

        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def generate_text(self, prompt: str, purpose: str) -> tuple[str, int]:
        """Summary: Generate JSON text using OpenAI chat completions.

        Importance: Enables cloud-grade reasoning for classification.
        Alternatives: Use the responses API or a different provider.
        """

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": f"You are CapturePilot. Task: {purpose}."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }
        request = urllib.request.Request(
            url="https://api.openai.com/v1/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        raw = _send(request, self._timeout, "OpenAI")
        latency_ms = int((time.time() - started) * 1000)
        try:
            content = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("OpenAI response missing message content") from exc
        return content or "", latency_ms


class GeminiProvider(AiProvider):
    """Summary: AI provider using Google's Gemini generateContent API.

    Importance: Supports the Gemini JSON mode for structured outputs.
    Alternatives: Use the google-generativeai SDK.
    """

    def __init__(self, api_key: str, model: str, timeout: float = 60) -> None:
        """Summary: Initialize the Gemini provider.

        Importance: Stores credentials and model selection.
        Alternatives: Resolve the model per request.
        """

        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def generate_text(self, prompt: str, purpose: str) -> tuple[str, int]:
        """Summary: Generate JSON text using Gemini.

        Importance: Requests application/json output so replies parse directly.
        Alternatives: Strip markdown fences from free-form replies.
        """

        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        model = urllib.parse.quote(self._model, safe="-.")
        request = urllib.request.Request(
            url=(
                "https://generativelanguage.googleapis.com/v1beta/models/"
                f"{model}:generateContent?key={urllib.parse.quote(self._api_key)}"
            ),
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        raw = _send(request, self._timeout, "Gemini")
        latency_ms = int((time.time() - started) * 1000)
        candidates = raw.get("candidates") or []
        if not candidates:
            return "", latency_ms
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts), latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        """Summary: Construct the configured AI provider.

        Importance: Ensures consistent provider selection across services.
        Alternatives: Use dependency injection frameworks.
        """

        timeout = self.config.classification_timeout_seconds
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model, timeout)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model, timeout)
        if self.config.ai_provider == "gemini":
            if not self.config.gemini_api_key:
                raise ValueError("GEMINI_API_KEY is required for gemini provider")
            return GeminiProvider(self.config.gemini_api_key, self.config.gemini_model, timeout)
        return MockAiProvider()

    def model_name(self) -> str:
        """Summary: Name of the configured model for audit rows."""

        if self.config.ai_provider == "openai":
            return self.config.openai_model
        if self.config.ai_provider == "ollama":
            return self.config.ollama_model
        if self.config.ai_provider == "gemini":
            return self.config.gemini_model
        return "mock"


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)


@dataclass(frozen=True)
class AuditedAiClient:
    """Summary: Calls an AI provider and records the exchange.

    Importance: Every prompt and response lands in the AI audit tables.
    Alternatives: Log AI usage in each calling service.
    """

    store: SqliteStore
    provider: AiProvider
    provider_name: str
    model_name: str

    def generate(self, prompt: str, purpose: str) -> str:
        """Summary: Generate text and persist the request and response.

        Importance: Failed calls still leave the request row for auditing.
        Alternatives: Only record successful exchanges.
        """

        request = AiRequest(
            provider=self.provider_name,
            model=self.model_name,
            prompt=prompt,
            purpose=purpose,
            timestamp=datetime.now(timezone.utc),
        )
        request_id = self.store.log_ai_request(request)
        response_text, latency_ms = self.provider.generate_text(prompt, purpose=purpose)
        response = AiResponse(
            request_id=request_id,
            response_text=response_text,
            latency_ms=latency_ms,
            token_estimate=estimate_tokens(response_text),
        )
        self.store.log_ai_response(response)
        return response_text


def _send(request: urllib.request.Request, timeout: float, provider: str) -> dict[str, Any]:
    """Summary: Send a JSON request and decode the JSON reply.

    Importance: Gives every provider the same failure surface.
    Alternatives: Duplicate urllib handling per provider.
    """

    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        raise RuntimeError(f"{provider} HTTP {exc.code}: {body[:200]}") from exc
    except (urllib.error.URLError, TimeoutError) as exc:
        raise RuntimeError(f"{provider} request failed: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"{provider} returned invalid JSON") from exc


def _mock_classification(data: dict[str, Any]) -> dict[str, Any]:
    """Summary: Keyword-based stand-in for the classification model."""

    text = str(data.get("text") or "").strip()
    lowered = text.lower()
    words = set(re.findall(r"\w+", lowered))
    contexts = [
        tag for tag, keywords in _CONTEXT_KEYWORDS.items() if any(keyword in lowered for keyword in keywords)
    ]
    gtd_list = "next"
    if "wait" in words or "waiting" in words:
        gtd_list = "waiting"
    elif "someday" in words or "maybe" in words:
        gtd_list = "someday"
    time_tag = "5 min" if len(words) <= 2 else "15 min" if len(words) <= 8 else "30 min"

    for project in data.get("existingProjects") or []:
        name = str(project.get("name") or "")
        name_words = {word for word in re.findall(r"\w+", name.lower()) if len(word) > 3}
        if name and (name.lower() in lowered or name_words & words):
            match = {
                "id": project.get("id"),
                "name": name,
                "isNew": False,
                "outcome": None,
                "confidence": 95,
            }
            break
    else:
        name = _CONTEXT_PROJECTS.get(contexts[0], "General") if contexts else "General"
        match = {
            "id": None,
            "name": name,
            "isNew": True,
            "outcome": f"{name} kept under control",
            "confidence": 95 if contexts else 60,
        }
    return {
        "rewrittenTitle": text,
        "list": gtd_list,
        "tags": {"time": time_tag, "contexts": contexts},
        "projectMatch": match,
    }


def _mock_subtasks(data: dict[str, Any]) -> dict[str, Any]:
    """Summary: Deterministic three-step decomposition."""

    title = str(data.get("title") or "the task").strip()
    return {
        "subtasks": [
            f"Clarify what done looks like for {title}",
            f"Gather what is needed for {title}",
            f"Complete {title}",
        ]
    }


def _mock_groups(data: dict[str, Any]) -> dict[str, Any]:
    """Summary: Put every task into the first existing group or General."""

    existing = data.get("existingGroups") or []
    category = existing[0] if existing else "General"
    task_ids = [task.get("id") for task in data.get("tasks") or [] if task.get("id")]
    return {"groups": [{"categoryName": category, "taskIds": task_ids}] if task_ids else []}


def _mock_chat(data: dict[str, Any]) -> dict[str, Any]:
    """Summary: Deterministic reply that lists the tasks in the context.

    Importance: Keeps chat usable offline with answers tied to real data.
    Alternatives: Echo the message back.
    """

    context = data.get("context")
    if isinstance(context, str):
        try:
            context = json.loads(context)
        except json.JSONDecodeError:
            context = {}
    if not isinstance(context, dict):
        context = {}
    titles = [str(task.get("title")) for task in context.get("tasks") or [] if task.get("title")]
    projects = context.get("projects") or []
    if not titles:
        return {"reply": f"You have no tasks yet across {len(projects)} projects."}
    listed = "; ".join(titles[:5])
    return {"reply": f"You have {len(titles)} tasks across {len(projects)} projects: {listed}."}
