"""Summary: Tests for AI abstraction layer.

Importance: Ensures AI providers return expected outputs and usage is audited.
Alternatives: Skip AI testing and rely on manual verification.
"""

from __future__ import annotations

import io
import json
from typing import Any

import pytest

from capturepilot import ai
from capturepilot.ai import (
    AiProviderFactory,
    AuditedAiClient,
    GeminiProvider,
    MockAiProvider,
    OllamaProvider,
    OpenAiProvider,
    estimate_tokens,
)
from capturepilot.config import AppConfig
from capturepilot.prompts import (
    build_chat_prompt,
    build_classification_prompt,
    build_grouping_prompt,
    build_subtask_prompt,
    extract_input,
)
from capturepilot.storage.sqlite_store import SqliteStore


def _build_config(provider: str, **overrides: Any) -> AppConfig:
    """Summary: Build an AppConfig for provider selection tests."""

    values: dict[str, Any] = {
        "db_path": "unused.db",
        "ai_provider": provider,
        "openai_api_key": None,
        "openai_model": "gpt-4o-mini",
        "ollama_url": "http://localhost:11434",
        "ollama_model": "llama3",
        "gemini_api_key": None,
        "gemini_model": "gemini-flash-latest",
        "classifier_url": None,
        "api_host": "127.0.0.1",
        "api_port": 8000,
        "api_key": "",
    }
    values.update(overrides)
    return AppConfig(**values)


class _FakeResponse(io.BytesIO):
    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def test_mock_ai_provider_returns_response() -> None:
    """Summary: Verify mock AI provider echoes unknown purposes.

    Importance: Confirms basic AI abstraction behavior for tests.
    Alternatives: Use live providers in integration tests only.
    """

    provider = MockAiProvider()
    response, latency = provider.generate_text("Hello", "test")
    assert "[mock:test]" in response
    assert latency >= 0


def test_mock_classification_matches_existing_project() -> None:
    """Summary: Verify the mock matches a known project by name words."""

    prompt = build_classification_prompt(
        "Order tiles for kitchen", [{"id": "p1", "name": "Kitchen Renovation"}]
    )
    response, _ = MockAiProvider().generate_text(prompt, ai.PURPOSE_CLASSIFY)
    data = json.loads(response)
    assert data["projectMatch"] == {
        "id": "p1",
        "name": "Kitchen Renovation",
        "isNew": False,
        "outcome": None,
        "confidence": 95,
    }
    assert data["rewrittenTitle"] == "Order tiles for kitchen"


def test_mock_classification_proposes_new_project() -> None:
    """Summary: Verify the mock proposes projects from context keywords."""

    prompt = build_classification_prompt("Buy milk", [])
    data = json.loads(MockAiProvider().generate_text(prompt, ai.PURPOSE_CLASSIFY)[0])
    assert data["projectMatch"]["name"] == "Errands"
    assert data["projectMatch"]["isNew"] is True
    assert data["projectMatch"]["confidence"] == 95
    assert data["tags"]["contexts"] == ["@errands"]

    vague = build_classification_prompt("Think about stuff", [])
    vague_data = json.loads(MockAiProvider().generate_text(vague, ai.PURPOSE_CLASSIFY)[0])
    assert vague_data["projectMatch"]["name"] == "General"
    assert vague_data["projectMatch"]["confidence"] == 60


def test_mock_assist_responses() -> None:
    """Summary: Verify the mock answers subtask and grouping prompts."""

    subtasks = json.loads(
        MockAiProvider().generate_text(build_subtask_prompt("Launch site", None), ai.PURPOSE_SUBTASKS)[0]
    )
    assert len(subtasks["subtasks"]) == 3
    groups = json.loads(
        MockAiProvider().generate_text(
            build_grouping_prompt("Web", [{"id": "t1", "title": "Deploy"}], ["Ops"]),
            ai.PURPOSE_GROUPING,
        )[0]
    )
    assert groups == {"groups": [{"categoryName": "Ops", "taskIds": ["t1"]}]}
    chat = json.loads(
        MockAiProvider().generate_text(
            build_chat_prompt("What is next?", {"tasks": [{"title": "Deploy"}], "projects": [{"name": "Web"}]}),
            ai.PURPOSE_CHAT,
        )[0]
    )
    assert chat == {"reply": "You have 1 tasks across 1 projects: Deploy."}
    empty = json.loads(MockAiProvider().generate_text(build_chat_prompt("Hi", "not json"), ai.PURPOSE_CHAT)[0])
    assert empty == {"reply": "You have no tasks yet across 0 projects."}


def test_extract_input_reads_last_marker() -> None:
    """Summary: Verify structured input survives the prompt round trip."""

    prompt = build_classification_prompt('Say "INPUT:" aloud', [])
    assert extract_input(prompt)["text"] == 'Say "INPUT:" aloud'
    assert extract_input("no marker here") == {}


def test_factory_selects_providers() -> None:
    """Summary: Verify provider selection from configuration.

    Importance: Cloud providers require their API keys.
    Alternatives: Fail lazily on the first request.
    """

    assert isinstance(AiProviderFactory(_build_config("mock")).build(), MockAiProvider)
    assert isinstance(AiProviderFactory(_build_config("ollama")).build(), OllamaProvider)
    assert AiProviderFactory(_build_config("ollama")).model_name() == "llama3"
    with pytest.raises(ValueError):
        AiProviderFactory(_build_config("openai")).build()
    openai = AiProviderFactory(_build_config("openai", openai_api_key="sk-test")).build()
    assert isinstance(openai, OpenAiProvider)
    with pytest.raises(ValueError):
        AiProviderFactory(_build_config("gemini")).build()
    gemini = AiProviderFactory(_build_config("gemini", gemini_api_key="g-key")).build()
    assert isinstance(gemini, GeminiProvider)
    assert AiProviderFactory(_build_config("gemini")).model_name() == "gemini-flash-latest"


def test_openai_provider_requests_json(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify the OpenAI provider asks for JSON and reads the content."""

    captured: dict[str, Any] = {}

    def fake_urlopen(request: Any, timeout: float) -> _FakeResponse:
        captured["body"] = json.loads(request.data.decode("utf-8"))
        captured["timeout"] = timeout
        body = {"choices": [{"message": {"content": "{\"ok\": true}"}}]}
        return _FakeResponse(json.dumps(body).encode("utf-8"))

    monkeypatch.setattr(ai.urllib.request, "urlopen", fake_urlopen)
    text, latency = OpenAiProvider("sk-test", "gpt-4o-mini", timeout=5).generate_text("hi", "classify_capture")
    assert text == "{\"ok\": true}"
    assert latency >= 0
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert captured["timeout"] == 5


def test_gemini_provider_joins_parts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify Gemini replies are read from candidate parts."""

    def fake_urlopen(request: Any, timeout: float) -> _FakeResponse:
        payload = json.loads(request.data.decode("utf-8"))
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        body = {"candidates": [{"content": {"parts": [{"text": "{\"a\""}, {"text": ": 1}"}]}}]}
        return _FakeResponse(json.dumps(body).encode("utf-8"))

    monkeypatch.setattr(ai.urllib.request, "urlopen", fake_urlopen)
    text, _ = GeminiProvider("g-key", "gemini-flash-latest").generate_text("hi", "classify_capture")
    assert json.loads(text) == {"a": 1}


def test_provider_network_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify transport errors surface as RuntimeError."""

    def fake_urlopen(request: Any, timeout: float) -> _FakeResponse:
        raise ai.urllib.error.URLError("connection refused")

    monkeypatch.setattr(ai.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(RuntimeError):
        OllamaProvider("http://localhost:11434", "llama3").generate_text("hi", "classify_capture")


def test_audited_client_logs_exchange(store: SqliteStore) -> None:
    """Summary: Verify AI calls are recorded in the audit tables.

    Importance: Every prompt sent to a provider is traceable.
    Alternatives: Rely on provider dashboards.
    """

    client = AuditedAiClient(store=store, provider=MockAiProvider(), provider_name="mock", model_name="mock")
    text = client.generate("Hello", purpose="test")
    requests = store.list_ai_requests(10)
    responses = store.list_ai_responses(10)
    assert requests[0].purpose == "test"
    assert requests[0].prompt == "Hello"
    assert responses[0].request_id == requests[0].id
    assert responses[0].response_text == text
    assert responses[0].token_estimate == estimate_tokens(text)


def test_estimate_tokens_never_zero() -> None:
    """Summary: Verify token estimates have a floor of one."""

    assert estimate_tokens("") == 1
    assert estimate_tokens("a" * 40) == 10
