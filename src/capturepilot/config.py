"""Summary: Application configuration for CapturePilot.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and the pipeline.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    gemini_api_key: str | None
    gemini_model: str
    classifier_url: str | None
    api_host: str
    api_port: int
    api_key: str
    confidence_threshold: int = 90
    classification_timeout_seconds: float = 30.0
    auto_process: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_threshold <= 100:
            raise ValueError(
                f"confidence_threshold must be between 0 and 100, got {self.confidence_threshold}"
            )
        if self.classification_timeout_seconds <= 0:
            raise ValueError(
                "classification_timeout_seconds must be positive, "
                f"got {self.classification_timeout_seconds}"
            )

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("CAPTUREPILOT_DB_PATH", defaults["db_path"]),
            ai_provider=os.getenv("CAPTUREPILOT_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or defaults["gemini_api_key"] or None,
            gemini_model=os.getenv("GEMINI_MODEL", defaults["gemini_model"]),
            classifier_url=os.getenv("CAPTUREPILOT_CLASSIFIER_URL") or defaults["classifier_url"] or None,
            api_host=os.getenv("CAPTUREPILOT_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("CAPTUREPILOT_API_PORT", defaults["api_port"])),
            api_key=os.getenv("CAPTUREPILOT_API_KEY", defaults["api_key"]),
            confidence_threshold=int(
                os.getenv("CAPTUREPILOT_CONFIDENCE_THRESHOLD", defaults["confidence_threshold"])
            ),
            classification_timeout_seconds=float(
                os.getenv(
                    "CAPTUREPILOT_CLASSIFICATION_TIMEOUT",
                    defaults["classification_timeout_seconds"],
                )
            ),
            auto_process=_parse_bool(
                os.getenv("CAPTUREPILOT_AUTO_PROCESS", defaults["auto_process"])
            ),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _parse_bool(value: str | bool) -> bool:
    """Summary: Interpret common truthy strings from env files."""

    if isinstance(value, bool):
        return value
    return value.strip().lower() in {"1", "true", "yes", "on"}
