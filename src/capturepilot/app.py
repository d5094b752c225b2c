"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from capturepilot.ai import AiProvider, AiProviderFactory, AuditedAiClient
from capturepilot.assist import ChatService, GroupingService, SubtaskService
from capturepilot.classifier import AiClassifier, Classifier, build_classifier
from capturepilot.config import AppConfig
from capturepilot.effects import EffectApplier
from capturepilot.review import ReviewResolutionHandler
from capturepilot.scheduler import SingleFlightScheduler
from capturepilot.services import ActivityService, AiAuditService, CaptureService, ProjectService
from capturepilot.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for CapturePilot.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    config: AppConfig
    store: SqliteStore
    ai: AuditedAiClient
    local_classifier: AiClassifier
    classifier: Classifier
    applier: EffectApplier
    scheduler: SingleFlightScheduler
    review: ReviewResolutionHandler
    captures: CaptureService
    projects: ProjectService
    activity: ActivityService
    ai_audit: AiAuditService
    subtasks: SubtaskService
    grouping: GroupingService
    chat: ChatService


def build_services(
    config: AppConfig,
    ai_provider: AiProvider | None = None,
    classifier: Classifier | None = None,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    factory = AiProviderFactory(config)
    ai = AuditedAiClient(
        store=store,
        provider=ai_provider or factory.build(),
        provider_name=config.ai_provider,
        model_name=factory.model_name(),
    )
    local_classifier = AiClassifier(ai=ai)
    pipeline_classifier = classifier or build_classifier(config, ai)
    applier = EffectApplier(store=store)
    scheduler = SingleFlightScheduler(
        store=store,
        classifier=pipeline_classifier,
        applier=applier,
        threshold=config.confidence_threshold,
        timeout_seconds=config.classification_timeout_seconds,
    )
    return AppServices(
        config=config,
        store=store,
        ai=ai,
        local_classifier=local_classifier,
        classifier=pipeline_classifier,
        applier=applier,
        scheduler=scheduler,
        review=ReviewResolutionHandler(store=store, applier=applier),
        captures=CaptureService(store=store),
        projects=ProjectService(store=store),
        activity=ActivityService(store=store),
        ai_audit=AiAuditService(store=store),
        subtasks=SubtaskService(store=store, ai=ai),
        grouping=GroupingService(store=store, ai=ai),
        chat=ChatService(store=store, ai=ai),
    )
