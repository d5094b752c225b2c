"""Summary: Human resolution of captures parked for review.

Importance: The only way a needs-review capture reaches success or discarded.
Alternatives: Re-run classification until confidence clears the gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from capturepilot.effects import AppliedEffect, EffectApplier
from capturepilot.errors import RecordNotFoundError
from capturepilot.models import (
    ACTIVITY_USER_CREATE_PROJECT,
    GTD_LISTS,
    REVIEW_OUTCOME,
    STATUS_NEEDS_REVIEW,
    ActivityEntry,
    CaptureRecord,
    NeedsReview,
    Project,
    ProjectMatch,
    TagSet,
    require_state,
)
from capturepilot.storage.sqlite_store import SqliteStore, StoredProject


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewResolutionHandler:
    """Summary: Accept, discard, edit, or reassign captures awaiting review.

    Importance: Every action checks the capture is still under review first.
    Alternatives: Let the UI write statuses directly.
    """

    store: SqliteStore
    applier: EffectApplier

    def pending_reviews(self, limit: int = 100) -> list[CaptureRecord]:
        """Summary: List captures waiting for a decision, newest first."""

        return self.store.list_captures(status=STATUS_NEEDS_REVIEW, limit=limit)

    def accept(self, capture_id: str) -> AppliedEffect:
        """Summary: File the capture using its displayed fields.

        Importance: A draft without a project id is filed under a project created by name.
        Alternatives: Refuse to accept drafts without a known project.
        """

        record = self._under_review(capture_id)
        effect = self.applier.apply_reviewed(record)
        logger.info("Accepted capture %s.", capture_id)
        return effect

    def discard(self, capture_id: str) -> CaptureRecord:
        """Summary: Close the capture without creating anything.

        Importance: Discarded captures stay in history but never become tasks.
        Alternatives: Delete the capture record.
        """

        record = self._under_review(capture_id)
        state = require_state(record.state, NeedsReview)
        updated = self.store.transition_capture(capture_id, STATUS_NEEDS_REVIEW, state.discard())
        logger.info("Discarded capture %s.", capture_id)
        return updated

    def edit(
        self,
        capture_id: str,
        rewritten_text: str | None = None,
        tags: TagSet | None = None,
        project_match: ProjectMatch | None = None,
        gtd_list: str | None = None,
    ) -> CaptureRecord:
        """Summary: Save reviewer edits to the displayed draft.

        Importance: Accept files whatever the reviewer last saved.
        Alternatives: Pass edits only at accept time.
        """

        record = self._under_review(capture_id)
        state = require_state(record.state, NeedsReview)
        if gtd_list is not None and gtd_list not in GTD_LISTS:
            raise ValueError(f"Unknown list {gtd_list!r}")
        revised = state.revise(project_match) if project_match is not None else state
        updated = self.store.update_capture_draft(
            capture_id,
            rewritten_text=rewritten_text if rewritten_text is not None else record.rewritten_text,
            tags=tags if tags is not None else record.tags_applied,
            match=revised.draft_match,
            list_hint=gtd_list if gtd_list is not None else record.list_hint,
        )
        logger.info("Edited review draft for capture %s.", capture_id)
        return updated

    def reassign(self, capture_id: str, project_id: str) -> AppliedEffect:
        """Summary: File the capture under an existing project chosen by the reviewer.

        Importance: The reviewer's choice is recorded with full confidence.
        Alternatives: Only allow accepting the classifier's suggestion.
        """

        self._under_review(capture_id)
        project = self.store.get_project(project_id)
        if project is None:
            raise RecordNotFoundError(f"Project {project_id} not found")
        return self._accept_under(capture_id, project)

    def create_project_and_accept(
        self, capture_id: str, name: str, outcome: str = REVIEW_OUTCOME
    ) -> AppliedEffect:
        """Summary: Create a project by hand and file the capture under it.

        Importance: Lets reviewers fix a wrong new-project proposal in one step.
        Alternatives: Create the project elsewhere and reassign afterwards.
        """

        self._under_review(capture_id)
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Project name is required")
        project = self.store.create_project(Project(name=cleaned, outcome=outcome or REVIEW_OUTCOME))
        self.store.add_activity(
            ActivityEntry(
                type=ACTIVITY_USER_CREATE_PROJECT,
                description=f'Created project "{project.name}"',
                detail=project.outcome,
                metadata={"project_id": project.id, "capture_id": capture_id},
            )
        )
        logger.info("Created project %s (%s) from review.", project.name, project.id)
        return self._accept_under(capture_id, project)

    def _accept_under(self, capture_id: str, project: StoredProject) -> AppliedEffect:
        match = ProjectMatch(name=project.name, confidence=100, is_new=False, id=project.id)
        self.edit(capture_id, project_match=match)
        return self.accept(capture_id)

    def _under_review(self, capture_id: str) -> CaptureRecord:
        record = self.store.require_capture(capture_id)
        require_state(record.state, NeedsReview)
        return record
