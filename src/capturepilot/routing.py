"""Summary: Confidence gate between classification and filing.

Importance: Decides whether a capture is filed automatically or sent to review.
Alternatives: Always require human confirmation.
"""

from __future__ import annotations

from typing import Literal

from capturepilot.models import ClassificationResult

AUTO_APPLY_THRESHOLD = 90

Route = Literal["auto", "review"]


def route(result: ClassificationResult, threshold: int = AUTO_APPLY_THRESHOLD) -> Route:
    """Summary: Route a classification by its project confidence.

    Importance: Confidence at or above the threshold files without a human.
    Alternatives: Weigh new-project proposals more cautiously than matches.
    """

    if result.project_match.confidence >= threshold:
        return "auto"
    return "review"
