"""Summary: Exception types raised by CapturePilot services.

Importance: Lets the API and scheduler map failures to stable outcomes.
Alternatives: Raise bare ValueError and RuntimeError everywhere.
"""

from __future__ import annotations


class ClassificationError(RuntimeError):
    """Summary: Raised when a capture cannot be classified.

    Importance: Collapses network, empty, and malformed responses into one failure.
    Alternatives: Surface provider-specific exceptions to callers.
    """


class InvalidTransitionError(ValueError):
    """Summary: Raised when a capture status change is not allowed.

    Importance: Keeps capture status moving forward only.
    Alternatives: Silently ignore out-of-order updates.
    """


class RecordNotFoundError(ValueError):
    """Summary: Raised when a stored record does not exist.

    Importance: Distinguishes missing records from invalid requests.
    Alternatives: Return None and let callers check.
    """


class AssistError(RuntimeError):
    """Summary: Raised when a subtask or grouping request cannot be answered.

    Importance: Lets assist endpoints fail without touching stored tasks.
    Alternatives: Return empty suggestions on provider failure.
    """
