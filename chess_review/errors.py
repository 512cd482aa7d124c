"""Exception hierarchy for the review pipeline.

Local failures inside the book matcher and the brilliance classifier are
treated as negative answers and never surface as exceptions. Everything
here is raised to callers of the orchestrator or its collaborators.
"""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for all review pipeline errors."""


class ConfigError(ReviewError):
    """An environment override or config value could not be parsed."""


class EngineUnavailableError(ReviewError):
    """Stockfish could not be located or started."""


class EngineBusyError(ReviewError):
    """The engine session is leased by another owner."""

    def __init__(self, owner_id: str) -> None:
        super().__init__(f"Engine session is in use by {owner_id!r}")
        self.owner_id = owner_id


class AnalysisInProgressError(ReviewError):
    """A second analysis was started while one is already running."""


class AnalysisCancelled(ReviewError):
    """Raised at a cancellation checkpoint after cancel() was requested."""


class EmptyGameError(ReviewError):
    """The transcript produced no legal moves."""


class ReviewFinalizedError(ReviewError):
    """A review was completed or failed a second time."""
