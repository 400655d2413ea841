"""Exceptions raised by the analysis lifecycle and the evaluation pipeline."""

from typing import Optional


class AnalysisError(Exception):
    """Base exception for analysis operations."""
    pass


class NotFoundError(AnalysisError):
    """A repository, rubric, analysis or item result does not exist."""
    pass


class AccessDeniedError(AnalysisError):
    """The caller may not use the requested repository, rubric or analysis."""
    pass


class InvalidRepositoryUrlError(AnalysisError, ValueError):
    """A one-off analysis was requested with an unparseable repository URL."""
    pass


class InvalidTransitionError(AnalysisError):
    """A status change that the state machine does not allow."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.target = target


class ResultImmutableError(InvalidTransitionError):
    """Attempt to mutate an item result that already reached a terminal state."""
    pass


class RepositoryFetchError(AnalysisError):
    """The repository content snapshot could not be fetched."""
    pass


class ItemEvaluationError(AnalysisError):
    """An item evaluation failed on every retry attempt."""

    def __init__(self, rubric_item_id: str, message: str):
        super().__init__(message)
        self.rubric_item_id = rubric_item_id
