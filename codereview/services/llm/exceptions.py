from typing import Optional


class LLMServiceError(Exception):
    """Base exception for LLM services."""
    pass

class LLMAPIError(LLMServiceError):
    """Exception for errors during LLM API calls."""
    pass

class LLMResponseParseError(LLMServiceError):
    """Exception for errors when parsing LLM responses."""
    pass


class ResultValidationError(LLMResponseParseError):
    """The evaluator's structured response does not satisfy the rubric item's rules."""

    def __init__(self, message: str, evaluation_type: Optional[str] = None):
        super().__init__(message)
        self.evaluation_type = evaluation_type
