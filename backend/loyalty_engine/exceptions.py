"""Error taxonomy for the reconciliation and commission engine."""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base exception for engine errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(EngineError):
    """A referenced record is missing when it was expected to exist."""


class ConfigurationError(EngineError):
    """Commission settings are malformed or missing required fields."""


class ValidationError(EngineError):
    """Input amounts, dates or state transitions are invalid."""


class TransientError(EngineError):
    """A collaborator timed out or could not be reached."""
