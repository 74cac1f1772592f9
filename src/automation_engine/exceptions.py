"""
Automation Engine Exceptions

Custom exceptions raised while consuming events and dispatching actions.
"""


class AutomationEngineError(Exception):
    """Base exception for automation engine errors."""

    def __init__(self, message: str, event_name: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.event_name = event_name
        self.cause = cause


class MalformedEventError(AutomationEngineError):
    """Raised when an event body is not a JSON object."""


class EntityResolutionError(AutomationEngineError):
    """Raised when the referenced document cannot be fetched."""


class RuleStoreError(AutomationEngineError):
    """Raised when automation rules cannot be loaded."""


class DispatchError(AutomationEngineError):
    """Raised when an action message cannot be published."""


class BrokerConnectionError(AutomationEngineError):
    """Raised when the message broker is unreachable or the channel is gone."""
