"""
Pipeline Error Taxonomy

Errors raised by the reliable-delivery core and the credit stages.

- TransientInfraError: store, broker or dedup backend temporarily unreachable.
  Safe to retry the whole operation.
- PersistenceError: the store rejected a transaction. Nothing was committed.
- ValidationError: malformed event payload or request. Never retried blindly.
- ConflictError: referenced entity missing or in an unexpected state.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all creditflow errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransientInfraError(PipelineError):
    """An infrastructure dependency is temporarily unavailable."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class PersistenceError(PipelineError):
    """
    The durable store rejected a transaction.

    `transient` is True for connection-level failures (retrying the whole
    operation may succeed) and False for constraint violations.
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class ValidationError(PipelineError):
    """An event payload or request failed validation."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnknownEventTypeError(ValidationError):
    """No registry entry exists for an event type tag."""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}", field="event_type")
        self.event_type = event_type


class ConflictError(PipelineError):
    """
    A referenced business entity is missing or in an unexpected state.

    Signals a bug or out-of-order delivery; logged loudly by consumers.
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None
    ):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
