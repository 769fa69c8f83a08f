"""
Event Registry

Maps an event type tag to its payload schema and destination topic.
Used by the outbox writer (encode + route), the outbox publisher
(decode before send) and the stage consumers (decode on receipt).

Validate the registry at startup so an unknown type fails fast instead of
surfacing per record at runtime.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Type, Union

from pydantic import ValidationError as PydanticValidationError

from ..errors import UnknownEventTypeError, ValidationError
from .models import (
    CreditApplicationSubmitted,
    CreditDecisionMade,
    PipelineEvent,
    RiskAssessmentCompleted,
)
from .taxonomy import EventType, Topics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDefinition:
    """Schema and routing for one event type."""
    event_type: str
    schema: Type[PipelineEvent]
    destination: str


class EventRegistry:
    """
    Typed registry of event definitions.

    Usage:
        registry = EventRegistry()
        registry.register(EventType.APPLICATION_SUBMITTED, CreditApplicationSubmitted,
                          Topics.CREDIT_APPLICATION_SUBMITTED)
        registry.validate(required=[EventType.APPLICATION_SUBMITTED])

        definition = registry.for_event(event)
        payload = registry.encode(event)
        event = registry.decode(definition.event_type, payload)
    """

    def __init__(self):
        self._by_type: Dict[str, EventDefinition] = {}
        self._by_schema: Dict[Type[PipelineEvent], EventDefinition] = {}

    def register(
        self,
        event_type: Union[EventType, str],
        schema: Type[PipelineEvent],
        destination: str
    ) -> EventDefinition:
        """Register an event type. Each type and schema may be registered once."""
        tag = event_type.value if isinstance(event_type, EventType) else event_type
        if tag in self._by_type:
            raise ValueError(f"Event type already registered: {tag}")
        if schema in self._by_schema:
            raise ValueError(f"Schema already registered: {schema.__name__}")

        definition = EventDefinition(event_type=tag, schema=schema, destination=destination)
        self._by_type[tag] = definition
        self._by_schema[schema] = definition
        return definition

    def get(self, event_type: Union[EventType, str]) -> EventDefinition:
        tag = event_type.value if isinstance(event_type, EventType) else event_type
        try:
            return self._by_type[tag]
        except KeyError:
            raise UnknownEventTypeError(tag) from None

    def for_event(self, event: PipelineEvent) -> EventDefinition:
        """Definition for an event instance (by its concrete model class)."""
        try:
            return self._by_schema[type(event)]
        except KeyError:
            raise UnknownEventTypeError(type(event).__name__) from None

    @property
    def event_types(self) -> List[str]:
        return list(self._by_type)

    def encode(self, event: PipelineEvent) -> str:
        """Serialize an event body for the outbox payload column."""
        self.for_event(event)
        return event.model_dump_json()

    def decode(self, event_type: str, payload: Union[str, bytes, Dict[str, Any]]) -> PipelineEvent:
        """
        Deserialize and validate a payload for an event type.

        Raises:
            UnknownEventTypeError: the type tag is not registered
            ValidationError: the payload is not JSON or fails the schema
        """
        definition = self.get(event_type)
        try:
            if isinstance(payload, (str, bytes)):
                return definition.schema.model_validate_json(payload)
            return definition.schema.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            field = ".".join(str(loc) for loc in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid {event_type} payload: {first.get('msg', str(e))}",
                field=field
            ) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid {event_type} payload: {e}") from e

    def validate(self, required: Iterable[Union[EventType, str]] = ()) -> None:
        """
        Fail fast on an incomplete or inconsistent registry.

        Raises:
            UnknownEventTypeError: a required type is not registered
            ValueError: a definition has no destination or a non-event schema
        """
        for event_type in required:
            self.get(event_type)

        for definition in self._by_type.values():
            if not definition.destination:
                raise ValueError(f"No destination for event type {definition.event_type}")
            if not issubclass(definition.schema, PipelineEvent):
                raise ValueError(
                    f"Schema for {definition.event_type} is not a PipelineEvent: "
                    f"{definition.schema!r}"
                )

        logger.debug(f"Event registry validated: {', '.join(self._by_type)}")


def default_registry() -> EventRegistry:
    """Registry with the credit pipeline's three event types."""
    registry = EventRegistry()
    registry.register(
        EventType.APPLICATION_SUBMITTED,
        CreditApplicationSubmitted,
        Topics.CREDIT_APPLICATION_SUBMITTED
    )
    registry.register(
        EventType.RISK_ASSESSMENT_COMPLETED,
        RiskAssessmentCompleted,
        Topics.RISK_ASSESSMENT_COMPLETED
    )
    registry.register(
        EventType.DECISION_MADE,
        CreditDecisionMade,
        Topics.CREDIT_DECISION_MADE
    )
    registry.validate(required=list(EventType))
    return registry
