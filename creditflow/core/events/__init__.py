"""
Credit Pipeline Event System

Event taxonomy, pydantic event models and the typed event registry.

Usage:
    from creditflow.core.events import CreditApplicationSubmitted, default_registry

    registry = default_registry()
    event = CreditApplicationSubmitted.create(application_id, customer_id, amount)
    payload = registry.encode(event)
"""

from .taxonomy import (
    EventType,
    Topics,
)

from .models import (
    PipelineEvent,
    CreditApplicationSubmitted,
    RiskAssessmentCompleted,
    CreditDecisionMade,
)

from .registry import (
    EventDefinition,
    EventRegistry,
    default_registry,
)


__all__ = [
    # Taxonomy
    "EventType",
    "Topics",
    # Models
    "PipelineEvent",
    "CreditApplicationSubmitted",
    "RiskAssessmentCompleted",
    "CreditDecisionMade",
    # Registry
    "EventDefinition",
    "EventRegistry",
    "default_registry",
]
