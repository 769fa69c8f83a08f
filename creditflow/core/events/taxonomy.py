"""
Credit Pipeline Event Taxonomy

Event type tags and the broker topics they travel on.

Flow:
    CreditApplicationSubmitted -> RiskAssessmentCompleted -> CreditDecisionMade
"""

from enum import Enum


class EventType(str, Enum):
    """Event type tags stored in the outbox and carried in message headers."""
    APPLICATION_SUBMITTED = "CreditApplicationSubmitted"
    RISK_ASSESSMENT_COMPLETED = "RiskAssessmentCompleted"
    DECISION_MADE = "CreditDecisionMade"


class Topics:
    """Broker topic names."""

    CREDIT_APPLICATION_SUBMITTED = "credit.application.submitted"
    RISK_ASSESSMENT_COMPLETED = "risk.assessment.completed"
    CREDIT_DECISION_MADE = "credit.decision.made"

    DLQ_SUFFIX = ".dlq"

    @classmethod
    def dead_letter(cls, topic: str) -> str:
        """Dead-letter destination for a topic."""
        return f"{topic}{cls.DLQ_SUFFIX}"

