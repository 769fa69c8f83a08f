"""
Event Models

Pydantic models for the credit pipeline events with schema versioning.

Every event carries a non-empty `event_id` (the business correlation
identifier used for dedup) and a `timestamp` that defaults to now.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..credit.models import DecisionStatus, RiskLevel


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class PipelineEvent(BaseModel):
    """Base event model with required fields."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: str
    schema_version: int = 1
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("event_id")
    @classmethod
    def _event_id_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("event_id cannot be empty")
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value):
        # Explicit nulls in stored payloads get the same default as absence
        return _utcnow() if value is None else value

    @property
    def partition_key(self) -> str:
        """Key that keeps one application's chain on one partition."""
        return self.event_id


class CreditApplicationSubmitted(PipelineEvent):
    """Published when a new credit application is submitted."""

    application_id: str
    customer_id: str
    requested_amount: Decimal = Field(gt=0)
    credit_score: Optional[int] = None
    annual_income: Optional[Decimal] = None

    @property
    def partition_key(self) -> str:
        return self.application_id

    @classmethod
    def create(
        cls,
        application_id: str,
        customer_id: str,
        requested_amount: Decimal,
        credit_score: Optional[int] = None,
        annual_income: Optional[Decimal] = None
    ) -> "CreditApplicationSubmitted":
        # event_id = application_id for submission events
        return cls(
            event_id=application_id,
            application_id=application_id,
            customer_id=customer_id,
            requested_amount=requested_amount,
            credit_score=credit_score,
            annual_income=annual_income
        )


class RiskAssessmentCompleted(PipelineEvent):
    """Published by the risk stage once an assessment is committed."""

    assessment_id: str
    application_id: str
    risk_level: RiskLevel
    risk_score: Optional[Decimal] = None
    assessment_notes: Optional[str] = None

    @property
    def partition_key(self) -> str:
        return self.application_id

    @classmethod
    def create(
        cls,
        assessment_id: str,
        application_id: str,
        risk_level: RiskLevel,
        risk_score: Optional[Decimal] = None,
        assessment_notes: Optional[str] = None
    ) -> "RiskAssessmentCompleted":
        return cls(
            event_id=assessment_id,
            assessment_id=assessment_id,
            application_id=application_id,
            risk_level=risk_level,
            risk_score=risk_score,
            assessment_notes=assessment_notes
        )


class CreditDecisionMade(PipelineEvent):
    """Final event of the chain, announced by the decision stage."""

    decision_id: str
    application_id: str
    assessment_id: str
    decision: DecisionStatus
    reason: Optional[str] = None

    @property
    def partition_key(self) -> str:
        return self.application_id

    @classmethod
    def create(
        cls,
        application_id: str,
        assessment_id: str,
        decision: DecisionStatus,
        reason: Optional[str] = None,
        decision_id: Optional[str] = None
    ) -> "CreditDecisionMade":
        decision_id = decision_id or str(uuid4())
        return cls(
            event_id=decision_id,
            decision_id=decision_id,
            application_id=application_id,
            assessment_id=assessment_id,
            decision=decision,
            reason=reason
        )
