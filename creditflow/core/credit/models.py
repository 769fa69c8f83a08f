"""
Credit Domain Models

Entities persisted by the submission flow and the stage consumers.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class ApplicationStatus(str, Enum):
    """Lifecycle of a credit application."""
    SUBMITTED = "SUBMITTED"
    RISK_ASSESSED = "RISK_ASSESSED"
    DECISION_MADE = "DECISION_MADE"


class RiskLevel(str, Enum):
    """Risk levels for credit assessment."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DecisionStatus(str, Enum):
    """Final decision on a credit application."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class CreditApplication(BaseModel):
    """A credit application row."""

    model_config = ConfigDict(use_enum_values=False)

    application_id: str
    customer_id: str
    requested_amount: Decimal
    credit_score: Optional[int] = None
    annual_income: Optional[Decimal] = None
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    decision: Optional[DecisionStatus] = None
    decision_reason: Optional[str] = None
    submitted_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)


class RiskAssessment(BaseModel):
    """Stored result of the risk stage (one per application)."""

    assessment_id: str
    application_id: str
    risk_level: RiskLevel
    risk_score: Optional[Decimal] = None
    assessment_notes: Optional[str] = None
    assessed_at: datetime = Field(default_factory=_utcnow)
