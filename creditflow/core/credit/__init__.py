"""
Credit Domain

Applications, risk assessments, scoring and the read-through cache.
The submission service lives in `creditflow.core.credit.service`.
"""

from .cache import InMemoryCache, ReadThroughCache, RedisCache
from .models import (
    ApplicationStatus,
    CreditApplication,
    DecisionStatus,
    RiskAssessment,
    RiskLevel,
)
from .repository import ApplicationRepository, AssessmentRepository
from .scoring import assess, calculate_risk_level, calculate_risk_score, determine_decision

__all__ = [
    "ReadThroughCache",
    "InMemoryCache",
    "RedisCache",
    "ApplicationStatus",
    "CreditApplication",
    "DecisionStatus",
    "RiskAssessment",
    "RiskLevel",
    "ApplicationRepository",
    "AssessmentRepository",
    "assess",
    "calculate_risk_level",
    "calculate_risk_score",
    "determine_decision",
]
