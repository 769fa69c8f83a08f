"""
Risk Scoring

Pure, deterministic functions over application attributes.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from .models import DecisionStatus, RiskLevel

CRITICAL_SCORE_FLOOR = 550
LOW_RISK_MIN_SCORE = 750
MEDIUM_RISK_MIN_SCORE = 650
LOW_RISK_MAX_DTI = Decimal("0.3")
MEDIUM_RISK_MAX_DTI = Decimal("0.5")
MAX_CREDIT_SCORE = 850
NO_SCORE_RISK = Decimal("80")

_TWO_PLACES = Decimal("0.01")


def debt_to_income(requested_amount: Decimal, annual_income: Optional[Decimal]) -> Optional[Decimal]:
    """Requested amount over annual income, rounded half-up to 2 places."""
    if annual_income is None or annual_income <= 0:
        return None
    return (Decimal(requested_amount) / Decimal(annual_income)).quantize(_TWO_PLACES, ROUND_HALF_UP)


def calculate_risk_level(
    credit_score: Optional[int],
    annual_income: Optional[Decimal],
    requested_amount: Decimal
) -> RiskLevel:
    if credit_score is None or credit_score < CRITICAL_SCORE_FLOOR:
        return RiskLevel.CRITICAL

    dti = debt_to_income(requested_amount, annual_income)
    if dti is None:
        return RiskLevel.HIGH

    if credit_score >= LOW_RISK_MIN_SCORE and dti < LOW_RISK_MAX_DTI:
        return RiskLevel.LOW
    if credit_score >= MEDIUM_RISK_MIN_SCORE and dti < MEDIUM_RISK_MAX_DTI:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def calculate_risk_score(credit_score: Optional[int]) -> Decimal:
    """0-100 risk score; higher is riskier."""
    if credit_score is None:
        return NO_SCORE_RISK
    ratio = (Decimal(MAX_CREDIT_SCORE - credit_score) / Decimal(MAX_CREDIT_SCORE)).quantize(
        _TWO_PLACES, ROUND_HALF_UP
    )
    return ratio * 100


def assessment_notes(
    risk_level: RiskLevel,
    credit_score: Optional[int],
    annual_income: Optional[Decimal],
    requested_amount: Decimal
) -> str:
    return (
        f"Risk Level: {risk_level.value}. Credit Score: {credit_score}, "
        f"Annual Income: {annual_income}, Requested: {requested_amount}"
    )


def assess(
    credit_score: Optional[int],
    annual_income: Optional[Decimal],
    requested_amount: Decimal
) -> Tuple[RiskLevel, Decimal, str]:
    """Risk level, score and notes for one application."""
    level = calculate_risk_level(credit_score, annual_income, requested_amount)
    score = calculate_risk_score(credit_score)
    notes = assessment_notes(level, credit_score, annual_income, requested_amount)
    return level, score, notes


_DECISIONS = {
    RiskLevel.LOW: (DecisionStatus.APPROVED, "Low risk profile"),
    RiskLevel.MEDIUM: (DecisionStatus.MANUAL_REVIEW, "Medium risk requires manual review"),
    RiskLevel.HIGH: (DecisionStatus.REJECTED, "High risk profile"),
    RiskLevel.CRITICAL: (DecisionStatus.REJECTED, "Critical risk factors present"),
}


def determine_decision(risk_level: RiskLevel) -> Tuple[DecisionStatus, str]:
    """Decision and reason for a risk level."""
    return _DECISIONS[RiskLevel(risk_level)]
