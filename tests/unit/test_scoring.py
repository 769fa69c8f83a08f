"""
Tests for risk scoring and decision rules.
"""

from decimal import Decimal

import pytest

from creditflow.core.credit.models import DecisionStatus, RiskLevel
from creditflow.core.credit.scoring import (
    assess,
    assessment_notes,
    calculate_risk_level,
    calculate_risk_score,
    debt_to_income,
    determine_decision,
)


class TestDebtToIncome:
    """Test the debt-to-income ratio."""

    def test_simple_ratio(self):
        assert debt_to_income(Decimal("20000"), Decimal("100000")) == Decimal("0.20")

    def test_rounds_half_up(self):
        assert debt_to_income(Decimal("29950"), Decimal("100000")) == Decimal("0.30")
        assert debt_to_income(Decimal("29949"), Decimal("100000")) == Decimal("0.30")
        assert debt_to_income(Decimal("29940"), Decimal("100000")) == Decimal("0.30")
        assert debt_to_income(Decimal("29400"), Decimal("100000")) == Decimal("0.29")

    def test_missing_or_zero_income(self):
        assert debt_to_income(Decimal("1000"), None) is None
        assert debt_to_income(Decimal("1000"), Decimal("0")) is None


class TestRiskLevel:
    """Test risk level classification."""

    def test_low_risk(self):
        assert calculate_risk_level(780, Decimal("100000"), Decimal("20000")) == RiskLevel.LOW

    def test_medium_risk(self):
        assert calculate_risk_level(700, Decimal("100000"), Decimal("40000")) == RiskLevel.MEDIUM

    def test_high_risk_on_ratio(self):
        assert calculate_risk_level(700, Decimal("100000"), Decimal("60000")) == RiskLevel.HIGH

    def test_high_risk_on_score(self):
        assert calculate_risk_level(600, Decimal("100000"), Decimal("10000")) == RiskLevel.HIGH

    def test_critical_below_floor(self):
        assert calculate_risk_level(549, Decimal("100000"), Decimal("1000")) == RiskLevel.CRITICAL

    def test_floor_itself_is_not_critical(self):
        assert calculate_risk_level(550, Decimal("100000"), Decimal("1000")) == RiskLevel.HIGH

    def test_missing_score_is_critical(self):
        assert calculate_risk_level(None, Decimal("100000"), Decimal("1000")) == RiskLevel.CRITICAL

    def test_missing_income_is_high(self):
        assert calculate_risk_level(800, None, Decimal("1000")) == RiskLevel.HIGH
        assert calculate_risk_level(800, Decimal("0"), Decimal("1000")) == RiskLevel.HIGH

    def test_ratio_boundary_is_exclusive(self):
        """A ratio of exactly 0.30 is not low risk."""
        assert calculate_risk_level(800, Decimal("100000"), Decimal("30000")) == RiskLevel.MEDIUM

    def test_ratio_rounded_before_comparison(self):
        """0.2995 rounds to 0.30 and loses the low-risk band."""
        assert calculate_risk_level(800, Decimal("100000"), Decimal("29950")) == RiskLevel.MEDIUM

    def test_score_boundaries_are_inclusive(self):
        assert calculate_risk_level(750, Decimal("100000"), Decimal("10000")) == RiskLevel.LOW
        assert calculate_risk_level(650, Decimal("100000"), Decimal("40000")) == RiskLevel.MEDIUM


class TestRiskScore:
    """Test the 0-100 risk score."""

    def test_score_from_credit_score(self):
        # (850 - 780) / 850 = 0.0823... -> 0.08
        assert calculate_risk_score(780) == Decimal("8")

    def test_perfect_score(self):
        assert calculate_risk_score(850) == Decimal("0")

    def test_missing_score(self):
        assert calculate_risk_score(None) == Decimal("80")


class TestAssessment:
    """Test the combined assessment and decision."""

    def test_notes_format(self):
        notes = assessment_notes(RiskLevel.LOW, 780, Decimal("100000"), Decimal("20000"))
        assert notes == "Risk Level: LOW. Credit Score: 780, Annual Income: 100000, Requested: 20000"

    def test_assess_is_deterministic(self):
        first = assess(720, Decimal("85000"), Decimal("30000"))
        second = assess(720, Decimal("85000"), Decimal("30000"))
        assert first == second
        assert first[0] == RiskLevel.MEDIUM

    @pytest.mark.parametrize("level,decision,reason", [
        (RiskLevel.LOW, DecisionStatus.APPROVED, "Low risk profile"),
        (RiskLevel.MEDIUM, DecisionStatus.MANUAL_REVIEW, "Medium risk requires manual review"),
        (RiskLevel.HIGH, DecisionStatus.REJECTED, "High risk profile"),
        (RiskLevel.CRITICAL, DecisionStatus.REJECTED, "Critical risk factors present"),
    ])
    def test_decision_rules(self, level, decision, reason):
        assert determine_decision(level) == (decision, reason)

    def test_decision_accepts_raw_value(self):
        assert determine_decision("LOW")[0] == DecisionStatus.APPROVED
