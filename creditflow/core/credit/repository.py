"""
Credit Repositories

SQL access for applications and risk assessments. Every function takes
a `Connection` so callers choose the transaction boundary; the stage
consumers and the submission flow always run these inside the same
transaction as their outbox insert.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..database.adapter import Connection
from .models import (
    ApplicationStatus,
    CreditApplication,
    DecisionStatus,
    RiskAssessment,
)

logger = logging.getLogger(__name__)


class ApplicationRepository:
    """Rows of `credit_applications`."""

    async def insert(self, conn: Connection, application: CreditApplication) -> None:
        await conn.execute(
            """
            INSERT INTO credit_applications (
                application_id, customer_id, requested_amount, credit_score,
                annual_income, status, decision, decision_reason,
                submitted_at, last_updated
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            application.application_id,
            application.customer_id,
            application.requested_amount,
            application.credit_score,
            application.annual_income,
            application.status,
            application.decision,
            application.decision_reason,
            application.submitted_at,
            application.last_updated
        )

    async def get(self, conn: Connection, application_id: str) -> Optional[CreditApplication]:
        row = await conn.fetchrow(
            "SELECT * FROM credit_applications WHERE application_id = $1",
            application_id
        )
        return CreditApplication(**row) if row else None

    async def transition(
        self,
        conn: Connection,
        application_id: str,
        expected: ApplicationStatus,
        new_status: ApplicationStatus,
        decision: Optional[DecisionStatus] = None,
        decision_reason: Optional[str] = None
    ) -> bool:
        """
        Move an application from `expected` to `new_status`.

        Returns:
            False when the row is missing or no longer in `expected`
        """
        if decision is None:
            updated = await conn.execute(
                """
                UPDATE credit_applications
                SET status = $1, last_updated = $2
                WHERE application_id = $3 AND status = $4
                """,
                new_status,
                datetime.now(timezone.utc),
                application_id,
                expected
            )
        else:
            updated = await conn.execute(
                """
                UPDATE credit_applications
                SET status = $1, decision = $2, decision_reason = $3, last_updated = $4
                WHERE application_id = $5 AND status = $6
                """,
                new_status,
                decision,
                decision_reason,
                datetime.now(timezone.utc),
                application_id,
                expected
            )
        return updated == 1


class AssessmentRepository:
    """Rows of `risk_assessments` (one per application)."""

    async def insert(self, conn: Connection, assessment: RiskAssessment) -> None:
        await conn.execute(
            """
            INSERT INTO risk_assessments (
                assessment_id, application_id, risk_level, risk_score,
                assessment_notes, assessed_at
            ) VALUES ($1, $2, $3, $4, $5, $6)
            """,
            assessment.assessment_id,
            assessment.application_id,
            assessment.risk_level,
            assessment.risk_score,
            assessment.assessment_notes,
            assessment.assessed_at
        )

    async def get_by_application(
        self,
        conn: Connection,
        application_id: str
    ) -> Optional[RiskAssessment]:
        row = await conn.fetchrow(
            "SELECT * FROM risk_assessments WHERE application_id = $1",
            application_id
        )
        return RiskAssessment(**row) if row else None

    async def count_for_application(self, conn: Connection, application_id: str) -> int:
        count = await conn.fetchval(
            "SELECT COUNT(*) AS count FROM risk_assessments WHERE application_id = $1",
            application_id
        )
        return int(count or 0)
