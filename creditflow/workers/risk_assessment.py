"""
Risk Assessment Consumer

Consumes CreditApplicationSubmitted, scores the application from its
stored row and emits RiskAssessmentCompleted in the same transaction
that records the assessment.
"""

from typing import Optional
from uuid import uuid4

from ..core.credit.models import ApplicationStatus, RiskAssessment
from ..core.credit.repository import ApplicationRepository, AssessmentRepository
from ..core.credit.scoring import assess
from ..core.errors import ConflictError
from ..core.events.models import CreditApplicationSubmitted, RiskAssessmentCompleted
from ..core.events.taxonomy import EventType, Topics
from ..core.outbox.transactional import TransactionalPublisher
from .stage import StageConsumer, StageResult


class RiskAssessmentConsumer(StageConsumer):
    """Stage 1: credit.application.submitted -> risk.assessment.completed."""

    name = "risk-assessment"
    topic = Topics.CREDIT_APPLICATION_SUBMITTED
    group = "risk-assessment-group"
    event_type = EventType.APPLICATION_SUBMITTED

    def __init__(
        self,
        *args,
        application_repository: Optional[ApplicationRepository] = None,
        assessment_repository: Optional[AssessmentRepository] = None,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.application_repository = application_repository or ApplicationRepository()
        self.assessment_repository = assessment_repository or AssessmentRepository()

    async def process(
        self,
        txn: TransactionalPublisher,
        event: CreditApplicationSubmitted
    ) -> StageResult:
        application = await self.application_repository.get(txn.conn, event.application_id)
        if application is None:
            raise ConflictError(
                f"Application {event.application_id} not found",
                entity="credit_application",
                entity_id=event.application_id
            )
        if application.status != ApplicationStatus.SUBMITTED:
            return StageResult.already_done(f"application already {application.status.value}")

        # Score the stored row, not the payload snapshot
        risk_level, risk_score, notes = assess(
            application.credit_score,
            application.annual_income,
            application.requested_amount
        )
        assessment = RiskAssessment(
            assessment_id=str(uuid4()),
            application_id=application.application_id,
            risk_level=risk_level,
            risk_score=risk_score,
            assessment_notes=notes,
        )
        await self.assessment_repository.insert(txn.conn, assessment)

        moved = await self.application_repository.transition(
            txn.conn,
            application.application_id,
            ApplicationStatus.SUBMITTED,
            ApplicationStatus.RISK_ASSESSED
        )
        if not moved:
            raise ConflictError(
                f"Application {application.application_id} changed status during assessment",
                entity="credit_application",
                entity_id=application.application_id
            )

        await txn.emit(RiskAssessmentCompleted.create(
            assessment_id=assessment.assessment_id,
            application_id=assessment.application_id,
            risk_level=risk_level,
            risk_score=risk_score,
            assessment_notes=notes,
        ))
        return StageResult.committed(f"risk level {risk_level.value}, score {risk_score}")
