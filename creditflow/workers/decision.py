"""
Decision Consumer

Consumes RiskAssessmentCompleted and records the final decision on the
application, announcing it with CreditDecisionMade.
"""

from typing import Optional

from ..core.credit.models import ApplicationStatus
from ..core.credit.repository import ApplicationRepository, AssessmentRepository
from ..core.credit.scoring import determine_decision
from ..core.errors import ConflictError
from ..core.events.models import CreditDecisionMade, RiskAssessmentCompleted
from ..core.events.taxonomy import EventType, Topics
from ..core.outbox.transactional import TransactionalPublisher
from .stage import StageConsumer, StageResult


class DecisionConsumer(StageConsumer):
    """Stage 2: risk.assessment.completed -> credit.decision.made."""

    name = "decision"
    topic = Topics.RISK_ASSESSMENT_COMPLETED
    group = "decision-group"
    event_type = EventType.RISK_ASSESSMENT_COMPLETED

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
        event: RiskAssessmentCompleted
    ) -> StageResult:
        application = await self.application_repository.get(txn.conn, event.application_id)
        if application is None:
            raise ConflictError(
                f"Application {event.application_id} not found",
                entity="credit_application",
                entity_id=event.application_id
            )
        if application.status == ApplicationStatus.DECISION_MADE:
            return StageResult.already_done("decision already made")
        if application.status != ApplicationStatus.RISK_ASSESSED:
            raise ConflictError(
                f"Application {application.application_id} is {application.status.value}, "
                f"expected RISK_ASSESSED (out-of-order delivery)",
                entity="credit_application",
                entity_id=application.application_id
            )

        assessment = await self.assessment_repository.get_by_application(
            txn.conn, application.application_id
        )
        if assessment is None:
            raise ConflictError(
                f"No risk assessment stored for {application.application_id}",
                entity="risk_assessment",
                entity_id=application.application_id
            )

        decision, reason = determine_decision(assessment.risk_level)
        moved = await self.application_repository.transition(
            txn.conn,
            application.application_id,
            ApplicationStatus.RISK_ASSESSED,
            ApplicationStatus.DECISION_MADE,
            decision=decision,
            decision_reason=reason
        )
        if not moved:
            raise ConflictError(
                f"Application {application.application_id} changed status during decision",
                entity="credit_application",
                entity_id=application.application_id
            )

        await txn.emit(CreditDecisionMade.create(
            application_id=application.application_id,
            assessment_id=assessment.assessment_id,
            decision=decision,
            reason=reason,
        ))
        return StageResult.committed(f"{decision.value}: {reason}")
