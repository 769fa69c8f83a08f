"""
Application Service

Submission and status reads for credit applications.

`submit` writes the application row and its CreditApplicationSubmitted
outbox row in one transaction and returns without touching the broker.
Risk assessment and the decision happen asynchronously; callers observe
them through the application's status.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from ..database.adapter import DatabaseAdapter
from ..errors import ValidationError
from ..events.models import CreditApplicationSubmitted
from ..observability import tag_application, traced
from ..outbox.transactional import transactional_publish
from ..outbox.writer import OutboxWriter
from .cache import InMemoryCache, ReadThroughCache
from .models import ApplicationStatus, CreditApplication, RiskAssessment
from .repository import ApplicationRepository, AssessmentRepository

logger = logging.getLogger(__name__)

APPLICATION_CACHE = "application"
ASSESSMENT_CACHE = "assessment"


def _to_decimal(value: Union[Decimal, int, float, str, None], field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        # str() first so floats keep their printed value
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be a number", field=field) from e


class ApplicationService:
    """
    Credit application entry points.

    Usage:
        service = ApplicationService(db, writer, cache)
        application_id = await service.submit("CUST-123", Decimal("20000"), 780, Decimal("100000"))
        application = await service.get_application(application_id)
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        writer: Optional[OutboxWriter] = None,
        cache: Optional[ReadThroughCache] = None,
        applications: Optional[ApplicationRepository] = None,
        assessments: Optional[AssessmentRepository] = None
    ):
        self.db = db
        self.writer = writer or OutboxWriter()
        self.cache = cache or InMemoryCache({APPLICATION_CACHE: 1800, ASSESSMENT_CACHE: 3600})
        self.applications = applications or ApplicationRepository()
        self.assessments = assessments or AssessmentRepository()

    @traced("application.submit")
    async def submit(
        self,
        customer_id: str,
        requested_amount: Union[Decimal, int, str],
        credit_score: Optional[int] = None,
        annual_income: Union[Decimal, int, str, None] = None
    ) -> str:
        """
        Submit a credit application.

        Returns:
            The new application id

        Raises:
            ValidationError: before anything is written
            PersistenceError: the transaction was rejected; nothing was committed
        """
        if not customer_id or not str(customer_id).strip():
            raise ValidationError("Customer ID is required", field="customer_id")
        amount = _to_decimal(requested_amount, "requested_amount")
        if amount is None:
            raise ValidationError("Requested amount is required", field="requested_amount")
        if amount <= 0:
            raise ValidationError("Requested amount must be positive", field="requested_amount")
        income = _to_decimal(annual_income, "annual_income")
        if credit_score is not None and not isinstance(credit_score, int):
            raise ValidationError("Credit score must be an integer", field="credit_score")

        application_id = str(uuid4())
        tag_application(application_id)

        application = CreditApplication(
            application_id=application_id,
            customer_id=customer_id,
            requested_amount=amount,
            credit_score=credit_score,
            annual_income=income,
            status=ApplicationStatus.SUBMITTED,
        )
        event = CreditApplicationSubmitted.create(
            application_id=application_id,
            customer_id=customer_id,
            requested_amount=amount,
            credit_score=credit_score,
            annual_income=income,
        )

        async with transactional_publish(self.db, self.writer) as txn:
            await self.applications.insert(txn.conn, application)
            await txn.emit(event)

        logger.info(
            f"Submitted credit application {application_id} for customer {customer_id}",
            extra={"application_id": application_id, "customer_id": customer_id}
        )
        return application_id

    async def get_application(self, application_id: str) -> Optional[CreditApplication]:
        return await self.cache.get_or_load(APPLICATION_CACHE, application_id, self._load_application)

    async def get_assessment(self, application_id: str) -> Optional[RiskAssessment]:
        return await self.cache.get_or_load(ASSESSMENT_CACHE, application_id, self._load_assessment)

    async def evict(self, application_id: str) -> None:
        """Drop cached reads after a stage changed the application."""
        await self.cache.evict_id(application_id)

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    async def _load_application(self, application_id: str) -> Optional[CreditApplication]:
        async with self.db.transaction() as conn:
            return await self.applications.get(conn, application_id)

    async def _load_assessment(self, application_id: str) -> Optional[RiskAssessment]:
        async with self.db.transaction() as conn:
            return await self.assessments.get_by_application(conn, application_id)
