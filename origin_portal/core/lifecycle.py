"""
Application lifecycle state machine.

PENDING -> APPROVED | REJECTED. Both targets are terminal. Each transition is
a single conditional UPDATE guarded on the current status, so two admins
clicking at once cannot both succeed or assign two certificate numbers.
"""
import uuid
from functools import partial
from typing import Optional

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from origin_portal.config import Settings, get_settings
from origin_portal.core.cache import DashboardCache
from origin_portal.core.errors import (
    InvalidStateError,
    NotFoundError,
    PortalError,
    Result,
    ValidationError,
)
from origin_portal.core.identifiers import (
    IdentifierExhaustedError,
    generate_certificate_number,
    generate_unused,
    parse_uuid,
)
from origin_portal.database.models import (
    Application,
    ApplicationStatus,
    PaymentStatus,
    utcnow,
)
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ApplicationLifecycle:
    """
    Governs approve/reject transitions and their side effects.

    Side effects are limited to invalidating the cached admin and applicant
    dashboard views.
    """

    def __init__(
        self,
        cache: Optional[DashboardCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache or DashboardCache()

    async def _load(self, db: AsyncSession, application_id: uuid.UUID) -> Application:
        stmt = (
            select(Application)
            .where(Application.id == application_id)
            .execution_options(populate_existing=True)
        )
        application = (await db.execute(stmt)).scalar_one_or_none()
        if application is None:
            raise NotFoundError("Application not found")
        return application

    async def _certificate_number_taken(self, db: AsyncSession, candidate: str) -> bool:
        stmt = select(exists().where(Application.certificate_number == candidate))
        return bool((await db.execute(stmt)).scalar())

    async def _explain_refusal(
        self, db: AsyncSession, application_id: uuid.UUID, action: str
    ) -> PortalError:
        """Work out why a guarded UPDATE touched no rows."""
        application = await self._load(db, application_id)
        if application.status != ApplicationStatus.PENDING.value:
            return InvalidStateError(
                f"Application is {application.status}; only PENDING applications can be {action}"
            )
        return InvalidStateError("Application fee must be paid before approval")

    async def _approve(
        self,
        db: AsyncSession,
        application_id: uuid.UUID,
        reviewer_id: Optional[uuid.UUID],
    ) -> Application:
        conditions = [
            Application.id == application_id,
            Application.status == ApplicationStatus.PENDING.value,
        ]
        if self.settings.require_payment_before_approval:
            conditions.append(Application.payment_status == PaymentStatus.PAID.value)

        max_attempts = self.settings.identifier_max_attempts
        for attempt in range(1, max_attempts + 1):
            certificate_number = await generate_unused(
                generate_certificate_number,
                partial(self._certificate_number_taken, db),
                max_attempts,
            )
            stmt = (
                update(Application)
                .where(*conditions)
                .values(
                    status=ApplicationStatus.APPROVED.value,
                    certificate_number=certificate_number,
                    approved_at=utcnow(),
                    reviewed_by=reviewer_id,
                )
                .execution_options(synchronize_session=False)
            )
            try:
                result = await db.execute(stmt)
            except IntegrityError:
                # Another approval took the number after the availability check.
                await db.rollback()
                logger.warning(
                    "certificate_number_collision",
                    application_id=str(application_id),
                    certificate_number=certificate_number,
                    attempt=attempt,
                )
                continue

            if result.rowcount != 1:
                raise await self._explain_refusal(db, application_id, "approved")

            await db.commit()
            return await self._load(db, application_id)

        raise IdentifierExhaustedError(
            f"No unused certificate number after {max_attempts} attempts"
        )

    async def approve(
        self,
        db: AsyncSession,
        application_id: uuid.UUID | str,
        reviewer_id: Optional[uuid.UUID | str] = None,
    ) -> Result[Application]:
        """
        Approve a PENDING application and assign its certificate number.

        Approving twice fails with InvalidState and leaves the first
        certificate number in place.
        """
        try:
            app_id = parse_uuid(application_id, "application id")
            reviewer = parse_uuid(reviewer_id, "reviewer id") if reviewer_id else None
            application = await self._approve(db, app_id, reviewer)
        except PortalError as e:
            await db.rollback()
            metrics.record_transition("approve", e.code.value)
            logger.warning(
                "application_approval_refused",
                application_id=str(application_id),
                code=e.code.value,
                error=e.message,
            )
            return Result.failure(e)

        metrics.record_transition("approve", "success")
        logger.info(
            "application_approved",
            application_id=str(application.id),
            certificate_number=application.certificate_number,
            reviewer_id=str(reviewer) if reviewer else None,
        )
        await self.cache.invalidate_for(application.user_id)
        return Result.success(application)

    async def _reject(
        self,
        db: AsyncSession,
        application_id: uuid.UUID,
        reason: str,
        reviewer_id: Optional[uuid.UUID],
    ) -> Application:
        stmt = (
            update(Application)
            .where(
                Application.id == application_id,
                Application.status == ApplicationStatus.PENDING.value,
            )
            .values(
                status=ApplicationStatus.REJECTED.value,
                rejection_reason=reason,
                reviewed_by=reviewer_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            raise await self._explain_refusal(db, application_id, "rejected")

        await db.commit()
        return await self._load(db, application_id)

    async def reject(
        self,
        db: AsyncSession,
        application_id: uuid.UUID | str,
        reason: Optional[str],
        reviewer_id: Optional[uuid.UUID | str] = None,
    ) -> Result[Application]:
        """Reject a PENDING application with a non-empty reason."""
        try:
            cleaned = (reason or "").strip()
            if not cleaned:
                raise ValidationError("A rejection reason is required")
            app_id = parse_uuid(application_id, "application id")
            reviewer = parse_uuid(reviewer_id, "reviewer id") if reviewer_id else None
            application = await self._reject(db, app_id, cleaned, reviewer)
        except PortalError as e:
            await db.rollback()
            metrics.record_transition("reject", e.code.value)
            logger.warning(
                "application_rejection_refused",
                application_id=str(application_id),
                code=e.code.value,
                error=e.message,
            )
            return Result.failure(e)

        metrics.record_transition("reject", "success")
        logger.info("application_rejected", application_id=str(application.id))
        await self.cache.invalidate_for(application.user_id)
        return Result.success(application)
