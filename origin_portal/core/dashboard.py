"""Admin and applicant dashboard views, computed on read and cached in Redis."""
import uuid
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from origin_portal.core.cache import (
    ADMIN_DASHBOARD_KEY,
    DashboardCache,
    applicant_dashboard_key,
)
from origin_portal.core.errors import NotFoundError, PortalError, Result
from origin_portal.core.identifiers import parse_uuid
from origin_portal.core.payments import PaymentReconciliation
from origin_portal.core.views import application_view, transaction_view, user_view
from origin_portal.database.models import (
    Application,
    ApplicationStatus,
    PaymentStatus,
    Transaction,
    User,
)
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class DashboardService:
    """Builds dashboard views. The cache only ever holds derived data."""

    def __init__(
        self,
        payments: PaymentReconciliation,
        cache: Optional[DashboardCache] = None,
    ):
        self.payments = payments
        self.cache = cache or payments.cache

    async def admin_overview(self, db: AsyncSession) -> Dict[str, Any]:
        """Application counts per status, paid count and the wallet summary."""
        cached = await self.cache.get(ADMIN_DASHBOARD_KEY)
        metrics.record_dashboard_cache("admin", cached is not None)
        if cached is not None:
            return cached

        rows = await db.execute(
            select(Application.status, func.count(Application.id)).group_by(Application.status)
        )
        by_status = {status.value: 0 for status in ApplicationStatus}
        by_status.update({status: count for status, count in rows.all()})

        paid = await db.execute(
            select(func.count(Application.id)).where(
                Application.payment_status == PaymentStatus.PAID.value
            )
        )

        view = {
            "applications": {
                "total": sum(by_status.values()),
                "by_status": by_status,
                "paid": int(paid.scalar_one()),
            },
            "wallet": await self.payments.wallet_summary(db),
        }
        await self.cache.set(ADMIN_DASHBOARD_KEY, view)
        return view

    async def applicant_overview(
        self, db: AsyncSession, user_id: uuid.UUID | str
    ) -> Result[Dict[str, Any]]:
        """The applicant's profile, application summary and payment history."""
        try:
            uid = parse_uuid(user_id, "user id")
            key = applicant_dashboard_key(uid)
            cached = await self.cache.get(key)
            metrics.record_dashboard_cache("applicant", cached is not None)
            if cached is not None:
                return Result.success(cached)

            user = await db.get(User, uid)
            if user is None:
                raise NotFoundError("User not found")
        except PortalError as e:
            return Result.failure(e)

        application = (
            await db.execute(
                select(Application)
                .where(Application.user_id == uid)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        transactions = (
            await db.execute(
                select(Transaction)
                .where(Transaction.user_id == uid)
                .order_by(Transaction.created_at.desc())
            )
        ).scalars().all()

        view = {
            "user": user_view(user),
            "application": application_view(application) if application else None,
            "transactions": [transaction_view(tx) for tx in transactions],
        }
        await self.cache.set(key, view)
        logger.debug("applicant_dashboard_built", user_id=str(uid))
        return Result.success(view)
