"""
Payment reconciliation flow.

initialize -> citizen pays on the Paystack checkout page -> verify. The
transaction row is the source of truth for one payment attempt; the
application's payment_status is flipped to PAID at most once, by whichever
verification wins the conditional UPDATE on the transaction.
"""
import uuid
from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from origin_portal.config import Settings, get_settings
from origin_portal.core.cache import DashboardCache
from origin_portal.core.errors import (
    AlreadyPaidError,
    NotFoundError,
    PaymentFailedError,
    PortalError,
    Result,
    ValidationError,
)
from origin_portal.core.identifiers import (
    generate_payment_reference,
    generate_unused,
    parse_uuid,
)
from origin_portal.core.records import TransactionMetadata
from origin_portal.core.views import transaction_view
from origin_portal.database.models import (
    Application,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    User,
    utcnow,
)
from origin_portal.integrations.paystack_client import PaystackClient
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

RECENT_TRANSACTIONS_LIMIT = 5


@dataclass(frozen=True)
class PaymentInitialization:
    """What the caller needs to redirect the citizen to the checkout page."""

    transaction_id: uuid.UUID
    reference: str
    authorization_url: str
    access_code: str


class PaymentReconciliation:
    """
    Orchestrates payment attempts for the fixed application fee.

    No call is retried automatically. A gateway failure during verify leaves
    the transaction PENDING so a later verify can settle it.
    """

    def __init__(
        self,
        gateway: Optional[PaystackClient] = None,
        cache: Optional[DashboardCache] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the payment flow.

        Args:
            gateway: Paystack client (created from settings if not provided)
            cache: Dashboard cache to invalidate on state changes
            settings: Settings override
        """
        self.settings = settings or get_settings()
        self.gateway = gateway or PaystackClient()
        self.cache = cache or DashboardCache()

    async def _reference_taken(self, db: AsyncSession, candidate: str) -> bool:
        stmt = select(exists().where(Transaction.reference == candidate))
        return bool((await db.execute(stmt)).scalar())

    async def _load_transaction(self, db: AsyncSession, reference: str) -> Transaction:
        stmt = (
            select(Transaction)
            .where(Transaction.reference == reference)
            .execution_options(populate_existing=True)
        )
        transaction = (await db.execute(stmt)).scalar_one_or_none()
        if transaction is None:
            raise NotFoundError(f"Transaction {reference} not found")
        return transaction

    # ------------------------------------------------------------------
    # initialize
    # ------------------------------------------------------------------

    async def _initialize(
        self, db: AsyncSession, user_id: uuid.UUID, application_id: uuid.UUID
    ) -> PaymentInitialization:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        stmt = (
            select(Application)
            .where(
                Application.id == application_id,
                Application.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        application = (await db.execute(stmt)).scalar_one_or_none()
        if application is None:
            raise NotFoundError("Application not found for this user")
        if application.payment_status == PaymentStatus.PAID.value:
            raise AlreadyPaidError("Application fee has already been paid")

        reference = await generate_unused(
            generate_payment_reference,
            partial(self._reference_taken, db),
            self.settings.identifier_max_attempts,
        )
        meta = TransactionMetadata(application_id=application.id, user_id=user.id).to_payload()

        transaction = Transaction(
            reference=reference,
            amount_minor=self.settings.application_fee_minor,
            currency=self.settings.currency,
            status=TransactionStatus.PENDING.value,
            user_id=user.id,
            application_id=application.id,
            meta=meta,
        )
        db.add(transaction)
        await db.flush()

        checkout = await self.gateway.initialize_transaction(
            email=user.email,
            amount=self.settings.application_fee,
            reference=reference,
            metadata=meta,
        )
        await db.commit()

        return PaymentInitialization(
            transaction_id=transaction.id,
            reference=reference,
            authorization_url=checkout.authorization_url,
            access_code=checkout.access_code,
        )

    async def initialize(
        self,
        db: AsyncSession,
        user_id: uuid.UUID | str,
        application_id: uuid.UUID | str,
    ) -> Result[PaymentInitialization]:
        """
        Create a PENDING transaction and start a gateway checkout for it.

        The transaction is committed only once the gateway accepted it.

        Returns:
            Result carrying a PaymentInitialization, or AlreadyPaid, NotFound,
            ValidationError or GatewayError
        """
        try:
            uid = parse_uuid(user_id, "user id")
            app_id = parse_uuid(application_id, "application id")
            initialization = await self._initialize(db, uid, app_id)
        except PortalError as e:
            await db.rollback()
            metrics.record_payment_initialization(e.code.value)
            logger.warning(
                "payment_initialization_refused",
                user_id=str(user_id),
                application_id=str(application_id),
                code=e.code.value,
                error=e.message,
            )
            return Result.failure(e)

        metrics.record_payment_initialization("success")
        logger.info(
            "payment_initialized",
            reference=initialization.reference,
            user_id=str(uid),
            application_id=str(app_id),
            amount_minor=self.settings.application_fee_minor,
        )
        await self.cache.invalidate_for(uid)
        return Result.success(initialization)

    # ------------------------------------------------------------------
    # verify
    # ------------------------------------------------------------------

    async def _settle_success(self, db: AsyncSession, transaction: Transaction) -> Transaction:
        stmt = (
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING.value,
            )
            .values(status=TransactionStatus.SUCCESS.value)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)

        if result.rowcount == 1 and transaction.application_id is not None:
            await db.execute(
                update(Application)
                .where(
                    Application.id == transaction.application_id,
                    Application.payment_status == PaymentStatus.UNPAID.value,
                )
                .values(payment_status=PaymentStatus.PAID.value)
                .execution_options(synchronize_session=False)
            )
        await db.commit()
        return await self._load_transaction(db, transaction.reference)

    async def _settle_failure(self, db: AsyncSession, transaction: Transaction) -> Transaction:
        stmt = (
            update(Transaction)
            .where(
                Transaction.id == transaction.id,
                Transaction.status == TransactionStatus.PENDING.value,
            )
            .values(status=TransactionStatus.FAILED.value)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()
        return await self._load_transaction(db, transaction.reference)

    async def _verify(self, db: AsyncSession, reference: str) -> tuple[Transaction, bool]:
        """Returns the settled transaction and whether the gateway was consulted."""
        transaction = await self._load_transaction(db, reference)

        if transaction.status == TransactionStatus.SUCCESS.value:
            return transaction, False
        if transaction.status == TransactionStatus.FAILED.value:
            raise PaymentFailedError(
                "Payment failed; start a new payment to try again",
                transaction=transaction,
            )

        outcome = await self.gateway.verify_transaction(reference)

        # The amount is only checked when the gateway reports one.
        covered = (
            outcome.amount_minor is None or outcome.amount_minor >= transaction.amount_minor
        )
        if outcome.succeeded and covered:
            transaction = await self._settle_success(db, transaction)
        else:
            if outcome.succeeded:
                logger.warning(
                    "payment_amount_mismatch",
                    reference=reference,
                    expected_minor=transaction.amount_minor,
                    received_minor=outcome.amount_minor,
                )
            transaction = await self._settle_failure(db, transaction)

        # A concurrent verification may have settled the row first.
        if transaction.status != TransactionStatus.SUCCESS.value:
            raise PaymentFailedError(
                f"Payment was not successful (gateway status: {outcome.status})",
                transaction=transaction,
            )
        return transaction, True

    async def verify(self, db: AsyncSession, reference: str) -> Result[Transaction]:
        """
        Reconcile one payment attempt with the gateway.

        Safe to call repeatedly: a transaction already SUCCESS returns at once
        without a gateway call, and the application is credited only by the
        call that moved the transaction out of PENDING.

        Returns:
            Result carrying the transaction. A declined payment is a failure
            whose value is the FAILED transaction.
        """
        reference = (reference or "").strip()
        try:
            if not reference:
                raise ValidationError("A payment reference is required")
            transaction, consulted = await self._verify(db, reference)
        except PaymentFailedError as e:
            metrics.record_payment_verification("failed")
            logger.warning("payment_verification_failed", reference=reference, error=e.message)
            if e.transaction is not None:
                await self.cache.invalidate_for(e.transaction.user_id)
            return Result.failure(e, value=e.transaction)
        except PortalError as e:
            await db.rollback()
            metrics.record_payment_verification(e.code.value)
            logger.warning(
                "payment_verification_refused",
                reference=reference,
                code=e.code.value,
                error=e.message,
            )
            return Result.failure(e)

        if not consulted:
            metrics.record_payment_verification("already_verified")
            logger.info("payment_already_verified", reference=reference)
            return Result.success(transaction)

        metrics.record_payment_verification("success")
        logger.info(
            "payment_verified",
            reference=reference,
            application_id=str(transaction.application_id) if transaction.application_id else None,
        )
        await self.cache.invalidate_for(transaction.user_id)
        return Result.success(transaction)

    async def handle_charge_success(
        self, event_data: Dict[str, Any], db: AsyncSession
    ) -> Result[Transaction]:
        """
        Webhook handler for ``charge.success``.

        The event body is not trusted for the outcome; the reference is
        re-verified against the gateway.
        """
        reference = event_data.get("reference") if isinstance(event_data, dict) else None
        if not reference:
            return Result.failure(ValidationError("Webhook event carries no reference"))
        return await self.verify(db, str(reference))

    async def reconcile_pending(
        self, db: AsyncSession, older_than: timedelta
    ) -> Dict[str, int]:
        """
        Verify every PENDING transaction created before ``now - older_than``.

        Operator-driven; nothing schedules this automatically.

        Returns:
            Counts keyed by outcome: checked, success, failed, error
        """
        cutoff = utcnow() - older_than
        stmt = (
            select(Transaction.reference)
            .where(
                Transaction.status == TransactionStatus.PENDING.value,
                Transaction.created_at < cutoff,
            )
            .order_by(Transaction.created_at)
        )
        references = list((await db.execute(stmt)).scalars().all())

        counts = {"checked": 0, "success": 0, "failed": 0, "error": 0}
        for reference in references:
            counts["checked"] += 1
            result = await self.verify(db, reference)
            if result.ok:
                counts["success"] += 1
            elif isinstance(result.error, PaymentFailedError):
                counts["failed"] += 1
            else:
                counts["error"] += 1

        logger.info("pending_payments_reconciled", cutoff=cutoff.isoformat(), **counts)
        return counts

    # ------------------------------------------------------------------
    # listings
    # ------------------------------------------------------------------

    async def list_transactions(self, db: AsyncSession) -> List[Transaction]:
        """All transactions, newest first, with their users loaded."""
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.user))
            .order_by(Transaction.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list((await db.execute(stmt)).scalars().all())

    async def user_transactions(
        self, db: AsyncSession, user_id: uuid.UUID | str
    ) -> Result[List[Transaction]]:
        try:
            uid = parse_uuid(user_id, "user id")
        except PortalError as e:
            return Result.failure(e)
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == uid)
            .order_by(Transaction.created_at.desc())
        )
        return Result.success(list((await db.execute(stmt)).scalars().all()))

    async def wallet_summary(self, db: AsyncSession) -> Dict[str, Any]:
        """Total collected from SUCCESS transactions and the latest activity."""
        totals = await db.execute(
            select(
                func.coalesce(func.sum(Transaction.amount_minor), 0),
                func.count(Transaction.id),
            ).where(Transaction.status == TransactionStatus.SUCCESS.value)
        )
        total_minor, successful_count = totals.one()

        recent_stmt = (
            select(Transaction)
            .options(selectinload(Transaction.user))
            .order_by(Transaction.created_at.desc())
            .execution_options(populate_existing=True)
            .limit(RECENT_TRANSACTIONS_LIMIT)
        )
        recent = (await db.execute(recent_stmt)).scalars().all()

        return {
            "currency": self.settings.currency,
            "total_amount": int(total_minor) // 100,
            "total_amount_minor": int(total_minor),
            "successful_count": int(successful_count),
            "recent_transactions": [transaction_view(tx, tx.user) for tx in recent],
        }
