"""
Tests for the payment reconciliation flow.
"""
import uuid
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select, update

from origin_portal.core.cache import DashboardCache
from origin_portal.core.errors import ErrorCode, GatewayError
from origin_portal.core.payments import PaymentReconciliation
from origin_portal.database.models import (
    Application,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    utcnow,
)
from origin_portal.integrations.paystack_client import PaystackClient, VerifiedTransaction


async def _transaction_count(db: Any) -> int:
    return (await db.execute(select(func.count(Transaction.id)))).scalar_one()


async def _reload(db: Any, model: Any, pk: uuid.UUID) -> Any:
    stmt = select(model).where(model.id == pk).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one()


def _declined(reference: str) -> VerifiedTransaction:
    return VerifiedTransaction(status="failed", reference=reference, amount_minor=0)


class TestInitialize:
    """initialize()"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initialize_creates_pending_transaction(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
        test_settings: Any,
    ) -> None:
        result = await payments.initialize(test_db, application.user_id, application.id)

        assert result.ok
        init = result.value
        assert init.reference.startswith("SOO-")
        assert init.authorization_url.endswith(init.reference)

        transaction = await _reload(test_db, Transaction, init.transaction_id)
        assert transaction.status == TransactionStatus.PENDING.value
        assert transaction.amount_minor == test_settings.application_fee_minor
        assert transaction.currency == "NGN"
        assert transaction.application_id == application.id
        assert transaction.meta == {
            "version": 1,
            "application_type": "STATE_OF_ORIGIN",
            "application_id": str(application.id),
            "user_id": str(application.user_id),
        }

        gateway.initialize_transaction.assert_awaited_once()
        kwargs = gateway.initialize_transaction.await_args.kwargs
        assert kwargs["email"] == "ada@example.com"
        assert kwargs["amount"] == test_settings.application_fee
        assert kwargs["reference"] == init.reference

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initialize_on_paid_application_fails(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        await test_db.execute(
            update(Application)
            .where(Application.id == application.id)
            .values(payment_status=PaymentStatus.PAID.value)
        )
        await test_db.commit()

        result = await payments.initialize(test_db, application.user_id, application.id)

        assert result.error_code == ErrorCode.ALREADY_PAID
        assert await _transaction_count(test_db) == 0
        gateway.initialize_transaction.assert_not_awaited()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initialize_for_someone_elses_application(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        store: Any,
        make_registration: Any,
        application: Application,
    ) -> None:
        other = await store.register_applicant(
            test_db, make_registration(email="bola@example.com")
        )

        result = await payments.initialize(test_db, other.value.user_id, application.id)

        assert result.error_code == ErrorCode.NOT_FOUND
        assert await _transaction_count(test_db) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initialize_unknown_user(
        self, test_db: Any, payments: PaymentReconciliation, application: Application
    ) -> None:
        result = await payments.initialize(test_db, uuid.uuid4(), application.id)
        assert result.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_no_transaction(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        gateway.initialize_transaction.side_effect = GatewayError("Paystack initialize timed out")

        result = await payments.initialize(test_db, application.user_id, application.id)

        assert result.error_code == ErrorCode.GATEWAY_ERROR
        assert await _transaction_count(test_db) == 0


class TestVerify:
    """verify()"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_initialize_then_verify_marks_application_paid(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        application: Application,
    ) -> None:
        init = (await payments.initialize(test_db, application.user_id, application.id)).value

        result = await payments.verify(test_db, init.reference)

        assert result.ok
        assert result.value.status == TransactionStatus.SUCCESS.value
        stored = await _reload(test_db, Application, application.id)
        assert stored.payment_status == PaymentStatus.PAID.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_is_idempotent(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        init = (await payments.initialize(test_db, application.user_id, application.id)).value

        first = await payments.verify(test_db, init.reference)
        second = await payments.verify(test_db, init.reference)

        assert first.ok and second.ok
        assert first.value.id == second.value.id
        assert second.value.status == TransactionStatus.SUCCESS.value
        gateway.verify_transaction.assert_awaited_once_with(init.reference)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_existing_pending_transaction(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        application: Application,
        test_settings: Any,
    ) -> None:
        transaction = Transaction(
            reference="SOO-1-000001",
            amount_minor=test_settings.application_fee_minor,
            currency="NGN",
            user_id=application.user_id,
            application_id=application.id,
        )
        test_db.add(transaction)
        await test_db.commit()

        result = await payments.verify(test_db, "SOO-1-000001")

        assert result.ok
        assert result.value.status == TransactionStatus.SUCCESS.value
        stored = await _reload(test_db, Application, application.id)
        assert stored.payment_status == PaymentStatus.PAID.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_success_without_reported_amount_marks_application_paid(
        self,
        test_db: Any,
        cache: DashboardCache,
        application: Application,
        test_settings: Any,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {"status": "success", "reference": "SOO-1-000001"},
                },
            )

        client = PaystackClient(
            secret_key="sk_test_abc",
            base_url="https://api.paystack.test",
            transport=httpx.MockTransport(handler),
        )
        flow = PaymentReconciliation(gateway=client, cache=cache)
        app_id = application.id
        test_db.add(
            Transaction(
                reference="SOO-1-000001",
                amount_minor=test_settings.application_fee_minor,
                currency="NGN",
                user_id=application.user_id,
                application_id=app_id,
            )
        )
        await test_db.commit()

        result = await flow.verify(test_db, "SOO-1-000001")
        await client.close()

        assert result.ok
        assert result.value.status == TransactionStatus.SUCCESS.value
        stored = await _reload(test_db, Application, app_id)
        assert stored.payment_status == PaymentStatus.PAID.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_declined_payment_marks_transaction_failed(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        gateway.verify_transaction.side_effect = _declined
        init = (await payments.initialize(test_db, application.user_id, application.id)).value

        result = await payments.verify(test_db, init.reference)

        assert result.error_code == ErrorCode.PAYMENT_FAILED
        assert result.value.status == TransactionStatus.FAILED.value
        stored = await _reload(test_db, Application, application.id)
        assert stored.payment_status == PaymentStatus.UNPAID.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_transaction_is_not_reverified(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        gateway.verify_transaction.side_effect = _declined
        init = (await payments.initialize(test_db, application.user_id, application.id)).value
        await payments.verify(test_db, init.reference)

        again = await payments.verify(test_db, init.reference)

        assert again.error_code == ErrorCode.PAYMENT_FAILED
        assert gateway.verify_transaction.await_count == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_payment_after_failure(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
        test_settings: Any,
    ) -> None:
        gateway.verify_transaction.side_effect = _declined
        failed = (await payments.initialize(test_db, application.user_id, application.id)).value
        await payments.verify(test_db, failed.reference)

        gateway.verify_transaction.side_effect = lambda reference: VerifiedTransaction(
            status="success",
            reference=reference,
            amount_minor=test_settings.application_fee_minor,
        )
        retry = (await payments.initialize(test_db, application.user_id, application.id)).value
        result = await payments.verify(test_db, retry.reference)

        assert retry.reference != failed.reference
        assert result.ok
        stored = await _reload(test_db, Application, application.id)
        assert stored.payment_status == PaymentStatus.PAID.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_underpayment_is_a_failure(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        gateway.verify_transaction.side_effect = lambda reference: VerifiedTransaction(
            status="success", reference=reference, amount_minor=100
        )
        init = (await payments.initialize(test_db, application.user_id, application.id)).value

        result = await payments.verify(test_db, init.reference)

        assert result.error_code == ErrorCode.PAYMENT_FAILED
        assert result.value.status == TransactionStatus.FAILED.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_error_leaves_transaction_pending(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        application: Application,
    ) -> None:
        init = (await payments.initialize(test_db, application.user_id, application.id)).value
        gateway.verify_transaction.side_effect = GatewayError("Paystack verify timed out")

        result = await payments.verify(test_db, init.reference)

        assert result.error_code == ErrorCode.GATEWAY_ERROR
        transaction = await _reload(test_db, Transaction, init.transaction_id)
        assert transaction.status == TransactionStatus.PENDING.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_unknown_reference(
        self, test_db: Any, payments: PaymentReconciliation, gateway: AsyncMock
    ) -> None:
        def not_found_count() -> float:
            return (
                REGISTRY.get_sample_value(
                    "payment_verifications_total", {"outcome": "not_found"}
                )
                or 0.0
            )

        before = not_found_count()
        result = await payments.verify(test_db, "SOO-0-000000")

        assert result.error_code == ErrorCode.NOT_FOUND
        gateway.verify_transaction.assert_not_awaited()
        assert not_found_count() == before + 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_blank_reference(
        self, test_db: Any, payments: PaymentReconciliation
    ) -> None:
        result = await payments.verify(test_db, "  ")
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_charge_success_webhook_verifies_reference(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        application: Application,
    ) -> None:
        init = (await payments.initialize(test_db, application.user_id, application.id)).value

        result = await payments.handle_charge_success({"reference": init.reference}, test_db)

        assert result.ok
        assert result.value.status == TransactionStatus.SUCCESS.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_charge_success_without_reference(
        self, test_db: Any, payments: PaymentReconciliation
    ) -> None:
        result = await payments.handle_charge_success({}, test_db)
        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestReconcileAndReports:
    """reconcile_pending() and listings."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reconcile_pending_only_touches_stale_transactions(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        application: Application,
    ) -> None:
        stale = (await payments.initialize(test_db, application.user_id, application.id)).value
        await test_db.execute(
            update(Transaction)
            .where(Transaction.id == stale.transaction_id)
            .values(created_at=utcnow() - timedelta(hours=2))
        )
        await test_db.commit()
        fresh = (await payments.initialize(test_db, application.user_id, application.id)).value

        counts = await payments.reconcile_pending(test_db, timedelta(minutes=30))

        assert counts == {"checked": 1, "success": 1, "failed": 0, "error": 0}
        fresh_tx = await _reload(test_db, Transaction, fresh.transaction_id)
        assert fresh_tx.status == TransactionStatus.PENDING.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_wallet_summary_counts_successful_payments(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        gateway: AsyncMock,
        store: Any,
        make_registration: Any,
        application: Application,
        test_settings: Any,
    ) -> None:
        paid = (await payments.initialize(test_db, application.user_id, application.id)).value
        await payments.verify(test_db, paid.reference)

        other = (
            await store.register_applicant(test_db, make_registration(email="chidi@example.com"))
        ).value
        gateway.verify_transaction.side_effect = _declined
        declined = (await payments.initialize(test_db, other.user_id, other.id)).value
        await payments.verify(test_db, declined.reference)

        wallet = await payments.wallet_summary(test_db)

        assert wallet["successful_count"] == 1
        assert wallet["total_amount"] == test_settings.application_fee
        assert wallet["total_amount_minor"] == test_settings.application_fee_minor
        assert len(wallet["recent_transactions"]) == 2
        assert {tx["user"]["email"] for tx in wallet["recent_transactions"]} == {
            "ada@example.com",
            "chidi@example.com",
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_user_transactions_newest_first(
        self,
        test_db: Any,
        payments: PaymentReconciliation,
        application: Application,
    ) -> None:
        first = (await payments.initialize(test_db, application.user_id, application.id)).value
        await test_db.execute(
            update(Transaction)
            .where(Transaction.id == first.transaction_id)
            .values(created_at=utcnow() - timedelta(minutes=5))
        )
        await test_db.commit()
        second = (await payments.initialize(test_db, application.user_id, application.id)).value

        result = await payments.user_transactions(test_db, application.user_id)

        assert [tx.reference for tx in result.value] == [second.reference, first.reference]
        assert len(await payments.list_transactions(test_db)) == 2
