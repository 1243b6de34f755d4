"""
Tests for the application record store.
"""
import uuid
from typing import Any

import bcrypt
import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select

from origin_portal.core.applications import ApplicationStore
from origin_portal.core.errors import ErrorCode
from origin_portal.core.lifecycle import ApplicationLifecycle
from origin_portal.core.records import (
    ApplicantRegistration,
    ApplicationDetails,
    ApplicationDetailsUpdate,
)
from origin_portal.database.models import (
    Application,
    ApplicationStatus,
    PaymentStatus,
    User,
    UserRole,
)


class TestRecords:
    """Registration record validation."""

    @pytest.mark.unit
    def test_nin_must_be_eleven_digits(self, make_registration: Any) -> None:
        with pytest.raises(PydanticValidationError, match="11 digits"):
            make_registration(nin="1234")

    @pytest.mark.unit
    def test_password_longer_than_bcrypt_limit_rejected(self, make_registration: Any) -> None:
        with pytest.raises(PydanticValidationError, match="72 bytes"):
            make_registration(password="x" * 73)

    @pytest.mark.unit
    def test_invalid_email_rejected(self, make_registration: Any) -> None:
        with pytest.raises(PydanticValidationError):
            make_registration(email="not-an-email")

    @pytest.mark.unit
    def test_details_defaults_nationality(self, make_registration: Any) -> None:
        registration: ApplicantRegistration = make_registration()
        assert registration.details().nationality == "Nigerian"


class TestRegistration:
    """register_applicant() and create_application()"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_creates_user_and_pending_application(
        self, test_db: Any, application: Application
    ) -> None:
        user = await test_db.get(User, application.user_id)

        assert user.role == UserRole.APPLICANT.value
        assert user.email == "ada@example.com"
        assert bcrypt.checkpw(b"correct-horse-battery", user.password_hash.encode("ascii"))
        assert application.status == ApplicationStatus.PENDING.value
        assert application.payment_status == PaymentStatus.UNPAID.value
        assert application.certificate_number is None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(
        self,
        test_db: Any,
        store: ApplicationStore,
        make_registration: Any,
        application: Application,
    ) -> None:
        result = await store.register_applicant(
            test_db, make_registration(email="ADA@example.com")
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        count = (await test_db.execute(select(func.count(User.id)))).scalar_one()
        assert count == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_one_application_per_user(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        details = ApplicationDetails(
            state_of_origin="Lagos",
            local_government="Ikeja",
            address="1 Allen Avenue",
            nin="10987654321",
        )
        result = await store.create_application(test_db, application.user_id, details)
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_application_for_admin_without_one(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        admin = (
            await store.create_admin(test_db, "Admin@Example.com", "s3cret-pass", "Tunde", "Bello")
        ).value
        details = ApplicationDetails(
            state_of_origin="Oyo",
            local_government="Ibadan North",
            address="3 Ring Road",
            nin="11122233344",
        )

        result = await store.create_application(test_db, admin.id, details)

        assert admin.email == "admin@example.com"
        assert admin.role == UserRole.ADMIN.value
        assert result.ok
        assert result.value.status == ApplicationStatus.PENDING.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_application_unknown_user(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        details = ApplicationDetails(
            state_of_origin="Oyo", local_government="Ogbomosho", address="x", nin="11122233344"
        )
        result = await store.create_application(test_db, uuid.uuid4(), details)
        assert result.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_admin_short_password(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        result = await store.create_admin(test_db, "ops@example.com", "short", "Ops", "Team")
        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestQueries:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_application_loads_owner_and_documents(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        await store.attach_document(test_db, application.id, "Birth certificate", "https://files/1")

        result = await store.get_application(test_db, str(application.id))

        assert result.ok
        assert result.value.user.email == "ada@example.com"
        assert [doc.name for doc in result.value.documents] == ["Birth certificate"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_user_application_missing(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        result = await store.get_user_application(test_db, uuid.uuid4())
        assert result.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_applications_filters_by_status(
        self,
        test_db: Any,
        store: ApplicationStore,
        lifecycle: ApplicationLifecycle,
        make_registration: Any,
        application: Application,
    ) -> None:
        other = (
            await store.register_applicant(test_db, make_registration(email="bola@example.com"))
        ).value
        await lifecycle.approve(test_db, other.id)

        everything = await store.list_applications(test_db)
        pending = await store.list_applications(test_db, ApplicationStatus.PENDING)
        approved = await store.list_applications(test_db, ApplicationStatus.APPROVED)

        assert len(everything) == 2
        assert [a.id for a in pending] == [application.id]
        assert [a.id for a in approved] == [other.id]


class TestUpdateDetails:
    """update_details()"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_pending_application(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        result = await store.update_details(
            test_db, application.id, ApplicationDetailsUpdate(address="4 New Market Road")
        )

        assert result.ok
        assert result.value.address == "4 New Market Road"
        assert result.value.state_of_origin == "Anambra"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_after_approval_refused(
        self,
        test_db: Any,
        store: ApplicationStore,
        lifecycle: ApplicationLifecycle,
        application: Application,
    ) -> None:
        await lifecycle.approve(test_db, application.id)

        result = await store.update_details(
            test_db, application.id, ApplicationDetailsUpdate(state_of_origin="Lagos")
        )

        assert result.error_code == ErrorCode.INVALID_STATE

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_empty_update_refused(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        result = await store.update_details(test_db, application.id, ApplicationDetailsUpdate())
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_missing_application(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        result = await store.update_details(
            test_db, uuid.uuid4(), ApplicationDetailsUpdate(address="somewhere")
        )
        assert result.error_code == ErrorCode.NOT_FOUND


class TestDocumentsAndCertificates:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_attach_document_requires_name_and_url(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        result = await store.attach_document(test_db, application.id, " ", "https://files/1")
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_attach_document_to_missing_application(
        self, test_db: Any, store: ApplicationStore
    ) -> None:
        result = await store.attach_document(test_db, uuid.uuid4(), "Passport", "https://files/2")
        assert result.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_certificate_of_approved_application(
        self,
        test_db: Any,
        store: ApplicationStore,
        lifecycle: ApplicationLifecycle,
        application: Application,
    ) -> None:
        approved = (await lifecycle.approve(test_db, application.id)).value

        result = await store.verify_certificate(test_db, approved.certificate_number.lower())

        assert result.ok
        assert result.value.user.full_name == "Ada Okafor"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_certificate_number(
        self, test_db: Any, store: ApplicationStore, application: Application
    ) -> None:
        result = await store.verify_certificate(test_db, "SOC-000000-0000")
        assert result.error_code == ErrorCode.NOT_FOUND
