"""
Application record store.

Registration, the one-application-per-user rule, detail edits while an
application is still PENDING, supporting document references and public
certificate verification.
"""
import uuid
from typing import List, Optional

import bcrypt
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from origin_portal.config import Settings, get_settings
from origin_portal.core.cache import DashboardCache
from origin_portal.core.errors import (
    InvalidStateError,
    NotFoundError,
    PortalError,
    Result,
    ValidationError,
)
from origin_portal.core.identifiers import parse_uuid
from origin_portal.core.records import (
    ApplicantRegistration,
    ApplicationDetails,
    ApplicationDetailsUpdate,
)
from origin_portal.database.models import (
    Application,
    ApplicationStatus,
    Document,
    PaymentStatus,
    User,
    UserRole,
)
from origin_portal.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


class ApplicationStore:
    """Persistence operations on users, applications and their documents."""

    def __init__(
        self,
        cache: Optional[DashboardCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.cache = cache or DashboardCache()

    async def _fail(self, db: AsyncSession, event: str, error: PortalError, **fields) -> Result:
        await db.rollback()
        logger.warning(event, code=error.code.value, error=error.message, **fields)
        return Result.failure(error)

    async def _load_application(
        self, db: AsyncSession, application_id: uuid.UUID, with_relations: bool = False
    ) -> Application:
        stmt = select(Application).where(Application.id == application_id)
        if with_relations:
            stmt = stmt.options(
                selectinload(Application.user), selectinload(Application.documents)
            )
        stmt = stmt.execution_options(populate_existing=True)
        application = (await db.execute(stmt)).scalar_one_or_none()
        if application is None:
            raise NotFoundError("Application not found")
        return application

    async def _email_taken(self, db: AsyncSession, email: str) -> bool:
        stmt = select(User.id).where(User.email == email)
        return (await db.execute(stmt)).first() is not None

    @staticmethod
    def _new_application(user_id: uuid.UUID, details: ApplicationDetails) -> Application:
        return Application(
            user_id=user_id,
            state_of_origin=details.state_of_origin,
            local_government=details.local_government,
            address=details.address,
            nationality=details.nationality,
            nin=details.nin,
            status=ApplicationStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
        )

    async def register_applicant(
        self, db: AsyncSession, registration: ApplicantRegistration
    ) -> Result[Application]:
        """
        Create an applicant account together with its PENDING application.

        Both rows are written in one database transaction.
        """
        email = registration.email.lower()
        try:
            if await self._email_taken(db, email):
                raise ValidationError("User with this email already exists")

            user = User(
                first_name=registration.first_name,
                middle_name=registration.middle_name,
                last_name=registration.last_name,
                email=email,
                password_hash=hash_password(
                    registration.password, self.settings.password_hash_rounds
                ),
                sex=registration.sex,
                date_of_birth=registration.date_of_birth,
                phone=registration.phone,
                role=UserRole.APPLICANT.value,
            )
            db.add(user)
            await db.flush()

            application = self._new_application(user.id, registration.details())
            db.add(application)
            await db.commit()
        except IntegrityError:
            return await self._fail(
                db,
                "applicant_registration_refused",
                ValidationError("User with this email already exists"),
                email=email,
            )
        except PortalError as e:
            return await self._fail(db, "applicant_registration_refused", e, email=email)

        metrics.record_registration()
        logger.info(
            "applicant_registered",
            user_id=str(user.id),
            application_id=str(application.id),
        )
        await self.cache.invalidate_admin()
        return Result.success(application)

    async def create_admin(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> Result[User]:
        """Create an administrator account."""
        email = email.strip().lower()
        try:
            if len(password) < 8:
                raise ValidationError("Password must be at least 8 characters")
            if await self._email_taken(db, email):
                raise ValidationError("User with this email already exists")

            user = User(
                first_name=first_name,
                last_name=last_name,
                email=email,
                password_hash=hash_password(password, self.settings.password_hash_rounds),
                role=UserRole.ADMIN.value,
            )
            db.add(user)
            await db.commit()
        except PortalError as e:
            return await self._fail(db, "admin_creation_refused", e, email=email)

        logger.info("admin_created", user_id=str(user.id))
        return Result.success(user)

    async def create_application(
        self,
        db: AsyncSession,
        user_id: uuid.UUID | str,
        details: ApplicationDetails,
    ) -> Result[Application]:
        """Open an application for an existing user that has none yet."""
        try:
            uid = parse_uuid(user_id, "user id")
            if await db.get(User, uid) is None:
                raise NotFoundError("User not found")

            existing = await db.execute(select(Application.id).where(Application.user_id == uid))
            if existing.first() is not None:
                raise ValidationError("User already has an application")

            application = self._new_application(uid, details)
            db.add(application)
            await db.commit()
        except IntegrityError:
            return await self._fail(
                db,
                "application_creation_refused",
                ValidationError("User already has an application"),
                user_id=str(user_id),
            )
        except PortalError as e:
            return await self._fail(db, "application_creation_refused", e, user_id=str(user_id))

        logger.info("application_created", application_id=str(application.id), user_id=str(uid))
        await self.cache.invalidate_for(uid)
        return Result.success(application)

    async def get_application(
        self, db: AsyncSession, application_id: uuid.UUID | str
    ) -> Result[Application]:
        """Fetch an application with its owner and documents loaded."""
        try:
            app_id = parse_uuid(application_id, "application id")
            application = await self._load_application(db, app_id, with_relations=True)
        except PortalError as e:
            return Result.failure(e)
        return Result.success(application)

    async def get_user_application(
        self, db: AsyncSession, user_id: uuid.UUID | str
    ) -> Result[Application]:
        try:
            uid = parse_uuid(user_id, "user id")
            stmt = (
                select(Application)
                .where(Application.user_id == uid)
                .options(selectinload(Application.documents))
                .execution_options(populate_existing=True)
            )
            application = (await db.execute(stmt)).scalar_one_or_none()
            if application is None:
                raise NotFoundError("Application not found")
        except PortalError as e:
            return Result.failure(e)
        return Result.success(application)

    async def list_applications(
        self, db: AsyncSession, status: Optional[ApplicationStatus] = None
    ) -> List[Application]:
        """All applications, newest first, optionally filtered by status."""
        stmt = (
            select(Application)
            .options(selectinload(Application.user))
            .order_by(Application.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(Application.status == ApplicationStatus(status).value)
        return list((await db.execute(stmt)).scalars().all())

    async def update_details(
        self,
        db: AsyncSession,
        application_id: uuid.UUID | str,
        changes: ApplicationDetailsUpdate,
    ) -> Result[Application]:
        """Edit origin details; only allowed while the application is PENDING."""
        try:
            app_id = parse_uuid(application_id, "application id")
            values = changes.model_dump(exclude_unset=True, exclude_none=True)
            if not values:
                raise ValidationError("No changes supplied")

            stmt = (
                update(Application)
                .where(
                    Application.id == app_id,
                    Application.status == ApplicationStatus.PENDING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.rowcount != 1:
                current = await self._load_application(db, app_id)
                raise InvalidStateError(
                    f"Application is {current.status}; details can no longer be changed"
                )
            await db.commit()
            application = await self._load_application(db, app_id)
        except PortalError as e:
            return await self._fail(
                db, "application_update_refused", e, application_id=str(application_id)
            )

        logger.info(
            "application_details_updated",
            application_id=str(application.id),
            fields=sorted(values),
        )
        await self.cache.invalidate_for(application.user_id)
        return Result.success(application)

    async def attach_document(
        self,
        db: AsyncSession,
        application_id: uuid.UUID | str,
        name: str,
        url: str,
    ) -> Result[Document]:
        """Record a reference to an uploaded supporting document."""
        try:
            name, url = (name or "").strip(), (url or "").strip()
            if not name or not url:
                raise ValidationError("Document name and url are required")
            app_id = parse_uuid(application_id, "application id")
            await self._load_application(db, app_id)

            document = Document(application_id=app_id, name=name, url=url)
            db.add(document)
            await db.commit()
        except PortalError as e:
            return await self._fail(
                db, "document_attach_refused", e, application_id=str(application_id)
            )

        logger.info("document_attached", application_id=str(app_id), document_id=str(document.id))
        return Result.success(document)

    async def verify_certificate(
        self, db: AsyncSession, certificate_number: str
    ) -> Result[Application]:
        """Look up the APPROVED application holding a certificate number."""
        number = (certificate_number or "").strip().upper()
        stmt = (
            select(Application)
            .where(
                Application.certificate_number == number,
                Application.status == ApplicationStatus.APPROVED.value,
            )
            .options(selectinload(Application.user))
            .execution_options(populate_existing=True)
        )
        application = (await db.execute(stmt)).scalar_one_or_none()
        if application is None:
            logger.info("certificate_verification_miss", certificate_number=number)
            return Result.failure(NotFoundError("Certificate not found or not valid"))

        logger.info("certificate_verified", certificate_number=number)
        return Result.success(application)
