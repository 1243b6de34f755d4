"""SQLAlchemy database models for the certificate portal."""
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    APPLICANT = "APPLICANT"
    ADMIN = "ADMIN"


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Portal account.

    Applicants get one at registration; administrators are created from the
    operator CLI.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    middle_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    sex: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.APPLICANT.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    application: Mapped[Optional["Application"]] = relationship(
        back_populates="user", uselist=False
    )

    __table_args__ = (
        CheckConstraint("role IN ('APPLICANT', 'ADMIN')", name="valid_role"),
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Application(Base):
    """
    A citizen's certificate application.

    certificate_number is set only on approval and rejection_reason only on
    rejection. payment_status moves UNPAID -> PAID once.
    """

    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), unique=True, nullable=False
    )
    state_of_origin: Mapped[str] = mapped_column(String(100), nullable=False)
    local_government: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    nationality: Mapped[str] = mapped_column(String(100), nullable=False, default="Nigerian")
    nin: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ApplicationStatus.PENDING.value, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.UNPAID.value
    )
    certificate_number: Mapped[Optional[str]] = mapped_column(
        String(32), unique=True, nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="application")
    documents: Mapped[List["Document"]] = relationship(
        back_populates="application", order_by="Document.created_at"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')", name="valid_application_status"
        ),
        CheckConstraint("payment_status IN ('UNPAID', 'PAID')", name="valid_payment_status"),
        CheckConstraint(
            "(status = 'APPROVED') = (certificate_number IS NOT NULL)",
            name="certificate_iff_approved",
        ),
    )

    def __repr__(self) -> str:
        """String representation of Application."""
        return (
            f"<Application(id={self.id}, user_id={self.user_id}, "
            f"status={self.status}, payment_status={self.payment_status})>"
        )


class Transaction(Base):
    """
    One payment attempt, identified by a locally generated reference.

    Amounts are stored in minor units (kobo). status moves PENDING -> SUCCESS
    or PENDING -> FAILED and never back.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    application_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("applications.id"), nullable=True
    )
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship()
    application: Mapped[Optional[Application]] = relationship()

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('PENDING', 'SUCCESS', 'FAILED')", name="valid_transaction_status"
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )

    @property
    def amount(self) -> int:
        """Amount in the base currency unit."""
        return self.amount_minor // 100

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(reference={self.reference}, amount_minor={self.amount_minor}, "
            f"status={self.status})>"
        )


class Document(Base):
    """Supporting document reference attached to an application."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("applications.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    application: Mapped[Application] = relationship(back_populates="documents")

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, application_id={self.application_id}, name={self.name})>"
