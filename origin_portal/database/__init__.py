"""Database package for the certificate portal."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import (
    Application,
    ApplicationStatus,
    Base,
    Document,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    User,
    UserRole,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Application",
    "ApplicationStatus",
    "PaymentStatus",
    "Transaction",
    "TransactionStatus",
    "Document",
    "get_db",
    "get_session_factory",
    "init_db",
    "close_db",
]
