"""JSON-ready views of ORM records, used for cached dashboards and summaries."""
from typing import Any, Dict, Optional

from origin_portal.database.models import Application, Transaction, User


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def user_view(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
    }


def application_view(application: Application) -> Dict[str, Any]:
    return {
        "id": str(application.id),
        "user_id": str(application.user_id),
        "state_of_origin": application.state_of_origin,
        "local_government": application.local_government,
        "status": application.status,
        "payment_status": application.payment_status,
        "certificate_number": application.certificate_number,
        "rejection_reason": application.rejection_reason,
        "approved_at": _iso(application.approved_at),
        "created_at": _iso(application.created_at),
    }


def transaction_view(transaction: Transaction, user: Optional[User] = None) -> Dict[str, Any]:
    view = {
        "id": str(transaction.id),
        "reference": transaction.reference,
        "amount": transaction.amount,
        "amount_minor": transaction.amount_minor,
        "currency": transaction.currency,
        "status": transaction.status,
        "user_id": str(transaction.user_id),
        "application_id": str(transaction.application_id) if transaction.application_id else None,
        "created_at": _iso(transaction.created_at),
    }
    if user is not None:
        view["user"] = user_view(user)
    return view
