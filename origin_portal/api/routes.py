"""
API routes for the certificate portal.

Only the admin router is authenticated (API key). Applicant and application
routes trust the user_id/application_id in the path and do not check
ownership; citizen login is not part of this service.
"""
import hmac
from typing import Any, Dict, List, NoReturn, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from origin_portal.config import get_settings
from origin_portal.core.applications import ApplicationStore
from origin_portal.core.cache import DashboardCache
from origin_portal.core.dashboard import DashboardService
from origin_portal.core.errors import ErrorCode, PortalError, Result
from origin_portal.core.lifecycle import ApplicationLifecycle
from origin_portal.core.payments import PaymentReconciliation
from origin_portal.core.records import ApplicantRegistration, ApplicationDetailsUpdate
from origin_portal.database.connection import get_db
from origin_portal.database.models import ApplicationStatus
from origin_portal.integrations.webhook_handler import PaystackWebhookHandler, WebhookError
from origin_portal.monitoring.health import HealthCheck

from .schemas import (
    AdminTransactionResponse,
    ApplicationDetailResponse,
    ApplicationResponse,
    CertificateVerificationResponse,
    DocumentRequest,
    DocumentResponse,
    ErrorDetail,
    HealthCheckResponse,
    InitializePaymentRequest,
    PaymentInitializationResponse,
    RegistrationResponse,
    RejectRequest,
    ReviewRequest,
    TransactionResponse,
    WalletResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
applicant_router = APIRouter(prefix="/applicants", tags=["applicants"])
application_router = APIRouter(prefix="/applications", tags=["applications"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
certificate_router = APIRouter(prefix="/certificates", tags=["certificates"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

# Initialize services
dashboard_cache = DashboardCache()
application_store = ApplicationStore(cache=dashboard_cache)
lifecycle = ApplicationLifecycle(cache=dashboard_cache)
payment_flow = PaymentReconciliation(cache=dashboard_cache)
dashboard_service = DashboardService(payment_flow, cache=dashboard_cache)
webhook_handler = PaystackWebhookHandler()
health_check = HealthCheck()

# Register webhook handlers
webhook_handler.register_handler("charge.success", payment_flow.handle_charge_success)

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.ALREADY_PAID: status.HTTP_409_CONFLICT,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PAYMENT_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.GATEWAY_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def get_store() -> ApplicationStore:
    return application_store


def get_lifecycle() -> ApplicationLifecycle:
    return lifecycle


def get_payment_flow() -> PaymentReconciliation:
    return payment_flow


def get_dashboard() -> DashboardService:
    return dashboard_service


def get_webhook_handler() -> PaystackWebhookHandler:
    return webhook_handler


def raise_for_error(error: PortalError) -> NoReturn:
    """Translate a refused core operation into an HTTP error."""
    raise HTTPException(
        status_code=ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=ErrorDetail(code=error.code.value, message=error.message).model_dump(),
    )


def unwrap(result: Result) -> Any:
    if not result.ok:
        raise_for_error(result.error)
    return result.value


async def require_admin(request: Request) -> None:
    """Admin routes require the configured API key in the API key header."""
    settings = get_settings()
    supplied = request.headers.get(settings.api_key_header, "")
    if not settings.admin_api_key or not hmac.compare_digest(
        supplied.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        logger.warning("admin_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Invalid or missing API key"},
        )


# ----------------------------------------------------------------------
# Applicants
# ----------------------------------------------------------------------


@applicant_router.post(
    "",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register an applicant",
    description="Create an applicant account together with its PENDING application",
)
async def register_applicant(
    registration: ApplicantRegistration,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Dict[str, Any]:
    application = unwrap(await store.register_applicant(db, registration))
    return {"user_id": application.user_id, "application": application}


@applicant_router.get(
    "/{user_id}/application",
    response_model=ApplicationDetailResponse,
    summary="Get an applicant's application",
)
async def get_user_application(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Any:
    return unwrap(await store.get_user_application(db, user_id))


@applicant_router.get(
    "/{user_id}/dashboard",
    summary="Applicant dashboard",
    description="Application summary and payment history",
)
async def get_applicant_dashboard(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    dashboard: DashboardService = Depends(get_dashboard),
) -> Dict[str, Any]:
    return unwrap(await dashboard.applicant_overview(db, user_id))


@applicant_router.get(
    "/{user_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Applicant payment history",
)
async def get_user_transactions(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    payments: PaymentReconciliation = Depends(get_payment_flow),
) -> Any:
    return unwrap(await payments.user_transactions(db, user_id))


# ----------------------------------------------------------------------
# Applications
# ----------------------------------------------------------------------


@application_router.patch(
    "/{application_id}",
    response_model=ApplicationResponse,
    summary="Edit application details",
    description="Only allowed while the application is PENDING",
)
async def update_application(
    application_id: str,
    changes: ApplicationDetailsUpdate,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Any:
    return unwrap(await store.update_details(db, application_id, changes))


@application_router.post(
    "/{application_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a supporting document",
)
async def attach_document(
    application_id: str,
    document: DocumentRequest,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Any:
    return unwrap(await store.attach_document(db, application_id, document.name, document.url))


# ----------------------------------------------------------------------
# Payments
# ----------------------------------------------------------------------


@payment_router.post(
    "/initialize",
    response_model=PaymentInitializationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start paying the application fee",
    description="Creates a PENDING transaction and returns the gateway checkout URL",
)
async def initialize_payment(
    request: InitializePaymentRequest,
    db: AsyncSession = Depends(get_db),
    payments: PaymentReconciliation = Depends(get_payment_flow),
) -> Any:
    logger.info(
        "api_initialize_payment_request",
        user_id=str(request.user_id),
        application_id=str(request.application_id),
    )
    return unwrap(await payments.initialize(db, request.user_id, request.application_id))


@payment_router.get(
    "/verify",
    response_model=TransactionResponse,
    summary="Verify a payment",
    description="Gateway callback target; safe to call repeatedly for the same reference",
)
async def verify_payment(
    reference: str = Query(..., description="Payment reference"),
    db: AsyncSession = Depends(get_db),
    payments: PaymentReconciliation = Depends(get_payment_flow),
) -> Any:
    result = await payments.verify(db, reference)
    if not result.ok and result.value is not None:
        raise HTTPException(
            status_code=ERROR_STATUS[result.error.code],
            detail={
                "code": result.error.code.value,
                "message": result.error.message,
                "reference": result.value.reference,
                "transaction_status": result.value.status,
            },
        )
    return unwrap(result)


@webhook_router.post(
    "/paystack",
    response_model=WebhookResponse,
    summary="Paystack webhook endpoint",
    description="Handle Paystack webhook events",
)
async def paystack_webhook(
    request: Request,
    paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    db: AsyncSession = Depends(get_db),
    handler: PaystackWebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """
    Handle Paystack webhook events.

    Rejected events (e.g. a declined charge) are still acknowledged with 200
    so the gateway does not redeliver them.
    """
    body = await request.body()
    try:
        event = handler.verify_signature(body, paystack_signature)
    except WebhookError as e:
        logger.error("api_webhook_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return await handler.process_event(event, db)


# ----------------------------------------------------------------------
# Certificates
# ----------------------------------------------------------------------


@certificate_router.get(
    "/{certificate_number}",
    response_model=CertificateVerificationResponse,
    summary="Verify a certificate",
    description="Public lookup of an issued certificate number",
)
async def verify_certificate(
    certificate_number: str,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Dict[str, Any]:
    application = unwrap(await store.verify_certificate(db, certificate_number))
    return {
        "certificate_number": application.certificate_number,
        "holder_name": application.user.full_name,
        "state_of_origin": application.state_of_origin,
        "local_government": application.local_government,
        "approved_at": application.approved_at,
    }


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------


@admin_router.get(
    "/applications",
    response_model=List[ApplicationResponse],
    dependencies=[Depends(require_admin)],
    summary="List applications",
)
async def list_applications(
    status_filter: Optional[ApplicationStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Any:
    return await store.list_applications(db, status_filter)


@admin_router.get(
    "/applications/{application_id}",
    response_model=ApplicationDetailResponse,
    dependencies=[Depends(require_admin)],
    summary="Get an application",
)
async def get_application(
    application_id: str,
    db: AsyncSession = Depends(get_db),
    store: ApplicationStore = Depends(get_store),
) -> Any:
    return unwrap(await store.get_application(db, application_id))


@admin_router.post(
    "/applications/{application_id}/approve",
    response_model=ApplicationResponse,
    dependencies=[Depends(require_admin)],
    summary="Approve an application",
    description="Assigns a certificate number; only PENDING applications can be approved",
)
async def approve_application(
    application_id: str,
    review: Optional[ReviewRequest] = None,
    db: AsyncSession = Depends(get_db),
    controller: ApplicationLifecycle = Depends(get_lifecycle),
) -> Any:
    reviewer_id = review.reviewer_id if review else None
    return unwrap(await controller.approve(db, application_id, reviewer_id))


@admin_router.post(
    "/applications/{application_id}/reject",
    response_model=ApplicationResponse,
    dependencies=[Depends(require_admin)],
    summary="Reject an application",
)
async def reject_application(
    application_id: str,
    review: RejectRequest,
    db: AsyncSession = Depends(get_db),
    controller: ApplicationLifecycle = Depends(get_lifecycle),
) -> Any:
    return unwrap(
        await controller.reject(db, application_id, review.reason, review.reviewer_id)
    )


@admin_router.get(
    "/transactions",
    response_model=List[AdminTransactionResponse],
    dependencies=[Depends(require_admin)],
    summary="List all transactions",
)
async def list_transactions(
    db: AsyncSession = Depends(get_db),
    payments: PaymentReconciliation = Depends(get_payment_flow),
) -> Any:
    return await payments.list_transactions(db)


@admin_router.get(
    "/wallet",
    response_model=WalletResponse,
    dependencies=[Depends(require_admin)],
    summary="Collected fees",
)
async def wallet(
    db: AsyncSession = Depends(get_db),
    payments: PaymentReconciliation = Depends(get_payment_flow),
) -> Dict[str, Any]:
    return await payments.wallet_summary(db)


@admin_router.get(
    "/dashboard",
    dependencies=[Depends(require_admin)],
    summary="Admin dashboard",
)
async def admin_dashboard(
    db: AsyncSession = Depends(get_db),
    dashboard: DashboardService = Depends(get_dashboard),
) -> Dict[str, Any]:
    return await dashboard.admin_overview(db)


# ----------------------------------------------------------------------
# Monitoring
# ----------------------------------------------------------------------


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
