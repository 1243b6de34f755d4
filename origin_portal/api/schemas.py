"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Body of a refused request."""

    code: str = Field(..., description="Error code (not_found, invalid_state, ...)")
    message: str = Field(..., description="Human readable explanation")


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    email: str
    role: str
    created_at: datetime


class DocumentRequest(BaseModel):
    """Reference to a supporting document already uploaded elsewhere."""

    name: str = Field(..., description="Document name, e.g. 'Birth certificate'")
    url: str = Field(..., description="Where the uploaded file can be fetched")


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    name: str
    url: str
    created_at: datetime


class ApplicationResponse(BaseModel):
    """Response schema for an application."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    state_of_origin: str
    local_government: str
    address: str
    nationality: str
    nin: str
    status: str = Field(..., description="PENDING, APPROVED or REJECTED")
    payment_status: str = Field(..., description="UNPAID or PAID")
    certificate_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ApplicationDetailResponse(ApplicationResponse):
    """Application together with its supporting documents."""

    documents: List[DocumentResponse] = Field(default_factory=list)


class RegistrationResponse(BaseModel):
    user_id: UUID
    application: ApplicationResponse


class ReviewRequest(BaseModel):
    """Optional reviewer attribution for an approval."""

    reviewer_id: Optional[UUID] = Field(default=None, description="Admin user id")


class RejectRequest(ReviewRequest):
    reason: str = Field(..., description="Why the application was rejected")

    model_config = {
        "json_schema_extra": {
            "examples": [{"reason": "NIN does not match the supplied name"}]
        }
    }


class InitializePaymentRequest(BaseModel):
    """Request schema for starting a payment."""

    user_id: UUID = Field(..., description="Paying applicant")
    application_id: UUID = Field(..., description="Application the fee is for")


class PaymentInitializationResponse(BaseModel):
    """Response schema for payment initialization."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: UUID
    reference: str = Field(..., description="Payment reference (SOO-...)")
    authorization_url: str = Field(..., description="Checkout URL to redirect the citizen to")
    access_code: str


class TransactionResponse(BaseModel):
    """Response schema for a transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    amount: int = Field(..., description="Amount in the base currency unit")
    amount_minor: int = Field(..., description="Amount in minor units (kobo)")
    currency: str
    status: str = Field(..., description="PENDING, SUCCESS or FAILED")
    user_id: UUID
    application_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class AdminTransactionResponse(TransactionResponse):
    user: UserResponse


class CertificateVerificationResponse(BaseModel):
    """Public view of a valid certificate."""

    valid: bool = True
    certificate_number: str
    holder_name: str
    state_of_origin: str
    local_government: str
    approved_at: Optional[datetime] = None


class WalletResponse(BaseModel):
    currency: str
    total_amount: int
    total_amount_minor: int
    successful_count: int
    recent_transactions: List[Dict[str, Any]]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="processed, rejected or ignored")
    event_type: str = Field(..., description="Paystack event type")
    error: Optional[str] = Field(default=None, description="Why the event was rejected")
