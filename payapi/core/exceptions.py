from fastapi import HTTPException, status
from typing import Optional, Dict, Any

class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

class AuthenticationError(BaseAPIException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="AUTH_001",
            message=message,
            details=details
        )

class ForbiddenError(BaseAPIException):
    """Ownership / role / rail restriction errors"""
    def __init__(self, message: str = "Access forbidden", details: Optional[Dict] = None, error_code: str = "AUTH_002"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code=error_code,
            message=message,
            details=details
        )

class AdultRestrictionError(ForbiddenError):
    """Card payments are not available for adult-flagged content"""
    def __init__(self, message: str = "Card payment is not available for adult content. Please use points.", details: Optional[Dict] = None):
        super().__init__(message=message, details=details, error_code="PAYMENT_ADULT_001")

class ValidationError(BaseAPIException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="VALIDATION_001",
            message=message,
            details=details
        )

class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )

class ConflictError(BaseAPIException):
    """Resource conflict errors"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict] = None, error_code: str = "CONFLICT_001"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code=error_code,
            message=message,
            details=details
        )

class AlreadyPurchasedError(ConflictError):
    def __init__(self, message: str = "Already purchased", details: Optional[Dict] = None):
        super().__init__(message=message, details=details, error_code="CONFLICT_PURCHASED")

class AlreadySubscribedError(ConflictError):
    def __init__(self, message: str = "Already subscribed to this creator", details: Optional[Dict] = None):
        super().__init__(message=message, details=details, error_code="CONFLICT_SUBSCRIBED")

class IdempotencyConflictError(ConflictError):
    """Same idempotency key is still being processed"""
    def __init__(self, message: str = "Request is already being processed", details: Optional[Dict] = None):
        super().__init__(message=message, details=details, error_code="CONFLICT_IDEMPOTENCY")

class InvalidStateTransitionError(ConflictError):
    def __init__(self, current: str, target: str, details: Optional[Dict] = None):
        super().__init__(
            message=f"Cannot transition audit log from {current} to {target}",
            details={"current": current, "target": target, **(details or {})},
            error_code="CONFLICT_STATE",
        )

class InsufficientBalanceError(BaseAPIException):
    """Insufficient balance errors"""
    def __init__(self, message: str = "Insufficient balance", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BALANCE_001",
            message=message,
            details=details
        )

class ResourceIsFreeError(BaseAPIException):
    """Free resources cannot be paid for"""
    def __init__(self, message: str = "This item is free", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="PAYMENT_FREE_001",
            message=message,
            details=details
        )

class ExternalGatewayError(BaseAPIException):
    """Checkout session could not be opened. Nothing was charged; safe to retry."""
    def __init__(self, message: str = "Payment gateway error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="GATEWAY_001",
            message=message,
            details=details
        )

class ReconciliationError(BaseAPIException):
    """Confirmed external payment that cannot be safely applied.

    Always recorded on the audit log with requires_recovery=True; the webhook
    route acknowledges it instead of surfacing it.
    """
    def __init__(self, message: str, error_code: str = "RECONCILIATION_001", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code=error_code,
            message=message,
            details=details
        )

class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )

class WebhookSignatureError(BaseAPIException):
    """Webhook payload could not be verified against the signing secret"""
    def __init__(self, message: str = "Invalid webhook signature", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="WEBHOOK_SIGNATURE",
            message=message,
            details=details
        )
