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

class DuplicateIssuanceError(BaseAPIException):
    """Ledger entry already completed (QR code already used)"""
    def __init__(
        self,
        message: str = "Points have already been issued for this QR code",
        details: Optional[Dict] = None,
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="POINTS_ALREADY_ISSUED",
            message=message,
            details=details
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

class PaymentFailedError(BaseAPIException):
    """Payment processor declined the charge"""
    def __init__(self, message: str = "Payment failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_code="PAYMENT_001",
            message=message,
            details=details
        )

class ReconciliationError(BaseAPIException):
    """Charge succeeded but the covered ledger entries could not be marked paid"""
    def __init__(
        self,
        message: str = "Payment captured but ledger reconciliation failed",
        details: Optional[Dict] = None,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="RECONCILIATION_001",
            message=message,
            details=details
        )

class ExternalServiceError(BaseAPIException):
    """Payment processor or account store unreachable"""
    def __init__(self, message: str = "External service unavailable", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="EXTERNAL_001",
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

class ServiceException(Exception):
    """Base exception for service layer errors"""
    pass

class LedgerIntegrityError(ServiceException):
    """Bulk ledger update touched a different number of rows than requested"""
    pass
