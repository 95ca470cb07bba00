from typing import Optional
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed request. The caller must correct the input; never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NotFoundError(ServiceError):
    """Well-formed request whose prerequisite state (student, structure, ledger, payment) is missing."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConcurrencyConflict(ServiceError):
    """Optimistic lock or counter update kept failing after bounded retries. Transient."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class PartialApplicationError(ServiceError):
    """
    Payment was durably written but its ledger effect was not applied.
    payment_id identifies the orphaned payment for a later reconcile_payment call.
    """

    def __init__(self, message: str, payment_id: UUID, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.payment_id = payment_id
        self.cause = cause
