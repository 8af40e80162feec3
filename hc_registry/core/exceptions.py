"""Domain exceptions raised by the registry services.

Every exception carries the HTTP status it maps to, so the API layer can
render it without knowing which service raised it. Ledger and persistence
failures after a ledger mutation are recorded on the ledger intent before
being raised.
"""

from typing import Any

from fastapi import status


class RegistryError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Registry error"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(RegistryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class AuthError(RegistryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Access denied. No token provided."


class AuthorizationError(RegistryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied. Insufficient permissions."


class NotOwnerError(AuthorizationError):
    default_message = "You do not own this credit"


class NotFoundError(RegistryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class RecipientNotFoundError(NotFoundError):
    default_message = "Recipient not found"


class BusinessRuleViolation(RegistryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Operation not permitted"


class InsufficientBalanceError(BusinessRuleViolation):
    default_message = "Insufficient credit balance"


class CreditRetiredError(BusinessRuleViolation):
    default_message = "Cannot transfer retired credits"


class AlreadyRetiredError(BusinessRuleViolation):
    default_message = "Credit is already retired"


class ConcurrencyConflictError(RegistryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Credit was modified by another request, please retry"


class LedgerError(RegistryError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Ledger operation failed"


class LedgerRejectedError(LedgerError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Ledger rejected the transaction"


class LedgerTimeoutError(LedgerError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "Timed out waiting for ledger confirmation"


class LedgerUnavailableError(LedgerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Ledger is unavailable"


class PersistenceError(RegistryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to persist credit record"
