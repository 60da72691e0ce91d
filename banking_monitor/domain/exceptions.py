"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ProviderAPIError(DomainException):
    """Open banking provider returned an error or is unavailable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTransactionDataError(DomainException):
    """Provider transaction record is malformed or cannot be mapped"""

    pass


class ConnectionNotFoundError(DomainException):
    """Bank connection does not exist"""

    pass


class ConnectionNotLinkedError(DomainException):
    """Bank connection exists but is not in linked status"""

    pass


class TransactionNotFoundError(DomainException):
    pass
