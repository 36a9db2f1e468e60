"""
Error Types Module

Typed failures raised by the ledger, chat and repositories. Each error
carries the HTTP status the API layer answers with.
"""


class BankingError(ValueError):
    """Base class for domain-level errors.

    Subclasses ValueError so callers written against plain ValueError
    keep working.
    """
    status_code = 400


class ValidationError(BankingError):
    """Missing or malformed input, non-positive amount, bad enum value."""
    status_code = 400


class NotFoundError(BankingError):
    """Requested account, transaction, purchase or user does not exist."""
    status_code = 404


class RecipientNotFoundError(NotFoundError):
    """Member transfer recipient does not exist."""


class InsufficientFundsError(BankingError):
    """Available balance does not cover the requested debit."""
    status_code = 400


class ConflictError(BankingError):
    """Concurrent modification lost a compare-and-swap race. Retryable."""
    status_code = 409


class DependencyError(BankingError):
    """Storage backend unavailable or failing."""
    status_code = 503


class AuthorizationError(BankingError):
    """Caller may not access the requested resource."""
    status_code = 403


def account_not_found(account_id: str) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def transaction_not_found(transaction_id: str) -> str:
    """Return message for missing transaction."""
    return f"Transaction {transaction_id} not found"


def purchase_not_found(purchase_id: str) -> str:
    """Return message for missing or inactive stock purchase."""
    return f"Stock purchase {purchase_id} not found"


def insufficient_funds(available, requested) -> str:
    """Return message for a debit the available balance cannot cover."""
    return f"Insufficient funds: available {available}, requested {requested}"
