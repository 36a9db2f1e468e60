"""
Account Management Module

Holds per-user balances. ``available_balance`` is settled, spendable money;
``current_balance`` also includes pending activity. Balances are only ever
changed through ``AccountManager.adjust_balances``, which writes with a
compare-and-swap on the account version so concurrent requests against the
same account cannot lose updates.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional

from .storage import StorageInterface, StorageRecord
from .balance_effects import BalanceEffect
from .errors import (
    ConflictError, InsufficientFundsError, NotFoundError, ValidationError,
    account_not_found, insufficient_funds
)
from .logging_config import get_logger, log_action


@dataclass
class Account(StorageRecord):
    """
    Balance record of one user; the id is the owning user's id
    """
    available_balance: Decimal = Decimal('0')
    current_balance: Decimal = Decimal('0')
    balance: Decimal = Decimal('0')  # legacy display field, mirrors current_balance
    version: int = 0
    full_name: Optional[str] = None
    email: Optional[str] = None
    account_number: Optional[str] = None

    def covers(self, amount: Decimal) -> bool:
        """Check whether the available balance can fund a debit of ``amount``"""
        return self.available_balance >= amount

    def balances(self) -> Dict[str, str]:
        return {
            "available_balance": str(self.available_balance),
            "current_balance": str(self.current_balance),
            "balance": str(self.balance),
        }


class AccountManager:
    """
    Repository for accounts and the single writer of balances
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "accounts"
        self.logger = get_logger("banking.accounts")

    def create_account(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        account_number: Optional[str] = None
    ) -> Account:
        """
        Create a zero-balance account for a newly registered user

        Raises:
            ValidationError: If user_id is empty
            ConflictError: If the user already has an account
        """
        if not user_id:
            raise ValidationError("User ID is required")
        if self.storage.exists(self.table_name, user_id):
            raise ConflictError(f"Account {user_id} already exists")

        now = datetime.now(timezone.utc)
        account = Account(
            id=user_id,
            created_at=now,
            updated_at=now,
            full_name=full_name,
            email=email,
            account_number=account_number
        )
        self.storage.save(self.table_name, account.id, self._account_to_dict(account))

        log_action(
            self.logger, "info", "Account created",
            user_id=user_id, action="create_account", resource=f"account:{user_id}"
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise NotFoundError"""
        account = self.get_account(account_id)
        if not account:
            raise NotFoundError(account_not_found(account_id))
        return account

    def list_accounts(self) -> List[Account]:
        return [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def adjust_balances(self, account_id: str, effect: BalanceEffect,
                        enforce_cover: bool = True) -> Account:
        """
        Apply a balance effect to an account

        Args:
            account_id: Account to update
            effect: Signed change to (available, current)
            enforce_cover: Reject effects that would take available below zero

        Returns:
            The updated Account

        Raises:
            NotFoundError: Account does not exist
            InsufficientFundsError: Available balance cannot absorb a negative effect
            ConflictError: The account changed between read and write
        """
        account = self.require_account(account_id)
        if effect.is_zero:
            return account

        if (enforce_cover and effect.available < 0
                and not account.covers(-effect.available)):
            raise InsufficientFundsError(
                insufficient_funds(account.available_balance, -effect.available)
            )

        expected_version = account.version
        account.available_balance += effect.available
        account.current_balance += effect.current
        account.balance = account.current_balance
        account.version = expected_version + 1
        account.updated_at = datetime.now(timezone.utc)

        swapped = self.storage.compare_and_swap(
            self.table_name, account.id, expected_version,
            self._account_to_dict(account)
        )
        if not swapped:
            raise ConflictError(
                f"Account {account_id} was modified concurrently, retry the request"
            )

        log_action(
            self.logger, "info", "Balances adjusted",
            user_id=account_id, action="adjust_balances", resource=f"account:{account_id}",
            extra={
                "available_delta": str(effect.available),
                "current_delta": str(effect.current),
                "available_balance": str(account.available_balance),
                "current_balance": str(account.current_balance),
                "version": account.version
            }
        )
        return account

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        return account.to_dict()

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            available_balance=Decimal(data['available_balance']),
            current_balance=Decimal(data['current_balance']),
            balance=Decimal(data.get('balance', data['current_balance'])),
            version=data.get('version', 0),
            full_name=data.get('full_name'),
            email=data.get('email'),
            account_number=data.get('account_number')
        )
