"""
Transaction Records Module

Transaction types, directions and lifecycle states, the Transaction record
itself, and the repository the ledger persists them through. Balance
arithmetic lives in ``balance_effects``; orchestration lives in ``ledger``.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import NotFoundError, ValidationError, transaction_not_found


class TransactionType(Enum):
    """Kinds of balance-affecting operations"""
    FUND_WALLET = "fundWallet"
    SEND_MONEY = "sendMoney"
    WITHDRAW = "withdraw"
    CREDIT = "credit"
    DEBIT = "debit"
    STOCKS = "stocks"


class TransactionAction(Enum):
    """Direction of money relative to the owning account"""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(Enum):
    """Lifecycle states; success and failed are terminal"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    """Coerce a raw value into ``enum_cls`` or raise ValidationError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid transaction {label}: {value!r}") from None


def parse_amount(value: Any, label: str = "amount", allow_zero: bool = False) -> Decimal:
    """Coerce a raw value into a Decimal amount or raise ValidationError"""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{label.capitalize()} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {label}: {value!r}") from None
    if not amount.is_finite():
        raise ValidationError(f"Invalid {label}: {value!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "zero or greater" if allow_zero else "greater than 0"
        raise ValidationError(f"{label.capitalize()} must be {qualifier}")
    return amount


@dataclass
class Transaction(StorageRecord):
    """
    One balance-affecting record owned by a single user
    """
    user_id: str
    transaction_type: TransactionType
    subtype: str
    action: TransactionAction
    amount: Decimal
    status: TransactionStatus = TransactionStatus.PENDING
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.user_id:
            raise ValidationError("User ID is required")
        if not self.subtype:
            raise ValidationError("Transaction subtype is required")
        if self.amount <= 0:
            raise ValidationError("Amount must be greater than 0")

    def to_public_dict(self) -> Dict[str, Any]:
        """Shape returned to API callers"""
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.transaction_type.value,
            "subtype": self.subtype,
            "action": self.action.value,
            "status": self.status.value,
            "amount": str(self.amount),
            "data": self.data,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class TransactionRepository:
    """
    Durable store of Transaction records
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "transactions"

    def create(
        self,
        user_id: str,
        transaction_type: TransactionType,
        subtype: str,
        action: TransactionAction,
        amount: Decimal,
        status: TransactionStatus = TransactionStatus.PENDING,
        data: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """Create and persist a new transaction"""
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            transaction_type=transaction_type,
            subtype=subtype,
            action=action,
            amount=amount,
            status=status,
            data=data or {}
        )
        self._save_transaction(transaction)
        return transaction

    def find_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def require(self, transaction_id: str) -> Transaction:
        """Get transaction by ID or raise NotFoundError"""
        transaction = self.find_by_id(transaction_id)
        if not transaction:
            raise NotFoundError(transaction_not_found(transaction_id))
        return transaction

    def find_by_user(self, user_id: str) -> List[Transaction]:
        """All transactions of a user, most recent first"""
        return self.find_all(user_id=user_id)

    def find_all(
        self,
        user_id: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        transaction_type: Optional[TransactionType] = None
    ) -> List[Transaction]:
        """All transactions matching the given filters, most recent first"""
        filters: Dict[str, Any] = {}
        if user_id:
            filters['user_id'] = user_id
        if status:
            filters['status'] = status.value
        if transaction_type:
            filters['transaction_type'] = transaction_type.value

        transactions = [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, filters)
        ]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    def update_by_id(self, transaction_id: str, **fields) -> Transaction:
        """
        Update mutable fields of a transaction

        Accepted fields: status, amount, transaction_type, action, subtype, data.
        """
        transaction = self.require(transaction_id)
        allowed = {"status", "amount", "transaction_type", "action", "subtype", "data"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Cannot update transaction fields: {', '.join(sorted(unknown))}")

        for name, value in fields.items():
            setattr(transaction, name, value)
        transaction.updated_at = datetime.now(timezone.utc)
        # Re-run record invariants on the amended values
        transaction.__post_init__()

        self._save_transaction(transaction)
        return transaction

    def _save_transaction(self, transaction: Transaction) -> None:
        """Save transaction to storage"""
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['action'] = transaction.action.value
        result['status'] = transaction.status.value
        result['amount'] = str(transaction.amount)
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            transaction_type=TransactionType(data['transaction_type']),
            subtype=data['subtype'],
            action=TransactionAction(data['action']),
            amount=Decimal(data['amount']),
            status=TransactionStatus(data['status']),
            data=data.get('data') or {}
        )
