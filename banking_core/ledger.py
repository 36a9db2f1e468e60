"""
Ledger Engine

Sole authority for producing transactions and changing balances. Every
money-moving operation derives its balance change from ``balance_effects``,
writes the transaction record(s) and the balance update(s) inside a single
``storage.atomic()`` unit, and publishes domain events only after that unit
commits. A failed operation therefore leaves no records, no balance change
and no notification behind.

Two-phase model: a pending debit reserves funds (available down, current
up); settlement moves the pair to its final values. See ``balance_effects``
for the table.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .accounts import Account, AccountManager
from .balance_effects import apply_transaction_effect, transition_effect
from .errors import (
    InsufficientFundsError, NotFoundError, RecipientNotFoundError, ValidationError,
    insufficient_funds, purchase_not_found
)
from .events import DomainEvent, EventDispatcher, EventPayload, create_transaction_event
from .logging_config import get_logger, log_action
from .stocks import StockPurchase, StockPurchaseRepository
from .storage import StorageInterface
from .transactions import (
    Transaction, TransactionAction, TransactionRepository, TransactionStatus,
    TransactionType, parse_amount, parse_enum
)


DEFAULT_MEMBER_SUBTYPE = "member"
STOCK_SUBTYPE = "stock"
STOCK_SALE_SUBTYPE = "stock_sale"


@dataclass
class LedgerResult:
    """Outcome of a successful ledger operation"""
    data: Dict[str, Any]
    transaction: Optional[Transaction] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "data": self.data}


def parse_quantity(value: Any) -> int:
    """Coerce a share count to a positive int or raise ValidationError"""
    if isinstance(value, bool):
        raise ValidationError("Quantity must be a whole number")
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid quantity: {value!r}") from None
    if quantity != value and str(quantity) != str(value):
        raise ValidationError("Quantity must be a whole number")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    return quantity


class LedgerEngine:
    """
    Orchestrates transactions, balances and stock positions
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountManager,
        dispatcher: Optional[EventDispatcher] = None,
        member_subtype: str = DEFAULT_MEMBER_SUBTYPE
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = TransactionRepository(storage)
        self.purchases = StockPurchaseRepository(storage)
        self.dispatcher = dispatcher
        self.member_subtype = member_subtype
        self.logger = get_logger("banking.ledger")

    # Customer operations

    def fund_wallet(self, user_id: str, amount: Any, subtype: str = "bank-transfer",
                    metadata: Optional[Dict[str, Any]] = None) -> LedgerResult:
        """
        Record an incoming deposit as a pending credit

        Only current_balance grows until the deposit settles.
        """
        value = parse_amount(amount)
        self.accounts.require_account(user_id)

        with self.storage.atomic():
            transaction = self._record(
                user_id, TransactionType.FUND_WALLET, subtype,
                TransactionAction.CREDIT, value, TransactionStatus.PENDING, metadata
            )

        self._log_transaction("Wallet funded", transaction)
        self._publish(create_transaction_event(DomainEvent.TRANSACTION_CREATED, transaction))
        return LedgerResult(data=transaction.to_public_dict(), transaction=transaction)

    def withdraw(self, user_id: str, amount: Any, subtype: str = "bank-transfer",
                 metadata: Optional[Dict[str, Any]] = None) -> LedgerResult:
        """
        Reserve funds for an outgoing withdrawal

        Raises:
            InsufficientFundsError: available_balance is below the amount
        """
        value = parse_amount(amount)
        self._require_cover(self.accounts.require_account(user_id), value)

        with self.storage.atomic():
            transaction = self._record(
                user_id, TransactionType.WITHDRAW, subtype,
                TransactionAction.DEBIT, value, TransactionStatus.PENDING, metadata
            )

        self._log_transaction("Withdrawal requested", transaction)
        self._publish(create_transaction_event(DomainEvent.TRANSACTION_CREATED, transaction))
        return LedgerResult(data=transaction.to_public_dict(), transaction=transaction)

    def send_money(self, sender_id: str, amount: Any, subtype: str,
                   metadata: Optional[Dict[str, Any]] = None) -> LedgerResult:
        """
        Send money to a member or to an external destination

        A member transfer writes the sender debit and the recipient credit
        in one unit; any other subtype only writes the sender debit.

        Raises:
            InsufficientFundsError: Sender cannot cover the amount
            RecipientNotFoundError: Member recipient does not exist
            ValidationError: Bad amount, or a member sending to themselves
        """
        value = parse_amount(amount)
        metadata = dict(metadata or {})
        sender = self.accounts.require_account(sender_id)
        self._require_cover(sender, value)

        recipient = None
        if subtype == self.member_subtype:
            recipient_id = metadata.get("recipientId")
            if not recipient_id:
                raise ValidationError("Recipient ID is required for member transfers")
            if recipient_id == sender_id:
                raise ValidationError("Cannot send money to yourself")
            recipient = self.accounts.get_account(recipient_id)
            if not recipient:
                raise RecipientNotFoundError(f"Recipient {recipient_id} not found")

        recipient_transaction = None
        with self.storage.atomic():
            sender_transaction = self._record(
                sender_id, TransactionType.SEND_MONEY, subtype,
                TransactionAction.DEBIT, value, TransactionStatus.PENDING, metadata
            )
            if recipient:
                recipient_transaction = self._record(
                    recipient.id, TransactionType.FUND_WALLET, subtype,
                    TransactionAction.CREDIT, value, TransactionStatus.PENDING,
                    {
                        "senderId": sender.id,
                        "senderName": sender.full_name,
                        "senderAccountNumber": sender.account_number,
                        "description": metadata.get("description"),
                    }
                )

        self._log_transaction("Money sent", sender_transaction)
        events = [create_transaction_event(DomainEvent.TRANSACTION_CREATED, sender_transaction)]
        data = {"transaction": sender_transaction.to_public_dict()}
        if recipient_transaction:
            self._log_transaction("Member transfer received", recipient_transaction)
            events.append(create_transaction_event(DomainEvent.TRANSACTION_CREATED, recipient_transaction))
            data["recipientTransaction"] = recipient_transaction.to_public_dict()
        for event in events:
            self._publish(event)
        return LedgerResult(data=data, transaction=sender_transaction)

    # Admin operations

    def create_admin_transaction(
        self,
        user_id: str,
        transaction_type: Any,
        subtype: str,
        action: Any,
        amount: Any,
        status: Any = TransactionStatus.PENDING,
        data: Optional[Dict[str, Any]] = None
    ) -> LedgerResult:
        """
        Issue an arbitrary transaction on behalf of a user

        The balance change is the table row for (action, status).
        """
        kind = parse_enum(TransactionType, transaction_type, "type")
        direction = parse_enum(TransactionAction, action, "action")
        state = parse_enum(TransactionStatus, status, "status")
        value = parse_amount(amount)
        if not subtype:
            raise ValidationError("Transaction subtype is required")

        account = self.accounts.require_account(user_id)
        if direction == TransactionAction.DEBIT:
            self._require_cover(account, value)

        with self.storage.atomic():
            transaction = self._record(user_id, kind, subtype, direction, value, state, data)

        self._log_transaction("Admin transaction created", transaction)
        self._publish(create_transaction_event(DomainEvent.TRANSACTION_CREATED, transaction))
        return LedgerResult(data=transaction.to_public_dict(), transaction=transaction)

    def update_transaction(
        self,
        transaction_id: str,
        status: Any = None,
        amount: Any = None,
        transaction_type: Any = None,
        action: Any = None,
        subtype: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> LedgerResult:
        """
        Settle or correct a transaction

        Status may only leave pending. Re-sending the current status with no
        other change returns the record untouched. The balance change is the
        difference between the old and new (action, status, amount) rows.

        Raises:
            NotFoundError: Unknown transaction
            ValidationError: Bad enum, non-positive amount, or leaving a terminal status
            InsufficientFundsError: The change would take more available than the account holds
        """
        transaction = self.transactions.require(transaction_id)

        changes: Dict[str, Any] = {}
        if status is not None:
            new_status = parse_enum(TransactionStatus, status, "status")
            if new_status != transaction.status:
                if transaction.status.is_terminal:
                    raise ValidationError(
                        f"Transaction {transaction_id} is already {transaction.status.value}"
                    )
                changes["status"] = new_status
        if amount is not None:
            new_amount = parse_amount(amount)
            if new_amount != transaction.amount:
                changes["amount"] = new_amount
        if transaction_type is not None:
            new_type = parse_enum(TransactionType, transaction_type, "type")
            if new_type != transaction.transaction_type:
                changes["transaction_type"] = new_type
        if action is not None:
            new_action = parse_enum(TransactionAction, action, "action")
            if new_action != transaction.action:
                changes["action"] = new_action
        if subtype is not None and subtype != transaction.subtype:
            if not subtype:
                raise ValidationError("Transaction subtype is required")
            changes["subtype"] = subtype
        if data is not None and data != transaction.data:
            changes["data"] = data

        if not changes:
            return LedgerResult(data=transaction.to_public_dict(), transaction=transaction)

        effect = transition_effect(
            transaction.action, transaction.status, transaction.amount,
            changes.get("action", transaction.action),
            changes.get("status", transaction.status),
            changes.get("amount", transaction.amount)
        )

        with self.storage.atomic():
            updated = self.transactions.update_by_id(transaction_id, **changes)
            self.accounts.adjust_balances(updated.user_id, effect)

        changed = sorted(changes)
        log_action(
            self.logger, "info", "Transaction updated",
            user_id=updated.user_id, action="update_transaction",
            resource=f"transaction:{updated.id}",
            extra={
                "changes": changed,
                "status": updated.status.value,
                "available_delta": str(effect.available),
                "current_delta": str(effect.current)
            }
        )
        if "status" in changes or "amount" in changes:
            self._publish(create_transaction_event(DomainEvent.TRANSACTION_UPDATED, updated, changed))
        return LedgerResult(data=updated.to_public_dict(), transaction=updated)

    # Stock operations

    def buy_stock(self, user_id: str, stock_id: str, quantity: Any,
                  purchase_price: Any, total_cost: Any) -> LedgerResult:
        """
        Open a stock position and reserve its cost as a pending debit

        Raises:
            InsufficientFundsError: available_balance is below total_cost
        """
        shares = parse_quantity(quantity)
        price = parse_amount(purchase_price, "purchase price")
        cost = parse_amount(total_cost, "total cost")
        if not stock_id or not str(stock_id).strip():
            raise ValidationError("Stock ID is required")
        self._require_cover(self.accounts.require_account(user_id), cost)

        with self.storage.atomic():
            purchase = self.purchases.create(user_id, stock_id, shares, price, cost)
            transaction = self._record(
                user_id, TransactionType.STOCKS, STOCK_SUBTYPE,
                TransactionAction.DEBIT, cost, TransactionStatus.PENDING,
                {
                    "purchaseId": purchase.id,
                    "stockId": purchase.stock_id,
                    "quantity": shares,
                    "purchasePrice": str(price),
                }
            )

        self._log_transaction("Stock purchased", transaction)
        self._publish(create_transaction_event(DomainEvent.TRANSACTION_CREATED, transaction))
        return LedgerResult(
            data={"purchase": purchase.to_public_dict(), "transaction": transaction.to_public_dict()},
            transaction=transaction
        )

    def sell_stock(self, purchase_id: str, quantity: Any, sale_price: Any, total_value: Any,
                   user_id: Optional[str] = None) -> LedgerResult:
        """
        Sell some or all shares of a position

        Proceeds settle immediately. Selling every share removes the
        position; otherwise its quantity and cost basis shrink.

        Raises:
            NotFoundError: Position missing, inactive, or not owned by user_id
            ValidationError: Quantity outside 1..held, negative price or value
        """
        purchase = self.purchases.require_active(purchase_id)
        if user_id is not None and purchase.user_id != user_id:
            raise NotFoundError(purchase_not_found(purchase_id))

        shares = parse_quantity(quantity)
        if shares > purchase.quantity:
            raise ValidationError(
                f"Cannot sell {shares} shares, only {purchase.quantity} held"
            )
        price = parse_amount(sale_price, "sale price", allow_zero=True)
        proceeds = parse_amount(total_value, "total value", allow_zero=True)

        with self.storage.atomic():
            # Zero proceeds still close the position but cannot form a transaction
            transaction = None
            if proceeds > 0:
                transaction = self._record(
                    purchase.user_id, TransactionType.STOCKS, STOCK_SALE_SUBTYPE,
                    TransactionAction.CREDIT, proceeds, TransactionStatus.SUCCESS,
                    {
                        "purchaseId": purchase.id,
                        "stockId": purchase.stock_id,
                        "quantity": shares,
                        "salePrice": str(price),
                    }
                )
            remaining = self._reduce_position(purchase, shares)

        log_action(
            self.logger, "info", "Stock sold",
            user_id=purchase.user_id, action="sell_stock", resource=f"stock_purchase:{purchase.id}",
            extra={"stock_id": purchase.stock_id, "quantity": shares,
                   "total_value": str(proceeds), "remaining": remaining}
        )
        data: Dict[str, Any] = {"purchaseId": purchase.id, "remainingQuantity": remaining}
        if transaction:
            data["transaction"] = transaction.to_public_dict()
            self._publish(create_transaction_event(DomainEvent.TRANSACTION_CREATED, transaction))
        return LedgerResult(data=data, transaction=transaction)

    # Queries

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self.transactions.require(transaction_id)

    def get_user_transactions(self, user_id: str) -> List[Transaction]:
        return self.transactions.find_by_user(user_id)

    def list_transactions(self, user_id: Optional[str] = None, status: Any = None,
                          transaction_type: Any = None) -> List[Transaction]:
        """Admin listing with optional filters, most recent first"""
        return self.transactions.find_all(
            user_id=user_id,
            status=parse_enum(TransactionStatus, status, "status") if status else None,
            transaction_type=parse_enum(TransactionType, transaction_type, "type") if transaction_type else None
        )

    def get_balances(self, user_id: str) -> Dict[str, str]:
        return self.accounts.require_account(user_id).balances()

    def get_portfolio(self, user_id: str) -> List[StockPurchase]:
        return self.purchases.find_by_user(user_id)

    # Internals

    def _record(self, user_id: str, transaction_type: TransactionType, subtype: str,
                action: TransactionAction, amount: Decimal, status: TransactionStatus,
                data: Optional[Dict[str, Any]]) -> Transaction:
        """Create a transaction and apply its balance effect; caller holds the unit"""
        transaction = self.transactions.create(
            user_id, transaction_type, subtype, action, amount, status, data
        )
        self.accounts.adjust_balances(user_id, apply_transaction_effect(action, status, amount))
        return transaction

    def _reduce_position(self, purchase: StockPurchase, shares: int) -> int:
        remaining = purchase.quantity - shares
        if remaining == 0:
            self.purchases.delete(purchase.id)
        else:
            purchase.quantity = remaining
            purchase.total_cost = purchase.purchase_price * remaining
            self.purchases.update(purchase)
        return remaining

    def _require_cover(self, account: Account, amount: Decimal) -> None:
        if not account.covers(amount):
            raise InsufficientFundsError(insufficient_funds(account.available_balance, amount))

    def _log_transaction(self, message: str, transaction: Transaction) -> None:
        log_action(
            self.logger, "info", message,
            user_id=transaction.user_id, action=transaction.transaction_type.value,
            resource=f"transaction:{transaction.id}",
            extra={
                "subtype": transaction.subtype,
                "direction": transaction.action.value,
                "status": transaction.status.value,
                "amount": str(transaction.amount)
            }
        )

    def _publish(self, event: EventPayload) -> None:
        if self.dispatcher:
            self.dispatcher.publish(event)
