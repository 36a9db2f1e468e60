"""
Tests for the Ledger Engine

Covers the two-phase balance model across fund, withdraw, send, admin
issue/settle, and stock trades, plus all-or-nothing failure behaviour.
"""

import threading
from decimal import Decimal
from unittest.mock import patch

import pytest

from banking_core.accounts import AccountManager
from banking_core.balance_effects import BalanceEffect
from banking_core.errors import (
    ConflictError, InsufficientFundsError, NotFoundError,
    RecipientNotFoundError, ValidationError
)
from banking_core.events import DomainEvent, EventDispatcher
from banking_core.ledger import LedgerEngine, parse_quantity
from banking_core.storage import InMemoryStorage, SQLiteStorage
from banking_core.transactions import TransactionAction, TransactionStatus, TransactionType


class LedgerTestCase:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.accounts = AccountManager(self.storage)
        self.dispatcher = EventDispatcher()
        self.events = []
        self.dispatcher.subscribe_all(self.events.append)
        self.ledger = LedgerEngine(self.storage, self.accounts, self.dispatcher)

        self.accounts.create_account("alice", full_name="Alice Doe", account_number="0001")
        self.accounts.create_account("bob", full_name="Bob Roe", account_number="0002")

    def seed(self, user_id, available, current):
        self.accounts.adjust_balances(user_id, BalanceEffect(Decimal(available), Decimal(current)))

    def balances(self, user_id):
        account = self.accounts.get_account(user_id)
        return account.available_balance, account.current_balance

    def transactions(self, user_id):
        return self.ledger.get_user_transactions(user_id)


class TestFundAndWithdraw(LedgerTestCase):

    def test_fund_wallet_adds_to_current_only(self):
        self.seed("alice", "10", "10")

        result = self.ledger.fund_wallet("alice", "25")

        assert result.success
        assert self.balances("alice") == (Decimal("10"), Decimal("35"))
        [transaction] = self.transactions("alice")
        assert transaction.transaction_type == TransactionType.FUND_WALLET
        assert transaction.action == TransactionAction.CREDIT
        assert transaction.status == TransactionStatus.PENDING
        assert transaction.amount == Decimal("25")

    def test_fund_wallet_publishes_created_event(self):
        result = self.ledger.fund_wallet("alice", 5)

        assert [e.event_type for e in self.events] == [DomainEvent.TRANSACTION_CREATED]
        assert self.events[0].entity_id == result.transaction.id
        assert self.events[0].data["user_id"] == "alice"

    @pytest.mark.parametrize("amount", [0, -5, "abc", None, "NaN"])
    def test_fund_wallet_rejects_bad_amounts(self, amount):
        with pytest.raises(ValidationError):
            self.ledger.fund_wallet("alice", amount)
        assert self.transactions("alice") == []

    def test_fund_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.ledger.fund_wallet("ghost", 10)

    def test_withdraw_reserves_funds(self):
        self.seed("alice", "100", "100")

        self.ledger.withdraw("alice", "50")

        assert self.balances("alice") == (Decimal("50"), Decimal("150"))

    def test_withdraw_above_available_leaves_account_untouched(self):
        self.seed("alice", "100", "100")

        with pytest.raises(InsufficientFundsError):
            self.ledger.withdraw("alice", "100.01")

        assert self.balances("alice") == (Decimal("100"), Decimal("100"))
        assert self.transactions("alice") == []
        assert self.events == []

    def test_withdraw_then_settle_example(self):
        self.seed("alice", "100", "100")

        result = self.ledger.withdraw("alice", 50)
        assert self.balances("alice") == (Decimal("50"), Decimal("150"))

        self.ledger.update_transaction(result.transaction.id, status="success")
        assert self.balances("alice") == (Decimal("50"), Decimal("100"))

    def test_failed_withdraw_restores_balances(self):
        self.seed("alice", "100", "100")
        result = self.ledger.withdraw("alice", 40)

        self.ledger.update_transaction(result.transaction.id, status="failed")

        assert self.balances("alice") == (Decimal("100"), Decimal("100"))

    def test_fund_settlement_moves_into_available(self):
        result = self.ledger.fund_wallet("alice", 30)

        self.ledger.update_transaction(result.transaction.id, status="success")

        assert self.balances("alice") == (Decimal("30"), Decimal("30"))

    def test_failed_fund_drops_pending_current(self):
        result = self.ledger.fund_wallet("alice", 30)

        self.ledger.update_transaction(result.transaction.id, status="failed")

        assert self.balances("alice") == (Decimal("0"), Decimal("0"))


class TestSendMoney(LedgerTestCase):

    def test_member_transfer_creates_both_records(self):
        self.seed("alice", "100", "100")

        result = self.ledger.send_money("alice", "40", "member", {"recipientId": "bob"})

        assert self.balances("alice") == (Decimal("60"), Decimal("140"))
        assert self.balances("bob") == (Decimal("0"), Decimal("40"))
        [sent] = self.transactions("alice")
        [received] = self.transactions("bob")
        assert sent.transaction_type == TransactionType.SEND_MONEY
        assert sent.action == TransactionAction.DEBIT
        assert received.transaction_type == TransactionType.FUND_WALLET
        assert received.action == TransactionAction.CREDIT
        assert received.data["senderId"] == "alice"
        assert received.data["senderName"] == "Alice Doe"
        assert received.data["senderAccountNumber"] == "0001"
        assert "recipientTransaction" in result.data
        assert len(self.events) == 2

    def test_external_transfer_touches_no_recipient(self):
        self.seed("alice", "100", "100")

        result = self.ledger.send_money("alice", "40", "bank-transfer", {"recipientId": "bob"})

        assert len(self.transactions("alice")) == 1
        assert self.transactions("bob") == []
        assert self.balances("bob") == (Decimal("0"), Decimal("0"))
        assert "recipientTransaction" not in result.data
        assert len(self.events) == 1

    def test_missing_recipient(self):
        self.seed("alice", "100", "100")

        with pytest.raises(RecipientNotFoundError):
            self.ledger.send_money("alice", "40", "member", {"recipientId": "carol"})

        assert self.balances("alice") == (Decimal("100"), Decimal("100"))
        assert self.transactions("alice") == []

    def test_cannot_send_to_self(self):
        self.seed("alice", "100", "100")
        with pytest.raises(ValidationError):
            self.ledger.send_money("alice", "10", "member", {"recipientId": "alice"})

    def test_insufficient_funds(self):
        self.seed("alice", "10", "10")
        with pytest.raises(InsufficientFundsError):
            self.ledger.send_money("alice", "40", "member", {"recipientId": "bob"})
        assert self.transactions("bob") == []

    def test_failed_recipient_write_rolls_back_sender(self):
        self.seed("alice", "100", "100")
        original = self.accounts.adjust_balances

        def fail_for_bob(account_id, effect, enforce_cover=True):
            if account_id == "bob":
                raise ConflictError("Account bob was modified concurrently")
            return original(account_id, effect, enforce_cover)

        with patch.object(self.accounts, "adjust_balances", side_effect=fail_for_bob):
            with pytest.raises(ConflictError):
                self.ledger.send_money("alice", "40", "member", {"recipientId": "bob"})

        assert self.balances("alice") == (Decimal("100"), Decimal("100"))
        assert self.transactions("alice") == []
        assert self.transactions("bob") == []
        assert self.events == []


class TestAdminTransactions(LedgerTestCase):

    def test_admin_credit_success_lands_in_both_balances(self):
        self.ledger.create_admin_transaction("alice", "credit", "bonus", "credit", "40", status="success")

        assert self.balances("alice") == (Decimal("40"), Decimal("40"))

    def test_admin_debit_requires_cover(self):
        self.seed("alice", "10", "10")
        with pytest.raises(InsufficientFundsError):
            self.ledger.create_admin_transaction("alice", "debit", "fee", "debit", "20")

    @pytest.mark.parametrize("field,kwargs", [
        ("type", {"transaction_type": "refund"}),
        ("action", {"action": "sideways"}),
        ("status", {"status": "done"}),
    ])
    def test_admin_create_validates_enums(self, field, kwargs):
        params = {
            "user_id": "alice", "transaction_type": "credit", "subtype": "bonus",
            "action": "credit", "amount": "5", "status": "pending"
        }
        params.update(kwargs)
        with pytest.raises(ValidationError, match=field):
            self.ledger.create_admin_transaction(**params)

    def test_unknown_transaction(self):
        with pytest.raises(NotFoundError):
            self.ledger.update_transaction("missing", status="success")

    def test_terminal_status_cannot_change(self):
        result = self.ledger.fund_wallet("alice", 10)
        self.ledger.update_transaction(result.transaction.id, status="success")

        with pytest.raises(ValidationError):
            self.ledger.update_transaction(result.transaction.id, status="failed")

        assert self.balances("alice") == (Decimal("10"), Decimal("10"))

    def test_same_status_is_a_no_op(self):
        result = self.ledger.fund_wallet("alice", 10)
        self.events.clear()

        again = self.ledger.update_transaction(result.transaction.id, status="pending")

        assert again.transaction.status == TransactionStatus.PENDING
        assert self.events == []
        assert self.accounts.get_account("alice").version == 1

    def test_amount_amendment_adjusts_by_difference(self):
        self.seed("alice", "100", "100")
        result = self.ledger.withdraw("alice", 50)

        self.ledger.update_transaction(result.transaction.id, amount="30")

        assert self.balances("alice") == (Decimal("70"), Decimal("130"))
        assert self.ledger.get_transaction(result.transaction.id).amount == Decimal("30")
        assert self.events[-1].event_type == DomainEvent.TRANSACTION_UPDATED
        assert self.events[-1].data["changes"] == ["amount"]

    def test_uncovered_amendment_rolls_back(self):
        self.seed("alice", "100", "100")
        result = self.ledger.withdraw("alice", 50)

        with pytest.raises(InsufficientFundsError):
            self.ledger.update_transaction(result.transaction.id, amount="200")

        assert self.ledger.get_transaction(result.transaction.id).amount == Decimal("50")
        assert self.balances("alice") == (Decimal("50"), Decimal("150"))

    def test_non_positive_amendment(self):
        result = self.ledger.fund_wallet("alice", 10)
        with pytest.raises(ValidationError):
            self.ledger.update_transaction(result.transaction.id, amount="0")

    def test_data_only_change_does_not_notify(self):
        result = self.ledger.fund_wallet("alice", 10)
        self.events.clear()

        updated = self.ledger.update_transaction(result.transaction.id, data={"note": "checked"})

        assert updated.transaction.data == {"note": "checked"}
        assert self.events == []

    def test_list_transactions_filters(self):
        self.ledger.fund_wallet("alice", 10)
        settled = self.ledger.fund_wallet("bob", 20)
        self.ledger.update_transaction(settled.transaction.id, status="success")

        assert len(self.ledger.list_transactions()) == 2
        assert [t.user_id for t in self.ledger.list_transactions(status="success")] == ["bob"]
        assert [t.user_id for t in self.ledger.list_transactions(user_id="alice")] == ["alice"]
        with pytest.raises(ValidationError):
            self.ledger.list_transactions(status="done")


class TestStocks(LedgerTestCase):

    def buy(self, quantity=2, price="10", total="20"):
        return self.ledger.buy_stock("alice", "aapl", quantity, price, total)

    def test_buy_reserves_cost_and_opens_position(self):
        self.seed("alice", "100", "100")

        result = self.buy()

        assert self.balances("alice") == (Decimal("80"), Decimal("120"))
        [position] = self.ledger.get_portfolio("alice")
        assert position.stock_id == "AAPL"
        assert position.quantity == 2
        transaction = result.transaction
        assert transaction.transaction_type == TransactionType.STOCKS
        assert transaction.subtype == "stock"
        assert transaction.action == TransactionAction.DEBIT
        assert transaction.data["purchaseId"] == position.id

    def test_buy_requires_cover(self):
        self.seed("alice", "10", "10")
        with pytest.raises(InsufficientFundsError):
            self.buy()
        assert self.ledger.get_portfolio("alice") == []

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "two"])
    def test_buy_rejects_bad_quantity(self, quantity):
        self.seed("alice", "100", "100")
        with pytest.raises(ValidationError):
            self.buy(quantity=quantity)

    def test_full_sale_removes_position(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]

        result = self.ledger.sell_stock(purchase_id, 2, "12", "24")

        assert self.ledger.purchases.find_by_id(purchase_id) is None
        assert result.data["remainingQuantity"] == 0
        sale = result.transaction
        assert sale.subtype == "stock_sale"
        assert sale.action == TransactionAction.CREDIT
        assert sale.status == TransactionStatus.SUCCESS
        assert self.balances("alice") == (Decimal("104"), Decimal("144"))

    def test_partial_sale_decrements_position(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy(quantity=5, price="10", total="50").data["purchase"]["id"]

        self.ledger.sell_stock(purchase_id, 2, "15", "30")

        position = self.ledger.purchases.find_by_id(purchase_id)
        assert position.quantity == 3
        assert position.total_cost == Decimal("30")
        assert self.balances("alice") == (Decimal("80"), Decimal("180"))

    def test_cannot_sell_more_than_held(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]

        with pytest.raises(ValidationError):
            self.ledger.sell_stock(purchase_id, 3, "10", "30")

    def test_negative_sale_price(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]

        with pytest.raises(ValidationError):
            self.ledger.sell_stock(purchase_id, 1, "-1", "10")

    def test_sale_of_unknown_position(self):
        with pytest.raises(NotFoundError):
            self.ledger.sell_stock("missing", 1, "10", "10")

    def test_sale_of_someone_elses_position(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]

        with pytest.raises(NotFoundError):
            self.ledger.sell_stock(purchase_id, 1, "10", "10", user_id="bob")

    def test_worthless_sale_closes_position_without_transaction(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]
        before = len(self.transactions("alice"))

        result = self.ledger.sell_stock(purchase_id, 2, "0", "0")

        assert result.transaction is None
        assert self.ledger.purchases.find_by_id(purchase_id) is None
        assert len(self.transactions("alice")) == before

    def test_failed_sale_rolls_back_everything(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy().data["purchase"]["id"]
        balances_before = self.balances("alice")
        transactions_before = len(self.transactions("alice"))
        self.events.clear()

        with patch.object(self.ledger.purchases, "delete", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                self.ledger.sell_stock(purchase_id, 2, "12", "24")

        assert self.ledger.purchases.find_by_id(purchase_id).quantity == 2
        assert self.balances("alice") == balances_before
        assert len(self.transactions("alice")) == transactions_before
        assert self.events == []

    def test_failed_partial_sale_rolls_back_everything(self):
        self.seed("alice", "100", "100")
        purchase_id = self.buy(quantity=3, price="10", total="30").data["purchase"]["id"]
        balances_before = self.balances("alice")
        transactions_before = len(self.transactions("alice"))
        self.events.clear()

        with patch.object(self.ledger.purchases, "update", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                self.ledger.sell_stock(purchase_id, 1, "12", "12")

        position = self.ledger.purchases.find_by_id(purchase_id)
        assert position.quantity == 3
        assert position.total_cost == Decimal("30")
        assert self.balances("alice") == balances_before
        assert len(self.transactions("alice")) == transactions_before
        assert self.events == []


class TestConcurrencyControl(LedgerTestCase):

    def test_lost_race_leaves_no_transaction(self):
        with patch.object(self.storage, "compare_and_swap", return_value=False):
            with pytest.raises(ConflictError):
                self.ledger.fund_wallet("alice", 10)

        assert self.transactions("alice") == []
        assert self.events == []


class TestConcurrentRequests:

    WORKERS = 12

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_racing_withdrawals_and_transfers_lose_no_updates(self, backend, tmp_path):
        storage = InMemoryStorage() if backend == "memory" else SQLiteStorage(tmp_path / "race.db")
        accounts = AccountManager(storage)
        ledger = LedgerEngine(storage, accounts)
        accounts.create_account("alice")
        accounts.create_account("bob")
        accounts.adjust_balances("alice", BalanceEffect(Decimal("60"), Decimal("60")))

        withdrawals, transfers, rejected = [], [], []
        results_lock = threading.Lock()
        start = threading.Barrier(self.WORKERS)

        def attempt(index):
            start.wait()
            try:
                if index % 2:
                    ledger.withdraw("alice", "10")
                    outcome = withdrawals
                else:
                    ledger.send_money("alice", "10", "member", {"recipientId": "bob"})
                    outcome = transfers
            except (InsufficientFundsError, ConflictError):
                outcome = rejected
            with results_lock:
                outcome.append(index)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(self.WORKERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        succeeded = len(withdrawals) + len(transfers)
        alice = accounts.get_account("alice")
        bob = accounts.get_account("bob")
        assert succeeded + len(rejected) == self.WORKERS
        assert alice.available_balance == Decimal("60") - 10 * succeeded
        assert alice.available_balance >= 0
        assert bob.current_balance == 10 * len(transfers)
        assert len(ledger.get_user_transactions("alice")) == succeeded
        storage.close()


class TestParseQuantity:

    def test_accepts_whole_numbers(self):
        assert parse_quantity(3) == 3
        assert parse_quantity("4") == 4
        assert parse_quantity(2.0) == 2

    @pytest.mark.parametrize("value", [True, 0, 2.5, "x", None])
    def test_rejects_everything_else(self, value):
        with pytest.raises(ValidationError):
            parse_quantity(value)
