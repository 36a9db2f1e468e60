"""
Tests for the two-phase balance arithmetic
"""

from decimal import Decimal

import pytest

from banking_core.balance_effects import (
    BalanceEffect, NO_EFFECT, apply_transaction_effect,
    reverse_transaction_effect, transition_effect
)
from banking_core.transactions import TransactionAction, TransactionStatus


CREDIT = TransactionAction.CREDIT
DEBIT = TransactionAction.DEBIT
PENDING = TransactionStatus.PENDING
SUCCESS = TransactionStatus.SUCCESS
FAILED = TransactionStatus.FAILED

A = Decimal("40")


class TestApplyTransactionEffect:

    @pytest.mark.parametrize("action,status,expected", [
        (CREDIT, PENDING, BalanceEffect(Decimal("0"), A)),
        (CREDIT, SUCCESS, BalanceEffect(A, A)),
        (CREDIT, FAILED, NO_EFFECT),
        (DEBIT, PENDING, BalanceEffect(-A, A)),
        (DEBIT, SUCCESS, BalanceEffect(-A, Decimal("0"))),
        (DEBIT, FAILED, NO_EFFECT),
    ])
    def test_table(self, action, status, expected):
        assert apply_transaction_effect(action, status, A) == expected

    def test_reverse_is_negation(self):
        effect = reverse_transaction_effect(DEBIT, PENDING, A)
        assert effect == BalanceEffect(A, -A)


class TestTransitionEffect:
    """Settlement rules fall out of reverse(old) + apply(new)"""

    def test_credit_settles_into_available(self):
        assert transition_effect(CREDIT, PENDING, A, CREDIT, SUCCESS, A) == BalanceEffect(A, Decimal("0"))

    def test_debit_settles_out_of_current(self):
        assert transition_effect(DEBIT, PENDING, A, DEBIT, SUCCESS, A) == BalanceEffect(Decimal("0"), -A)

    def test_failed_credit_drops_pending_current(self):
        assert transition_effect(CREDIT, PENDING, A, CREDIT, FAILED, A) == BalanceEffect(Decimal("0"), -A)

    def test_failed_debit_releases_reservation(self):
        assert transition_effect(DEBIT, PENDING, A, DEBIT, FAILED, A) == BalanceEffect(A, -A)

    def test_amount_amendment_moves_by_difference(self):
        effect = transition_effect(DEBIT, PENDING, Decimal("50"), DEBIT, PENDING, Decimal("30"))
        assert effect == BalanceEffect(Decimal("20"), Decimal("-20"))

    def test_direction_flip_on_settled_transaction(self):
        effect = transition_effect(CREDIT, SUCCESS, A, DEBIT, SUCCESS, A)
        assert effect == BalanceEffect(Decimal("-80"), Decimal("-40"))

    def test_no_change_is_zero(self):
        assert transition_effect(DEBIT, SUCCESS, A, DEBIT, SUCCESS, A).is_zero
