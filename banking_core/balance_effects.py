"""
Balance Effects Module

The two-phase balance model in one place. ``current_balance`` carries gross
pending activity, ``available_balance`` carries the spendable subset.
Every money-moving operation derives its balance delta from the table in
``apply_transaction_effect``; settlement and correction are the difference
between two rows of that table.

    action  status   available  current
    credit  pending      0        +a
    credit  success     +a        +a
    credit  failed       0         0
    debit   pending     -a        +a
    debit   success     -a         0
    debit   failed       0         0
"""

from dataclasses import dataclass
from decimal import Decimal

from .transactions import TransactionAction, TransactionStatus


ZERO = Decimal('0')


@dataclass(frozen=True)
class BalanceEffect:
    """Signed change to an account's (available, current) pair"""
    available: Decimal = ZERO
    current: Decimal = ZERO

    def __add__(self, other: 'BalanceEffect') -> 'BalanceEffect':
        return BalanceEffect(self.available + other.available,
                             self.current + other.current)

    def __neg__(self) -> 'BalanceEffect':
        return BalanceEffect(-self.available, -self.current)

    @property
    def is_zero(self) -> bool:
        return self.available == ZERO and self.current == ZERO


NO_EFFECT = BalanceEffect()


def apply_transaction_effect(action: TransactionAction, status: TransactionStatus,
                             amount: Decimal) -> BalanceEffect:
    """Balance delta a transaction contributes while it sits in ``status``"""
    if status == TransactionStatus.FAILED:
        return NO_EFFECT

    if action == TransactionAction.CREDIT:
        if status == TransactionStatus.SUCCESS:
            return BalanceEffect(available=amount, current=amount)
        return BalanceEffect(current=amount)

    if status == TransactionStatus.SUCCESS:
        return BalanceEffect(available=-amount)
    return BalanceEffect(available=-amount, current=amount)


def reverse_transaction_effect(action: TransactionAction, status: TransactionStatus,
                               amount: Decimal) -> BalanceEffect:
    """Delta that removes a transaction's contribution from the balances"""
    return -apply_transaction_effect(action, status, amount)


def transition_effect(old_action: TransactionAction, old_status: TransactionStatus,
                      old_amount: Decimal, new_action: TransactionAction,
                      new_status: TransactionStatus, new_amount: Decimal) -> BalanceEffect:
    """
    Delta for moving a transaction from one (action, status, amount) to another.

    Covers settlement (pending -> success/failed) as well as admin amendments
    of the amount or direction.
    """
    return (reverse_transaction_effect(old_action, old_status, old_amount)
            + apply_transaction_effect(new_action, new_status, new_amount))
