"""
Banking Core

Balance ledger with a two-phase pending/settled model, customer/admin chat,
and realtime fan-out of chat and transaction notifications.
"""

__version__ = "1.0.0"
