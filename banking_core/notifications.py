"""
Notification Engine Module

Turns domain events into realtime notifications. Every notification has the
same shape, ``{"type": ..., "content": ..., "data": {...}}``, and is built by
``format_notification`` from a single template table keyed by
(notification type, action).

The publisher subscribes to the event dispatcher, so ledger and chat code
never emit to rooms directly. Delivery is best-effort: a failure here is
logged by the dispatcher and never undoes the write that caused it.
"""

from enum import Enum
from typing import Any, Dict, Optional

from .accounts import AccountManager
from .events import DomainEvent, EventDispatcher, EventPayload
from .logging_config import get_logger
from .realtime import Channel, RealtimeHub


class NotificationType(Enum):
    """Types of notifications"""
    TRANSACTION = "transaction"
    CHAT = "chat"


NOTIFICATION_EVENT = "notification"

# (type, action) -> content template with {placeholders}
NOTIFICATION_TEMPLATES: Dict[tuple, str] = {
    (NotificationType.TRANSACTION, "credit"): "Credit Alert",
    (NotificationType.TRANSACTION, "debit"): "Debit Alert",
    (NotificationType.CHAT, "admin"): "New message from admin",
    (NotificationType.CHAT, "customer"): "New message from {sender_name}",
}


def format_notification(notification_type: NotificationType, action: str,
                        data: Dict[str, Any], **context) -> Dict[str, Any]:
    """
    Build a notification payload

    Args:
        notification_type: Transaction or chat
        action: Transaction action (credit/debit) or chat author (admin/customer)
        data: Structured data attached to the notification
        **context: Values substituted into the content template

    Raises:
        KeyError: If no template exists for (notification_type, action)
    """
    template = NOTIFICATION_TEMPLATES[(notification_type, action)]
    return {
        "type": notification_type.value,
        "content": template.format(**context),
        "data": data,
    }


def transaction_notification(event: EventPayload) -> Dict[str, Any]:
    """Notification for a created or updated transaction event"""
    data = event.data
    return format_notification(
        NotificationType.TRANSACTION,
        data["action"],
        {
            "userId": data["user_id"],
            "transactionId": event.entity_id,
            "type": data["transaction_type"],
            "action": data["action"],
            "amount": data["amount"],
            "status": data["status"],
            "event": "create" if event.event_type == DomainEvent.TRANSACTION_CREATED else "update",
        }
    )


class NotificationPublisher:
    """
    Fans domain events out to realtime rooms

    Transaction events go to the owning user's notification room. A chat
    message authored by a customer goes to the admin room of both channel
    groups; one authored by admin goes to the customer's rooms.
    """

    def __init__(self, hub: RealtimeHub, accounts: Optional[AccountManager] = None):
        self.hub = hub
        self.accounts = accounts
        self.logger = get_logger("banking.notifications")

    def register(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(DomainEvent.TRANSACTION_CREATED, self.on_transaction)
        dispatcher.subscribe(DomainEvent.TRANSACTION_UPDATED, self.on_transaction)
        dispatcher.subscribe(DomainEvent.CHAT_MESSAGE_SENT, self.on_chat_message)
        dispatcher.subscribe(DomainEvent.CHAT_MESSAGES_READ, self.on_messages_read)

    def on_transaction(self, event: EventPayload) -> None:
        user_id = event.data["user_id"]
        delivered = self.hub.emit_to_user(
            user_id, NOTIFICATION_EVENT, transaction_notification(event),
            channel=Channel.NOTIFICATIONS
        )
        self.logger.debug(f"Transaction notification for {user_id} reached {delivered} session(s)")

    def on_chat_message(self, event: EventPayload) -> None:
        user_id = event.data["user_id"]
        message = event.data["message"]
        timestamp = message.get("createdAt")

        if event.data["is_user"]:
            self.hub.emit_to_admin("new_message", {"userId": user_id, "message": message})
            notification = format_notification(
                NotificationType.CHAT, "customer",
                {
                    "userId": user_id,
                    "senderId": user_id,
                    "senderName": self._sender_name(user_id),
                    "isAdmin": False,
                    "timestamp": timestamp,
                },
                sender_name=self._first_name(user_id)
            )
            self.hub.emit_to_admin(NOTIFICATION_EVENT, notification, channel=Channel.NOTIFICATIONS)
        else:
            self.hub.emit_to_user(user_id, "new_message", {"message": message})
            notification = format_notification(
                NotificationType.CHAT, "admin",
                {
                    "userId": user_id,
                    "senderId": "admin",
                    "senderName": "Admin",
                    "isAdmin": True,
                    "timestamp": timestamp,
                }
            )
            self.hub.emit_to_user(user_id, NOTIFICATION_EVENT, notification,
                                  channel=Channel.NOTIFICATIONS)

    def on_messages_read(self, event: EventPayload) -> None:
        """Read receipts; the reader's counterpart is told which messages were read"""
        user_id = event.data["user_id"]
        message_ids = event.data.get("message_ids", [])
        if not message_ids:
            return
        if event.data["read_by_admin"]:
            self.hub.emit_to_user(user_id, "admin_read_messages", {"messageIds": message_ids})
        else:
            self.hub.emit_to_admin("messages_read", {"userId": user_id, "messageIds": message_ids})

    def _sender_name(self, user_id: str) -> str:
        account = self.accounts.get_account(user_id) if self.accounts else None
        if account and account.full_name:
            return account.full_name
        return "User"

    def _first_name(self, user_id: str) -> str:
        return self._sender_name(user_id).split()[0]
