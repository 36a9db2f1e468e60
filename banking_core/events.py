"""
Event System Module

Publish/subscribe dispatcher for domain events. The ledger and the chat
service publish after their writes commit; the notification publisher
subscribes and fans events out to realtime rooms. Handler failures are
logged and never reach the publishing operation.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the banking core"""

    # Transaction events
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_UPDATED = "transaction.updated"

    # Chat events
    CHAT_MESSAGE_SENT = "chat.message_sent"
    CHAT_MESSAGES_READ = "chat.messages_read"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("banking.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Log but don't break the main operation
                self.logger.exception(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}"
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()


def create_transaction_event(event_type: DomainEvent, transaction,
                             changes: Optional[List[str]] = None) -> EventPayload:
    """Create a transaction-related event"""
    data = {
        "user_id": transaction.user_id,
        "transaction_type": transaction.transaction_type.value,
        "subtype": transaction.subtype,
        "action": transaction.action.value,
        "amount": str(transaction.amount),
        "status": transaction.status.value,
    }
    if changes:
        data["changes"] = changes
    return EventPayload(
        event_type=event_type,
        entity_type="transaction",
        entity_id=transaction.id,
        data=data
    )


def create_chat_event(event_type: DomainEvent, message) -> EventPayload:
    """Create a chat-message event"""
    return EventPayload(
        event_type=event_type,
        entity_type="chat_message",
        entity_id=message.id,
        data={
            "user_id": message.user_id,
            "is_user": message.is_user,
            "message": message.to_public_dict(),
        }
    )


def create_read_event(user_id: str, message_ids: List[str], read_by_admin: bool) -> EventPayload:
    """Create a read-receipt event for one conversation"""
    return EventPayload(
        event_type=DomainEvent.CHAT_MESSAGES_READ,
        entity_type="conversation",
        entity_id=user_id,
        data={
            "user_id": user_id,
            "message_ids": message_ids,
            "read_by_admin": read_by_admin,
        }
    )
