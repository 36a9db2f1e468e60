"""
Chat Module

Customer/admin conversations. Each customer has one conversation with the
shared admin side. Messages carry who wrote them (``is_user``) and a read
flag that only ever moves from unread to read, so the customer-origin and
admin-origin unread counters are independent of each other.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import uuid

from .accounts import AccountManager
from .errors import NotFoundError, ValidationError
from .events import DomainEvent, EventDispatcher, create_chat_event, create_read_event
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


@dataclass
class ChatMessage(StorageRecord):
    """One message in a customer's conversation"""
    user_id: str
    message: str
    is_user: bool
    is_read: bool = False

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "message": self.message,
            "isUser": self.is_user,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class ChatMessageRepository:
    """
    Durable store of ChatMessage records
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "chat_messages"

    def create(self, user_id: str, message: str, is_user: bool) -> ChatMessage:
        now = datetime.now(timezone.utc)
        chat_message = ChatMessage(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            message=message,
            is_user=is_user
        )
        self.storage.save(self.table_name, chat_message.id, chat_message.to_dict())
        return chat_message

    def find_by_user(self, user_id: str) -> List[ChatMessage]:
        """Conversation of a customer in creation order"""
        return self._find({"user_id": user_id})

    def find_all(self) -> List[ChatMessage]:
        return self._find({})

    def update_many_by_filter(self, filters: Dict[str, Any], changes: Dict[str, Any]) -> List[ChatMessage]:
        """
        Apply ``changes`` to every message matching ``filters``

        Returns the updated messages.
        """
        updated = []
        now = datetime.now(timezone.utc)
        for chat_message in self._find(filters):
            for name, value in changes.items():
                setattr(chat_message, name, value)
            chat_message.updated_at = now
            self.storage.save(self.table_name, chat_message.id, chat_message.to_dict())
            updated.append(chat_message)
        return updated

    def count(self, filters: Dict[str, Any]) -> int:
        return len(self.storage.find(self.table_name, filters))

    def _find(self, filters: Dict[str, Any]) -> List[ChatMessage]:
        messages = [self._message_from_dict(data) for data in self.storage.find(self.table_name, filters)]
        messages.sort(key=lambda m: m.created_at)
        return messages

    def _message_from_dict(self, data: Dict) -> ChatMessage:
        return ChatMessage(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            message=data['message'],
            is_user=bool(data['is_user']),
            is_read=bool(data.get('is_read', False))
        )


class ChatService:
    """
    Sends messages and drives the read-state of conversations

    Every write publishes a domain event once it is stored; realtime
    fan-out happens in the subscribers.
    """

    def __init__(self, storage: StorageInterface, accounts: AccountManager,
                 dispatcher: Optional[EventDispatcher] = None):
        self.storage = storage
        self.accounts = accounts
        self.messages = ChatMessageRepository(storage)
        self.dispatcher = dispatcher
        self.logger = get_logger("banking.chat")

    def send_as_customer(self, user_id: str, message: str) -> ChatMessage:
        """Append a customer-authored message to the customer's conversation"""
        text = self._clean(message)
        if not user_id:
            raise ValidationError("User ID is required")
        chat_message = self.messages.create(user_id, text, is_user=True)
        self._log_send(chat_message)
        self._publish(create_chat_event(DomainEvent.CHAT_MESSAGE_SENT, chat_message))
        return chat_message

    def send_as_admin(self, user_id: str, message: str) -> ChatMessage:
        """
        Append an admin reply to a customer's conversation

        Raises:
            ValidationError: Empty message
            NotFoundError: The customer does not exist
        """
        text = self._clean(message)
        self._require_customer(user_id)
        chat_message = self.messages.create(user_id, text, is_user=False)
        self._log_send(chat_message)
        self._publish(create_chat_event(DomainEvent.CHAT_MESSAGE_SENT, chat_message))
        return chat_message

    def mark_read_for_customer(self, user_id: str) -> int:
        """Mark admin-authored unread messages as read; returns how many changed"""
        return len(self._mark_read(user_id, admin_authored=True))

    def mark_read_for_admin(self, user_id: str) -> Dict[str, int]:
        """Mark customer-authored unread messages as read"""
        self._require_customer(user_id)
        modified = self._mark_read(user_id, admin_authored=False)
        remaining = self.messages.count({"user_id": user_id, "is_user": True, "is_read": False})
        return {"modifiedCount": len(modified), "remainingUnread": remaining}

    def open_conversation_as_customer(self, user_id: str) -> List[ChatMessage]:
        """Customer view of the conversation; admin replies become read"""
        self._mark_read(user_id, admin_authored=True)
        return self.messages.find_by_user(user_id)

    def open_conversation_as_admin(self, user_id: str) -> List[ChatMessage]:
        """Admin view of one conversation; customer messages become read"""
        self._require_customer(user_id)
        self._mark_read(user_id, admin_authored=False)
        return self.messages.find_by_user(user_id)

    def unread_counts(self, user_id: str) -> Dict[str, int]:
        """Unread messages of a conversation, split by author side"""
        return {
            "fromCustomer": self.messages.count({"user_id": user_id, "is_user": True, "is_read": False}),
            "fromAdmin": self.messages.count({"user_id": user_id, "is_user": False, "is_read": False}),
        }

    def list_conversations(self) -> List[Dict[str, Any]]:
        """
        Admin inbox: one entry per customer, most recent activity first
        """
        grouped: Dict[str, List[ChatMessage]] = {}
        for chat_message in self.messages.find_all():
            grouped.setdefault(chat_message.user_id, []).append(chat_message)

        conversations = []
        for user_id, messages in grouped.items():
            last = messages[-1]
            account = self.accounts.get_account(user_id)
            conversations.append({
                "userId": user_id,
                "userName": account.full_name if account else None,
                "userEmail": account.email if account else None,
                "lastMessage": last.message,
                "lastMessageAt": last.created_at.isoformat(),
                "unreadCount": sum(1 for m in messages if m.is_user and not m.is_read),
                "messages": [m.to_public_dict() for m in messages],
            })
        conversations.sort(key=lambda c: c["lastMessageAt"], reverse=True)
        return conversations

    def _mark_read(self, user_id: str, admin_authored: bool) -> List[ChatMessage]:
        modified = self.messages.update_many_by_filter(
            {"user_id": user_id, "is_user": not admin_authored, "is_read": False},
            {"is_read": True}
        )
        if modified:
            read_by_admin = not admin_authored
            log_action(
                self.logger, "info", "Messages marked read",
                user_id=user_id, action="mark_read", resource=f"conversation:{user_id}",
                extra={"count": len(modified), "read_by_admin": read_by_admin}
            )
            self._publish(create_read_event(user_id, [m.id for m in modified], read_by_admin))
        return modified

    def _require_customer(self, user_id: str) -> None:
        if not user_id or not self.accounts.get_account(user_id):
            raise NotFoundError(f"User {user_id} not found")

    def _clean(self, message: Optional[str]) -> str:
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message is required")
        return text

    def _log_send(self, chat_message: ChatMessage) -> None:
        log_action(
            self.logger, "info", "Chat message sent",
            user_id=chat_message.user_id, action="send_message",
            resource=f"chat_message:{chat_message.id}",
            extra={"is_user": chat_message.is_user}
        )

    def _publish(self, event) -> None:
        if self.dispatcher:
            self.dispatcher.publish(event)
