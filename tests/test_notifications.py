"""
Tests for the event dispatcher and the notification fan-out
"""

from decimal import Decimal

import pytest

from banking_core.accounts import AccountManager
from banking_core.balance_effects import BalanceEffect
from banking_core.chat import ChatService
from banking_core.events import DomainEvent, EventDispatcher, EventPayload
from banking_core.ledger import LedgerEngine
from banking_core.notifications import NotificationPublisher, NotificationType, format_notification
from banking_core.realtime import Channel, RealtimeHub
from banking_core.storage import InMemoryStorage


class TestEventDispatcher:

    def setup_method(self):
        self.dispatcher = EventDispatcher()

    def make_event(self, event_type=DomainEvent.TRANSACTION_CREATED):
        return EventPayload(event_type=event_type, entity_type="transaction",
                            entity_id="t1", data={"amount": "10"})

    def test_subscribers_only_get_their_event_type(self):
        created, updated = [], []
        self.dispatcher.subscribe(DomainEvent.TRANSACTION_CREATED, created.append)
        self.dispatcher.subscribe(DomainEvent.TRANSACTION_UPDATED, updated.append)

        self.dispatcher.publish(self.make_event())

        assert len(created) == 1
        assert updated == []

    def test_failing_handler_does_not_stop_others(self):
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        self.dispatcher.subscribe(DomainEvent.TRANSACTION_CREATED, broken)
        self.dispatcher.subscribe(DomainEvent.TRANSACTION_CREATED, received.append)

        self.dispatcher.publish(self.make_event())

        assert len(received) == 1

    def test_global_subscribers_see_everything(self):
        received = []
        self.dispatcher.subscribe_all(received.append)

        self.dispatcher.publish(self.make_event())
        self.dispatcher.publish(self.make_event(DomainEvent.CHAT_MESSAGE_SENT))

        assert [e.event_type for e in received] == [
            DomainEvent.TRANSACTION_CREATED, DomainEvent.CHAT_MESSAGE_SENT
        ]

    def test_clear_removes_all_handlers(self):
        received = []
        self.dispatcher.subscribe(DomainEvent.TRANSACTION_CREATED, received.append)
        self.dispatcher.subscribe_all(received.append)

        self.dispatcher.clear()
        self.dispatcher.publish(self.make_event())

        assert received == []

    def test_payload_serialization(self):
        data = self.make_event().to_dict()

        assert data["event_type"] == "transaction.created"
        assert data["entity_id"] == "t1"
        assert "timestamp" in data and "event_id" in data


class TestFormatNotification:

    @pytest.mark.parametrize("action,content", [("credit", "Credit Alert"), ("debit", "Debit Alert")])
    def test_transaction_alerts(self, action, content):
        notification = format_notification(NotificationType.TRANSACTION, action, {"amount": "5"})

        assert notification == {"type": "transaction", "content": content, "data": {"amount": "5"}}

    def test_chat_from_customer_names_sender(self):
        notification = format_notification(NotificationType.CHAT, "customer", {}, sender_name="Ada")
        assert notification["content"] == "New message from Ada"

    def test_chat_from_admin(self):
        assert format_notification(NotificationType.CHAT, "admin", {})["content"] == "New message from admin"

    def test_unknown_pair(self):
        with pytest.raises(KeyError):
            format_notification(NotificationType.CHAT, "robot", {})


class Inbox:

    def __init__(self):
        self.frames = []

    def __call__(self, event, payload):
        self.frames.append((event, payload))


class TestNotificationPublisher:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.accounts = AccountManager(self.storage)
        self.dispatcher = EventDispatcher()
        self.hub = RealtimeHub()
        NotificationPublisher(self.hub, self.accounts).register(self.dispatcher)
        self.ledger = LedgerEngine(self.storage, self.accounts, self.dispatcher)
        self.chat = ChatService(self.storage, self.accounts, self.dispatcher)

        self.accounts.create_account("alice", full_name="Alice Doe")
        self.accounts.create_account("bob", full_name="Bob Roe")

    def listen(self, channel, user_id=None):
        inbox = Inbox()
        session = self.hub.connect(channel, inbox)
        if user_id:
            self.hub.join_user(session.id, user_id)
        else:
            self.hub.join_admin(session.id)
        return inbox

    def test_transaction_notification_goes_to_owner_only(self):
        alice = self.listen(Channel.NOTIFICATIONS, "alice")
        bob = self.listen(Channel.NOTIFICATIONS, "bob")

        result = self.ledger.fund_wallet("alice", "25")

        [(event, payload)] = alice.frames
        assert event == "notification"
        assert payload["type"] == "transaction"
        assert payload["content"] == "Credit Alert"
        assert payload["data"]["transactionId"] == result.transaction.id
        assert payload["data"]["amount"] == "25"
        assert payload["data"]["event"] == "create"
        assert bob.frames == []

    def test_member_transfer_notifies_both_sides(self):
        self.accounts.adjust_balances("alice", BalanceEffect(Decimal("100"), Decimal("100")))
        alice = self.listen(Channel.NOTIFICATIONS, "alice")
        bob = self.listen(Channel.NOTIFICATIONS, "bob")

        self.ledger.send_money("alice", "10", "member", {"recipientId": "bob"})

        assert alice.frames[0][1]["content"] == "Debit Alert"
        assert bob.frames[0][1]["content"] == "Credit Alert"

    def test_settlement_notifies_update(self):
        result = self.ledger.fund_wallet("alice", "25")
        alice = self.listen(Channel.NOTIFICATIONS, "alice")

        self.ledger.update_transaction(result.transaction.id, status="success")

        payload = alice.frames[0][1]
        assert payload["data"]["status"] == "success"
        assert payload["data"]["event"] == "update"

    def test_customer_message_reaches_admin_rooms(self):
        admin_chat = self.listen(Channel.CHAT)
        admin_notes = self.listen(Channel.NOTIFICATIONS)
        alice_chat = self.listen(Channel.CHAT, "alice")
        admin_chat.frames.clear()  # drop the presence announcement

        message = self.chat.send_as_customer("alice", "Help please")

        [(event, payload)] = admin_chat.frames
        assert event == "new_message"
        assert payload["userId"] == "alice"
        assert payload["message"]["id"] == message.id
        [(_, notification)] = admin_notes.frames
        assert notification["content"] == "New message from Alice"
        assert notification["data"]["senderName"] == "Alice Doe"
        assert alice_chat.frames == []

    def test_admin_reply_reaches_customer_rooms(self):
        alice_chat = self.listen(Channel.CHAT, "alice")
        alice_notes = self.listen(Channel.NOTIFICATIONS, "alice")
        bob_chat = self.listen(Channel.CHAT, "bob")

        self.chat.send_as_admin("alice", "On it")

        assert [event for event, _ in alice_chat.frames] == ["new_message"]
        assert alice_notes.frames[0][1]["content"] == "New message from admin"
        assert bob_chat.frames == []

    def test_admin_opening_conversation_sends_read_receipt(self):
        message = self.chat.send_as_customer("alice", "ping")
        alice_chat = self.listen(Channel.CHAT, "alice")

        self.chat.open_conversation_as_admin("alice")

        assert alice_chat.frames == [("admin_read_messages", {"messageIds": [message.id]})]
