"""
Realtime Hub Module

In-process fan-out of chat and notification events to connected sessions.

Two independent channel groups (chat, notifications) each have one room per
customer (``user_{id}``) and a single admin room. A session joins exactly
one identity. Delivery is best-effort and at-most-once: events aimed at an
empty room are dropped, and a session whose delivery callable fails is
skipped. Presence is process-local and resets on restart.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import threading
import time
import uuid

from .errors import NotFoundError, ValidationError
from .logging_config import get_logger, log_action


class Channel(Enum):
    """Channel groups a session can connect to"""
    CHAT = "chat"
    NOTIFICATIONS = "notifications"


ADMIN_IDENTITY = "admin"

Deliver = Callable[[str, Dict[str, Any]], None]


@dataclass
class Session:
    """One live connection"""
    id: str
    channel: Channel
    deliver: Deliver
    identity: Optional[str] = None  # user id, or ADMIN_IDENTITY
    rooms: Set[str] = field(default_factory=set)

    @property
    def is_admin(self) -> bool:
        return self.identity == ADMIN_IDENTITY


class TypingTracker:
    """
    Typing flags that expire a fixed time after the last typing signal

    An explicit stop clears the flag early.
    """

    def __init__(self, expiry_seconds: float = 3.0, clock: Callable[[], float] = time.monotonic):
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._last_signal: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def signal(self, side: str, user_id: str, is_typing: bool) -> None:
        with self._lock:
            key = (side, user_id)
            if is_typing:
                self._last_signal[key] = self._clock()
            else:
                self._last_signal.pop(key, None)

    def is_typing(self, side: str, user_id: str) -> bool:
        with self._lock:
            key = (side, user_id)
            started = self._last_signal.get(key)
            if started is None:
                return False
            if self._clock() - started >= self.expiry_seconds:
                del self._last_signal[key]
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._last_signal.clear()


class RealtimeHub:
    """
    Rooms, sessions and presence for both channel groups

    Created once at process start and handed to whatever needs to emit.
    """

    CUSTOMER_SIDE = "customer"
    ADMIN_SIDE = "admin"

    def __init__(self, admin_room: str = "admin", typing_expiry_seconds: float = 3.0,
                 clock: Callable[[], float] = time.monotonic):
        self.admin_room = admin_room
        self.typing = TypingTracker(typing_expiry_seconds, clock)
        self._sessions: Dict[str, Session] = {}
        self._rooms: Dict[Channel, Dict[str, Set[str]]] = {channel: {} for channel in Channel}
        self._presence: Dict[Channel, Dict[str, str]] = {channel: {} for channel in Channel}
        self._lock = threading.RLock()
        self.logger = get_logger("banking.realtime")

    @staticmethod
    def user_room(user_id: str) -> str:
        return f"user_{user_id}"

    # Session lifecycle

    def connect(self, channel: Channel, deliver: Deliver,
                session_id: Optional[str] = None) -> Session:
        """Register a new connection"""
        session = Session(id=session_id or str(uuid.uuid4()), channel=channel, deliver=deliver)
        with self._lock:
            if session.id in self._sessions:
                raise ValidationError(f"Session {session.id} already connected")
            self._sessions[session.id] = session
        self.logger.debug(f"Session {session.id} connected to {channel.value}")
        return session

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not connected")
        return session

    def join_room(self, session_id: str, room_key: str) -> None:
        with self._lock:
            session = self.get_session(session_id)
            self._rooms[session.channel].setdefault(room_key, set()).add(session_id)
            session.rooms.add(room_key)

    def leave_room(self, session_id: str, room_key: str) -> None:
        with self._lock:
            session = self.get_session(session_id)
            self._remove_from_room(session, room_key)

    def join_user(self, session_id: str, user_id: str,
                  profile: Optional[Dict[str, Any]] = None) -> None:
        """
        Bind a session to a customer identity and its ``user_{id}`` room

        On the chat channel the admin room is told the user is online.
        """
        if not user_id:
            raise ValidationError("User ID is required to join")
        with self._lock:
            session = self.get_session(session_id)
            self._drop_identity(session)
            session.identity = user_id
            self.join_room(session_id, self.user_room(user_id))
            self._presence[session.channel][user_id] = session_id
            channel = session.channel

        log_action(
            self.logger, "info", "Session joined user room",
            user_id=user_id, action="join", resource=f"session:{session_id}",
            extra={"channel": channel.value}
        )
        if channel == Channel.CHAT:
            self.emit_to_admin("user_status", {"userId": user_id, "status": "online"}, channel=channel)
            if profile:
                self.emit_to_admin("user_joined", {"userId": user_id, "user": profile}, channel=channel)

    def join_admin(self, session_id: str) -> None:
        """Bind a session to the admin identity and the admin room"""
        with self._lock:
            session = self.get_session(session_id)
            self._drop_identity(session)
            session.identity = ADMIN_IDENTITY
            self.join_room(session_id, self.admin_room)
        self.logger.debug(f"Session {session_id} joined {self.admin_room}")

    def disconnect(self, session_id: str) -> None:
        """
        Forget a session; if it carried a user's presence, tell the admin room
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if not session:
                return
            for room_key in list(session.rooms):
                self._remove_from_room(session, room_key)
            departed_user = None
            presence = self._presence[session.channel]
            for user_id, present_session in list(presence.items()):
                if present_session == session_id:
                    del presence[user_id]
                    departed_user = user_id
                    break

        self.logger.debug(f"Session {session_id} disconnected from {session.channel.value}")
        if departed_user and session.channel == Channel.CHAT:
            self.typing.signal(self.CUSTOMER_SIDE, departed_user, False)
            self.emit_to_admin("user_status", {"userId": departed_user, "status": "offline"},
                               channel=session.channel)

    def close(self) -> None:
        """Drop every session and all presence; used at shutdown"""
        with self._lock:
            self._sessions.clear()
            for channel in Channel:
                self._rooms[channel].clear()
                self._presence[channel].clear()
        self.typing.clear()
        self.logger.info("Realtime hub closed")

    # Presence

    def is_online(self, user_id: str, channel: Optional[Channel] = None) -> bool:
        with self._lock:
            if channel:
                return user_id in self._presence[channel]
            return any(user_id in presence for presence in self._presence.values())

    def online_users(self, channel: Channel = Channel.CHAT) -> List[str]:
        with self._lock:
            return sorted(self._presence[channel])

    def room_members(self, room_key: str, channel: Channel) -> Set[str]:
        with self._lock:
            return set(self._rooms[channel].get(room_key, set()))

    # Emission

    def emit_to_room(self, room_key: str, event: str, payload: Dict[str, Any],
                     channel: Channel = Channel.CHAT,
                     exclude: Optional[str] = None) -> int:
        """
        Deliver an event to every session in a room

        Returns the number of sessions the event was handed to.
        """
        with self._lock:
            targets = [
                self._sessions[sid]
                for sid in self._rooms[channel].get(room_key, ())
                if sid != exclude and sid in self._sessions
            ]

        delivered = 0
        for session in targets:
            try:
                session.deliver(event, payload)
                delivered += 1
            except Exception:
                self.logger.warning(
                    f"Dropping {event} for session {session.id}", exc_info=True
                )
        if not targets:
            self.logger.debug(f"No sessions in {channel.value}:{room_key}, {event} dropped")
        return delivered

    def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any],
                     channel: Channel = Channel.CHAT) -> int:
        return self.emit_to_room(self.user_room(user_id), event, payload, channel=channel)

    def emit_to_admin(self, event: str, payload: Dict[str, Any],
                      channel: Channel = Channel.CHAT) -> int:
        return self.emit_to_room(self.admin_room, event, payload, channel=channel)

    # Inbound client events

    def handle_client_event(self, session_id: str, event: str, data: Optional[Dict[str, Any]]) -> bool:
        """
        Route a relay event sent by a client

        Returns False for events the hub does not relay.
        """
        session = self.get_session(session_id)
        data = data or {}
        if session.channel != Channel.CHAT:
            return False

        if session.is_admin:
            return self._handle_admin_event(event, data)
        if session.identity is None:
            raise ValidationError("Join a room before sending events")
        return self._handle_customer_event(session.identity, event, data)

    def is_typing(self, user_id: str, by_admin: bool = False) -> bool:
        side = self.ADMIN_SIDE if by_admin else self.CUSTOMER_SIDE
        return self.typing.is_typing(side, user_id)

    def _handle_customer_event(self, user_id: str, event: str, data: Dict[str, Any]) -> bool:
        if event == "typing":
            is_typing = bool(data.get("isTyping"))
            self.typing.signal(self.CUSTOMER_SIDE, user_id, is_typing)
            self.emit_to_admin("user_typing" if is_typing else "user_stopped_typing",
                               {"userId": user_id})
            return True
        if event == "mark_read":
            self.emit_to_admin("messages_read", {
                "userId": user_id,
                "messageIds": list(data.get("messageIds") or [])
            })
            return True
        return False

    def _handle_admin_event(self, event: str, data: Dict[str, Any]) -> bool:
        user_id = data.get("userId")
        if event not in ("admin_typing", "admin_mark_read"):
            return False
        if not user_id:
            raise ValidationError(f"{event} requires userId")

        if event == "admin_typing":
            is_typing = bool(data.get("isTyping"))
            self.typing.signal(self.ADMIN_SIDE, user_id, is_typing)
            self.emit_to_user(user_id, "admin_typing" if is_typing else "admin_stopped_typing",
                              {"userId": user_id})
        else:
            self.emit_to_user(user_id, "admin_read_messages", {
                "messageIds": list(data.get("messageIds") or [])
            })
        return True

    # Internals

    def _remove_from_room(self, session: Session, room_key: str) -> None:
        members = self._rooms[session.channel].get(room_key)
        if members is not None:
            members.discard(session.id)
            if not members:
                del self._rooms[session.channel][room_key]
        session.rooms.discard(room_key)

    def _drop_identity(self, session: Session) -> None:
        """Leave the room of a previously joined identity"""
        if session.identity is None:
            return
        if session.is_admin:
            self._remove_from_room(session, self.admin_room)
        else:
            self._remove_from_room(session, self.user_room(session.identity))
            presence = self._presence[session.channel]
            if presence.get(session.identity) == session.id:
                del presence[session.identity]
        session.identity = None
