"""
WebSocket endpoints for chat and notifications

Clients authenticate with ``?token=<jwt>`` and exchange JSON frames shaped
``{"event": str, "data": object}``. A customer socket joins its
``user_{id}`` room and an admin socket joins the admin room as soon as it
is accepted.
"""

import asyncio
import json
from contextlib import suppress
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from .auth import BankingSystem, CurrentUser, authenticate_token
from ..errors import BankingError
from ..logging_config import get_logger
from ..realtime import Channel


router = APIRouter()
logger = get_logger("banking.api.realtime")


@router.websocket("/ws/chat/user")
async def chat_user_socket(websocket: WebSocket, token: Optional[str] = None):
    await _serve(websocket, token, Channel.CHAT, admin=False)


@router.websocket("/ws/chat/admin")
async def chat_admin_socket(websocket: WebSocket, token: Optional[str] = None):
    await _serve(websocket, token, Channel.CHAT, admin=True)


@router.websocket("/ws/notifications/user")
async def notifications_user_socket(websocket: WebSocket, token: Optional[str] = None):
    await _serve(websocket, token, Channel.NOTIFICATIONS, admin=False)


@router.websocket("/ws/notifications/admin")
async def notifications_admin_socket(websocket: WebSocket, token: Optional[str] = None):
    await _serve(websocket, token, Channel.NOTIFICATIONS, admin=True)


async def _serve(websocket: WebSocket, token: Optional[str], channel: Channel, admin: bool) -> None:
    system: BankingSystem = websocket.app.state.system
    try:
        user = authenticate_token(token, system.config)
    except HTTPException as e:
        logger.info(f"Rejected {channel.value} socket: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if admin and not user.is_admin:
        logger.info(f"Rejected {channel.value} admin socket for {user.user_id}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()
    loop = asyncio.get_running_loop()

    def deliver(event: str, payload: Dict[str, Any]) -> None:
        # Emits may come from another thread's event loop
        loop.call_soon_threadsafe(outbox.put_nowait, {"event": event, "data": payload})

    session = system.hub.connect(channel, deliver)
    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        if admin:
            system.hub.join_admin(session.id)
            room = system.hub.admin_room
        else:
            system.hub.join_user(session.id, user.user_id, profile=_profile(system, user))
            room = system.hub.user_room(user.user_id)
        outbox.put_nowait({"event": "joined", "data": {"room": room, "channel": channel.value}})

        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                outbox.put_nowait(_error("Frames must be JSON"))
                continue
            reply = _dispatch(system, session.id, channel, user, frame)
            if reply:
                outbox.put_nowait(reply)
    except WebSocketDisconnect:
        pass
    finally:
        system.hub.disconnect(session.id)
        sender.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await sender


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


def _dispatch(system: BankingSystem, session_id: str, channel: Channel,
              user: CurrentUser, frame: Any) -> Optional[Dict[str, Any]]:
    """Handle one inbound frame; returns an error frame to send back, if any"""
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return _error("Frames must look like {\"event\": str, \"data\": object}")
    event = frame["event"]
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        return _error("Event data must be an object")

    try:
        if channel == Channel.CHAT and event == "message":
            if user.is_admin and system.hub.get_session(session_id).is_admin:
                system.chat.send_as_admin(data.get("userId"), data.get("message"))
            else:
                system.chat.send_as_customer(user.user_id, data.get("message"))
            return None
        if system.hub.handle_client_event(session_id, event, data):
            return None
    except BankingError as e:
        return _error(str(e))
    return _error(f"Unsupported event: {event}")


def _profile(system: BankingSystem, user: CurrentUser) -> Optional[Dict[str, Any]]:
    account = system.accounts.get_account(user.user_id)
    if not account:
        return None
    return {"fullName": account.full_name, "email": account.email}


def _error(message: str) -> Dict[str, Any]:
    return {"event": "error", "data": {"error": message}}
