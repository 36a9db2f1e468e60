"""
Chat endpoints
"""

from fastapi import APIRouter, Depends

from .auth import BankingSystem, CurrentUser, get_banking_system, get_current_user, require_admin
from .schemas import AdminSendMessageRequest, SendMessageRequest


router = APIRouter()


@router.get("/messages")
async def get_my_messages(
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open the caller's conversation; admin replies become read"""
    messages = system.chat.open_conversation_as_customer(user.user_id)
    return {
        "success": True,
        "count": len(messages),
        "data": [m.to_public_dict() for m in messages]
    }


@router.post("/messages")
async def send_message(
    request: SendMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    message = system.chat.send_as_customer(user.user_id, request.message)
    return {"success": True, "data": message.to_public_dict()}


@router.put("/messages/read")
async def mark_my_messages_read(
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    modified = system.chat.mark_read_for_customer(user.user_id)
    return {"success": True, "data": {"modifiedCount": modified}}


# Admin endpoints

@router.get("/admin/messages")
async def list_conversations(
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Admin inbox grouped by customer, most recent activity first"""
    conversations = system.chat.list_conversations()
    return {"success": True, "count": len(conversations), "data": conversations}


@router.get("/admin/messages/{user_id}")
async def get_conversation(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open one customer's conversation; customer messages become read"""
    messages = system.chat.open_conversation_as_admin(user_id)
    return {
        "success": True,
        "count": len(messages),
        "data": [m.to_public_dict() for m in messages]
    }


@router.post("/admin/messages")
async def send_admin_message(
    request: AdminSendMessageRequest,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    message = system.chat.send_as_admin(request.user_id, request.message)
    return {"success": True, "data": message.to_public_dict()}


@router.put("/admin/messages/{user_id}/read")
async def mark_conversation_read(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    result = system.chat.mark_read_for_admin(user_id)
    return {"success": True, "data": result}
