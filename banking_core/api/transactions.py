"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .auth import BankingSystem, CurrentUser, get_banking_system, get_current_user, require_admin
from .schemas import (
    AdminCreateTransactionRequest, FundWalletRequest, SendMoneyRequest,
    UpdateTransactionRequest, WithdrawRequest
)
from ..errors import AuthorizationError


router = APIRouter()


@router.get("/user")
async def get_user_transactions(
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the caller's transactions, newest first"""
    transactions = system.ledger.get_user_transactions(user.user_id)
    return {
        "success": True,
        "count": len(transactions),
        "data": [t.to_public_dict() for t in transactions]
    }


@router.post("/fund")
async def fund_wallet(
    request: FundWalletRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Fund the caller's wallet"""
    result = system.ledger.fund_wallet(
        user.user_id, request.amount, subtype=request.subtype, metadata=request.to_metadata()
    )
    return result.to_dict()


@router.post("/withdraw")
async def withdraw(
    request: WithdrawRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Request a withdrawal"""
    result = system.ledger.withdraw(
        user.user_id, request.amount, subtype=request.subtype, metadata=request.to_metadata()
    )
    return result.to_dict()


@router.post("/send")
async def send_money(
    request: SendMoneyRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Send money to a member or an external destination"""
    result = system.ledger.send_money(
        user.user_id, request.amount, request.subtype, metadata=request.to_metadata()
    )
    return result.to_dict()


# Admin endpoints

@router.get("/admin/get-all-transactions")
async def get_all_transactions(
    user_id: Optional[str] = Query(None, alias="userId"),
    status: Optional[str] = None,
    transaction_type: Optional[str] = Query(None, alias="type"),
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """List all transactions with optional filters"""
    transactions = system.ledger.list_transactions(
        user_id=user_id, status=status, transaction_type=transaction_type
    )
    return {
        "success": True,
        "count": len(transactions),
        "data": [t.to_public_dict() for t in transactions]
    }


@router.get("/admin/get-transaction-by-id/{transaction_id}")
async def admin_get_transaction(
    transaction_id: str,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    transaction = system.ledger.get_transaction(transaction_id)
    return {"success": True, "data": transaction.to_public_dict()}


@router.post("/admin/create-transaction")
async def admin_create_transaction(
    request: AdminCreateTransactionRequest,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Issue a transaction on behalf of a user"""
    result = system.ledger.create_admin_transaction(
        user_id=request.user_id,
        transaction_type=request.type,
        subtype=request.subtype,
        action=request.action,
        amount=request.amount,
        status=request.status,
        data=request.data
    )
    return result.to_dict()


@router.put("/admin/update-transaction-by-id/{transaction_id}")
async def admin_update_transaction(
    transaction_id: str,
    request: UpdateTransactionRequest,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Settle or correct a transaction"""
    result = system.ledger.update_transaction(
        transaction_id,
        status=request.status,
        amount=request.amount,
        transaction_type=request.type,
        action=request.action,
        subtype=request.subtype,
        data=request.data
    )
    return result.to_dict()


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get one transaction; owners and admins only"""
    transaction = system.ledger.get_transaction(transaction_id)
    if transaction.user_id != user.user_id and not user.is_admin:
        raise AuthorizationError("Not authorized to view this transaction")
    return {"success": True, "data": transaction.to_public_dict()}
