"""
Account endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, CurrentUser, get_banking_system, get_current_user, require_admin
from .schemas import CreateAccountRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    admin: CurrentUser = Depends(require_admin),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a zero-balance account for a newly registered user"""
    account = system.accounts.create_account(
        request.user_id,
        full_name=request.full_name,
        email=request.email,
        account_number=request.account_number
    )
    return {"success": True, "data": _account_view(account)}


@router.get("/me")
async def get_my_account(
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Balances of the caller's account"""
    account = system.accounts.require_account(user.user_id)
    return {"success": True, "data": _account_view(account)}


def _account_view(account):
    return {
        "userId": account.id,
        "fullName": account.full_name,
        "email": account.email,
        "accountNumber": account.account_number,
        "availableBalance": str(account.available_balance),
        "currentBalance": str(account.current_balance),
        "balance": str(account.balance),
    }
