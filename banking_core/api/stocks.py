"""
Stock trading endpoints
"""

from fastapi import APIRouter, Depends

from .auth import BankingSystem, CurrentUser, get_banking_system, get_current_user
from .schemas import BuyStockRequest, SellStockRequest


router = APIRouter()


@router.post("/buy")
async def buy_stock(
    request: BuyStockRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    result = system.ledger.buy_stock(
        user.user_id, request.stock_id, request.quantity,
        request.purchase_price, request.total_cost
    )
    return result.to_dict()


@router.post("/sell")
async def sell_stock(
    request: SellStockRequest,
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Sell shares from one of the caller's positions"""
    result = system.ledger.sell_stock(
        request.purchase_id, request.quantity, request.sale_price,
        request.total_value, user_id=user.user_id
    )
    return result.to_dict()


@router.get("/portfolio")
async def get_portfolio(
    user: CurrentUser = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    positions = system.ledger.get_portfolio(user.user_id)
    return {
        "success": True,
        "count": len(positions),
        "data": [p.to_public_dict() for p in positions]
    }
