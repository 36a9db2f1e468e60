"""
Stock Positions Module

Records of stock bought by a user. A position stays active while it holds
at least one share; selling the last share removes the record entirely.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .errors import NotFoundError, ValidationError, purchase_not_found


class PurchaseStatus(Enum):
    ACTIVE = "active"
    SOLD = "sold"


@dataclass
class StockPurchase(StorageRecord):
    """
    A user's holding from a single buy
    """
    user_id: str
    stock_id: str
    quantity: int
    purchase_price: Decimal
    total_cost: Decimal
    purchase_date: datetime
    status: PurchaseStatus = PurchaseStatus.ACTIVE

    def __post_init__(self):
        if not self.stock_id:
            raise ValidationError("Stock ID is required")
        self.stock_id = self.stock_id.strip().upper()
        if self.status == PurchaseStatus.ACTIVE and self.quantity < 1:
            raise ValidationError("Quantity must be at least 1")

    @property
    def is_active(self) -> bool:
        return self.status == PurchaseStatus.ACTIVE

    def to_public_dict(self) -> Dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "stockId": self.stock_id,
            "quantity": self.quantity,
            "purchasePrice": str(self.purchase_price),
            "totalCost": str(self.total_cost),
            "purchaseDate": self.purchase_date.isoformat(),
            "status": self.status.value,
        }


class StockPurchaseRepository:
    """
    Durable store of StockPurchase records
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "stock_purchases"

    def create(
        self,
        user_id: str,
        stock_id: str,
        quantity: int,
        purchase_price: Decimal,
        total_cost: Decimal
    ) -> StockPurchase:
        now = datetime.now(timezone.utc)
        purchase = StockPurchase(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            stock_id=stock_id,
            quantity=quantity,
            purchase_price=purchase_price,
            total_cost=total_cost,
            purchase_date=now
        )
        self._save_purchase(purchase)
        return purchase

    def find_by_id(self, purchase_id: str) -> Optional[StockPurchase]:
        data = self.storage.load(self.table_name, purchase_id)
        if data:
            return self._purchase_from_dict(data)
        return None

    def require_active(self, purchase_id: str) -> StockPurchase:
        """Get an active purchase or raise NotFoundError"""
        purchase = self.find_by_id(purchase_id)
        if not purchase or not purchase.is_active:
            raise NotFoundError(purchase_not_found(purchase_id))
        return purchase

    def update(self, purchase: StockPurchase) -> StockPurchase:
        purchase.updated_at = datetime.now(timezone.utc)
        self._save_purchase(purchase)
        return purchase

    def delete(self, purchase_id: str) -> bool:
        return self.storage.delete(self.table_name, purchase_id)

    def find_by_user(self, user_id: str, active_only: bool = True) -> List[StockPurchase]:
        """Positions of a user, ordered by stock symbol"""
        filters = {"user_id": user_id}
        if active_only:
            filters["status"] = PurchaseStatus.ACTIVE.value
        purchases = [self._purchase_from_dict(data) for data in self.storage.find(self.table_name, filters)]
        purchases.sort(key=lambda p: (p.stock_id, p.created_at))
        return purchases

    def _save_purchase(self, purchase: StockPurchase) -> None:
        result = purchase.to_dict()
        result['purchase_date'] = purchase.purchase_date.isoformat()
        result['status'] = purchase.status.value
        self.storage.save(self.table_name, purchase.id, result)

    def _purchase_from_dict(self, data: Dict) -> StockPurchase:
        return StockPurchase(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            stock_id=data['stock_id'],
            quantity=int(data['quantity']),
            purchase_price=Decimal(data['purchase_price']),
            total_cost=Decimal(data['total_cost']),
            purchase_date=datetime.fromisoformat(data['purchase_date']),
            status=PurchaseStatus(data['status'])
        )
