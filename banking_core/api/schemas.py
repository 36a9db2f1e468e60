"""
Pydantic schemas for API requests

Amounts are accepted as strings or numbers and validated by the ledger, so
a bad amount answers with the same error shape as any other rule violation.
"""

from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


AmountField = Union[str, int, float]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Account schemas
class CreateAccountRequest(CamelModel):
    user_id: str = Field(..., alias="userId")
    full_name: Optional[str] = Field(None, alias="fullName")
    email: Optional[str] = None
    account_number: Optional[str] = Field(None, alias="accountNumber")


# Transaction schemas
class WalletRequest(CamelModel):
    """Extra top-level fields (bankName, reference, ...) travel as metadata"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    amount: AmountField
    subtype: str = "bank-transfer"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_metadata(self) -> Dict[str, Any]:
        return {**(self.model_extra or {}), **self.metadata}


class FundWalletRequest(WalletRequest):
    pass


class WithdrawRequest(WalletRequest):
    pass


class SendMoneyRequest(CamelModel):
    amount: AmountField
    subtype: str = "member"
    recipient_id: Optional[str] = Field(None, alias="recipientId")
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_metadata(self) -> Dict[str, Any]:
        metadata = dict(self.metadata)
        if self.recipient_id:
            metadata["recipientId"] = self.recipient_id
        if self.description:
            metadata["description"] = self.description
        return metadata


class AdminCreateTransactionRequest(CamelModel):
    user_id: str = Field(..., alias="userId")
    type: str
    subtype: str
    action: str
    amount: AmountField
    status: str = "pending"
    data: Dict[str, Any] = Field(default_factory=dict)


class UpdateTransactionRequest(CamelModel):
    status: Optional[str] = None
    amount: Optional[AmountField] = None
    type: Optional[str] = None
    action: Optional[str] = None
    subtype: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


# Stock schemas
class BuyStockRequest(CamelModel):
    stock_id: str = Field(..., alias="stockId")
    quantity: int
    purchase_price: AmountField = Field(..., alias="purchasePrice")
    total_cost: AmountField = Field(..., alias="totalCost")


class SellStockRequest(CamelModel):
    purchase_id: str = Field(..., alias="purchaseId")
    quantity: int
    sale_price: AmountField = Field(..., alias="salePrice")
    total_value: AmountField = Field(..., alias="totalValue")


# Chat schemas
class SendMessageRequest(CamelModel):
    message: str


class AdminSendMessageRequest(CamelModel):
    user_id: str = Field(..., alias="userId")
    message: str
