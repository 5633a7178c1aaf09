from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from lingoclass.models import TransactionType


class CreditGrantForm(BaseModel):
    user_id: int
    amount: int = Field(gt=0)
    transaction_type: TransactionType = TransactionType.ADMIN_ADJUSTMENT
    description: str
    metadata: Optional[dict[str, Any]] = None


class CreditSpendForm(BaseModel):
    amount: int = Field(gt=0)
    transaction_type: TransactionType
    description: str
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None


class PackageForm(BaseModel):
    name: str
    credits: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    bonus_credits: int = Field(default=0, ge=0)
    description: Optional[str] = None
    is_popular: bool = False
    sort_order: int = 0


class PackageUpdateForm(BaseModel):
    name: Optional[str] = None
    credits: Optional[int] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    bonus_credits: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None
    sort_order: Optional[int] = None


class PurchaseForm(BaseModel):
    package_id: int
    payment_reference: str = Field(min_length=1, max_length=128)
