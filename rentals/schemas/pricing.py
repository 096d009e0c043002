from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rentals.models import PricingScope

FEE_CATEGORIES = (
    "service_fee",
    "tax",
    "cleaning_fee",
    "pet_fee_per_night",
    "pet_deposit_per_pet",
)


class FeeMode(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# Входные блоки: все поля опциональны, в базу пишется только то, что прислали
class ModeFeeIn(BaseModel):
    mode: Optional[FeeMode] = None
    value: Optional[Decimal] = Field(default=None, ge=0)
    is_free: Optional[bool] = None


class AmountFeeIn(BaseModel):
    value: Optional[Decimal] = Field(default=None, ge=0)
    is_free: Optional[bool] = None


class PricingConfigIn(BaseModel):
    enabled: Optional[bool] = None
    service_fee: Optional[ModeFeeIn] = None
    tax: Optional[ModeFeeIn] = None
    cleaning_fee: Optional[AmountFeeIn] = None
    pet_fee_per_night: Optional[AmountFeeIn] = None
    pet_deposit_per_pet: Optional[AmountFeeIn] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class PricingConfigOut(BaseModel):
    id: int
    scope: PricingScope
    host_id: Optional[int] = None
    listing_id: Optional[int] = None
    enabled: Optional[bool] = None
    service_fee: Optional[dict] = None
    tax: Optional[dict] = None
    cleaning_fee: Optional[dict] = None
    pet_fee_per_night: Optional[dict] = None
    pet_deposit_per_pet: Optional[dict] = None
    notes: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Итоговые (смерженные) значения
class ModeFee(BaseModel):
    mode: FeeMode = FeeMode.PERCENTAGE
    value: Decimal = Decimal("0")
    is_free: bool = False


class AmountFee(BaseModel):
    value: Decimal = Decimal("0")
    is_free: bool = False


class EffectiveConfig(BaseModel):
    enabled: bool = True
    service_fee: ModeFee = ModeFee()
    tax: ModeFee = ModeFee()
    cleaning_fee: AmountFee = AmountFee()
    pet_fee_per_night: AmountFee = AmountFee()
    pet_deposit_per_pet: AmountFee = AmountFee()
    # Categories set explicitly at some scope
    configured: List[str] = []
