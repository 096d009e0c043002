from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rentals.models import CancellationPolicy, PetType


class ListingBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(gt=0)
    min_guests: int = Field(default=1, ge=1)
    max_guests: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True
    instant_book: bool = False
    cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE
    pets_allowed: bool = False
    allowed_pet_types: List[PetType] = []
    max_pets: Optional[int] = Field(default=None, ge=0)
    pet_fee: Decimal = Field(default=Decimal("0"), ge=0)
    pet_deposit: Decimal = Field(default=Decimal("0"), ge=0)


class ListingCreate(ListingBase):
    pass


class ListingUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(default=None, gt=0)
    min_guests: Optional[int] = Field(default=None, ge=1)
    max_guests: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    instant_book: Optional[bool] = None
    cancellation_policy: Optional[CancellationPolicy] = None
    pets_allowed: Optional[bool] = None
    allowed_pet_types: Optional[List[PetType]] = None
    max_pets: Optional[int] = Field(default=None, ge=0)
    pet_fee: Optional[Decimal] = Field(default=None, ge=0)
    pet_deposit: Optional[Decimal] = Field(default=None, ge=0)


class AvailabilityPeriodIn(BaseModel):
    start_date: date
    end_date: date
    is_available: bool = True
    special_price: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class AvailabilityPeriodUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_available: Optional[bool] = None
    special_price: Optional[Decimal] = Field(default=None, ge=0)


class AvailabilityPeriodOut(BaseModel):
    id: int
    start_date: date
    end_date: date
    is_available: bool
    special_price: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


class ListingOut(ListingBase):
    id: int
    host_id: int
    created_at: datetime
    updated_at: datetime
    availability: List[AvailabilityPeriodOut] = []

    model_config = ConfigDict(from_attributes=True)
