from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from rentals.models import (
    BookingStatus,
    BookingType,
    PaymentMethod,
    PaymentStatus,
    PetType,
)

PAYMENT_METHOD_ALIASES = {
    "credit_card": PaymentMethod.CREDIT_CARD,
    "credit": PaymentMethod.CREDIT_CARD,
    "card": PaymentMethod.CREDIT_CARD,
    "stripe": PaymentMethod.CREDIT_CARD,
    "stripe_card": PaymentMethod.CREDIT_CARD,
    "visa": PaymentMethod.CREDIT_CARD,
    "mastercard": PaymentMethod.CREDIT_CARD,
    "debit_card": PaymentMethod.DEBIT_CARD,
    "debit": PaymentMethod.DEBIT_CARD,
    "paypal": PaymentMethod.PAYPAL,
    "bank": PaymentMethod.BANK_TRANSFER,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "wire": PaymentMethod.BANK_TRANSFER,
}


def normalize_pet_type(raw: Any) -> PetType:
    """'Dogs', 'dog (small)' -> dog; всё нераспознанное -> other"""
    value = str(raw or "").lower()
    for pet_type in PetType:
        if pet_type != PetType.OTHER and value.startswith(pet_type.value):
            return pet_type
    return PetType.OTHER


def normalize_payment_method(raw: Any) -> PaymentMethod:
    if isinstance(raw, dict):
        raw = raw.get("method")
    if not raw:
        return PaymentMethod.CREDIT_CARD
    return PAYMENT_METHOD_ALIASES.get(str(raw).strip().lower(), PaymentMethod.CREDIT_CARD)


class PetDetail(BaseModel):
    type: PetType = PetType.OTHER
    name: Optional[str] = None
    breed: Optional[str] = None
    weight: Optional[float] = None
    age: Optional[float] = None
    vaccinated: bool = False
    notes: Optional[str] = None


class BookingDraft(BaseModel):
    """
    Каноническая заявка на бронирование.

    Принимает устаревшие варианты полей (checkInDate, pets[], guests,
    payment.method и т.д.) и приводит их к одному виду до валидации,
    чтобы движок бронирований видел только эту форму.
    """

    listing_id: int
    check_in: date
    check_out: date
    adults: int = Field(default=1, ge=1)
    children: int = Field(default=0, ge=0)
    infants: int = Field(default=0, ge=0)
    pets: List[PetDetail] = []
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    guest_message: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="before")
    @classmethod
    def fold_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        listing_id = pick("listing_id", "listingId", "listing")
        if listing_id is not None:
            data["listing_id"] = listing_id

        check_in = pick("check_in", "checkIn", "checkInDate", "check_in_date")
        if check_in is not None:
            data["check_in"] = check_in
        check_out = pick("check_out", "checkOut", "checkOutDate", "check_out_date")
        if check_out is not None:
            data["check_out"] = check_out

        adults = pick("adults", "guests")
        if adults is not None:
            data["adults"] = adults
        if data.get("children") is None:
            data["children"] = 0
        if data.get("infants") is None:
            data["infants"] = 0

        # pets[] или petDetails.petInfo
        pets = data.get("pets")
        if not isinstance(pets, list):
            details = pick("pet_details", "petDetails") or {}
            pets = details.get("pet_info") or details.get("petInfo") or []
            if not pets:
                count = details.get("number_of_pets") or details.get("numberOfPets") or 0
                types = details.get("pet_types") or details.get("petTypes") or []
                pets = [
                    {"type": types[i] if i < len(types) else None}
                    for i in range(int(count))
                ]
        data["pets"] = [
            {
                **pet,
                "type": normalize_pet_type(pet.get("type")),
                "notes": pet.get("notes") or pet.get("specialNeeds"),
                "vaccinated": pet.get("vaccinated") is True,
            }
            for pet in pets
            if isinstance(pet, dict)
        ]

        data["payment_method"] = normalize_payment_method(
            pick("payment_method", "paymentMethod", "payment")
        )

        message = pick("guest_message", "guestMessage")
        if message is not None:
            data["guest_message"] = message
        return data

    @property
    def total_guests(self) -> int:
        return self.adults + self.children

    @property
    def pet_types(self) -> List[PetType]:
        return sorted({pet.type for pet in self.pets}, key=lambda t: t.value)


class BookingOut(BaseModel):
    id: int
    reference: str
    listing_id: int
    guest_id: int
    host_id: int
    check_in: date
    check_out: date
    nights: int
    adults: int
    children: int
    infants: int
    total_guests: int
    has_pets: bool
    number_of_pets: int
    pet_types: List[PetType] = []
    pet_info: List[dict] = []

    base_price: Decimal
    price_per_night: Decimal
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    pet_fee: Decimal
    pet_deposit: Decimal
    taxes: Decimal
    total_amount: Decimal
    currency: str

    status: BookingStatus
    booking_type: BookingType
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    refund_amount: Decimal = Decimal("0")

    guest_message: Optional[str] = None
    host_response: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancellation_refund: Decimal = Decimal("0")
    confirmed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    host_response: Optional[str] = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class RefundInfo(BaseModel):
    days_until_check_in: int
    refund_percentage: int
    refund_amount: Decimal
    pet_deposit_refund: Decimal
    policy: str


class CancellationOut(BaseModel):
    booking: BookingOut
    refund: RefundInfo


class QuoteRequest(BaseModel):
    listing_id: int
    check_in: date
    check_out: date
    guests: int = Field(default=1, ge=1)
    pets: int = Field(default=0, ge=0)


class NightPrice(BaseModel):
    night: date
    price: Decimal


class PriceBreakdown(BaseModel):
    nights: int
    price_per_night: Decimal
    base_price: Decimal
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    pet_fee: Decimal
    pet_deposit: Decimal
    taxes: Decimal
    total: Decimal
    currency: str
    per_night: List[NightPrice] = []


class AvailabilityOut(BaseModel):
    listing_id: int
    check_in: date
    check_out: date
    available: bool


class PaymentIntentOut(BaseModel):
    booking_id: int
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
