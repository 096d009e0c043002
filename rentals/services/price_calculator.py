import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import settings
from rentals.core.errors import InvalidDateRange
from rentals.domain.calendar import iter_nights, nights_between
from rentals.models import AvailabilityPeriod, Listing
from rentals.schemas.booking import NightPrice, PriceBreakdown
from rentals.schemas.pricing import AmountFee, EffectiveConfig, FeeMode, ModeFee
from rentals.services.pricing_config_service import PricingConfigService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    """Процентные начисления округляются до целых единиц валюты (half-up)."""
    return Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def mode_fee_amount(fee: ModeFee, base: Decimal) -> Decimal:
    if fee.is_free:
        return ZERO
    if fee.mode == FeeMode.FIXED:
        return Decimal(fee.value)
    return round_money(base * Decimal(fee.value) / 100)


def amount_fee(fee: AmountFee) -> Decimal:
    return ZERO if fee.is_free else Decimal(fee.value)


def nightly_prices(
    listing: Listing, periods: Sequence[AvailabilityPeriod], check_in: date, check_out: date
) -> List[NightPrice]:
    """Цена каждой ночи: спеццена периода, покрывающего ночь, иначе базовая."""
    special: Dict[date, Decimal] = {}
    for night in iter_nights(check_in, check_out):
        for period in periods:
            if period.special_price is not None and period.start_date <= night < period.end_date:
                special[night] = Decimal(period.special_price)
                break
    return [
        NightPrice(night=night, price=special.get(night, Decimal(listing.price)))
        for night in iter_nights(check_in, check_out)
    ]


def compute_breakdown(
    listing: Listing,
    config: EffectiveConfig,
    nights: List[NightPrice],
    pets: int = 0,
) -> PriceBreakdown:
    count = len(nights)
    subtotal = sum((n.price for n in nights), ZERO)

    cleaning_fee = service_fee = taxes = ZERO
    if config.enabled:
        cleaning_fee = amount_fee(config.cleaning_fee)
        service_fee = mode_fee_amount(config.service_fee, subtotal)

    pet_fee = pet_deposit = ZERO
    if pets > 0 and listing.pets_allowed:
        # Без настройки на каком-либо уровне берём тариф из политики объявления
        if config.enabled and "pet_fee_per_night" in config.configured:
            per_night = amount_fee(config.pet_fee_per_night)
        else:
            per_night = Decimal(listing.pet_fee or 0)
        if config.enabled and "pet_deposit_per_pet" in config.configured:
            per_pet = amount_fee(config.pet_deposit_per_pet)
        else:
            per_pet = Decimal(listing.pet_deposit or 0)
        pet_fee = per_night * pets * count
        pet_deposit = per_pet * pets

    if config.enabled:
        # Депозит возвратный, в налоговую базу не входит
        taxes = mode_fee_amount(config.tax, subtotal + cleaning_fee + service_fee + pet_fee)

    total = subtotal + cleaning_fee + service_fee + pet_fee + pet_deposit + taxes
    return PriceBreakdown(
        nights=count,
        price_per_night=(subtotal / count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        base_price=Decimal(listing.price),
        subtotal=subtotal,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        pet_fee=pet_fee,
        pet_deposit=pet_deposit,
        taxes=taxes,
        total=total,
        currency=settings.currency,
        per_night=nights,
    )


class PriceCalculator:
    @staticmethod
    async def calculate(
        db: AsyncSession,
        listing: Listing,
        check_in: date,
        check_out: date,
        guests: int = 1,
        pets: int = 0,
    ) -> PriceBreakdown:
        if check_out <= check_in or nights_between(check_in, check_out) < 1:
            raise InvalidDateRange("check_out must be after check_in")

        result = await db.execute(
            select(AvailabilityPeriod)
            .where(
                AvailabilityPeriod.listing_id == listing.id,
                AvailabilityPeriod.start_date < check_out,
                AvailabilityPeriod.end_date > check_in,
            )
            .order_by(AvailabilityPeriod.start_date)
            .execution_options(populate_existing=True)
        )
        periods = result.scalars().all()

        config = await PricingConfigService.resolve(db, listing)
        breakdown = compute_breakdown(
            listing, config, nightly_prices(listing, periods, check_in, check_out), pets
        )
        logger.debug(
            f"Quote for listing {listing.id} {check_in} - {check_out}: "
            f"{breakdown.total} {breakdown.currency} ({guests} guests, {pets} pets)"
        )
        return breakdown
