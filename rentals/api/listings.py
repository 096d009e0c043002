from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_actor
from rentals.database import get_db
from rentals.domain.actor import Actor
from rentals.schemas.listing import (
    AvailabilityPeriodIn,
    AvailabilityPeriodOut,
    AvailabilityPeriodUpdate,
    ListingCreate,
    ListingOut,
    ListingUpdate,
)
from rentals.services.listing_service import ListingService

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", response_model=ListingOut, status_code=201)
async def create_listing(
    listing_in: ListingCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await ListingService.create_listing(db, listing_in, actor)


@router.get("/{listing_id}", response_model=ListingOut)
async def get_listing(listing_id: int, db: AsyncSession = Depends(get_db)):
    await ListingService.get_listing_by_id(db, listing_id)
    return await ListingService.reload(db, listing_id)


@router.patch("/{listing_id}", response_model=ListingOut)
async def update_listing(
    listing_id: int,
    listing_in: ListingUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await ListingService.update_listing(db, listing_id, listing_in, actor)


# -------------------------------------------------
# Периоды доступности
# -------------------------------------------------


@router.get("/{listing_id}/availability", response_model=List[AvailabilityPeriodOut])
async def get_availability(listing_id: int, db: AsyncSession = Depends(get_db)):
    return await ListingService.get_periods(db, listing_id)


@router.post("/{listing_id}/availability", response_model=AvailabilityPeriodOut, status_code=201)
async def add_availability(
    listing_id: int,
    period_in: AvailabilityPeriodIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await ListingService.add_period(db, listing_id, period_in, actor)


@router.put("/{listing_id}/availability", response_model=List[AvailabilityPeriodOut])
async def replace_availability(
    listing_id: int,
    periods_in: List[AvailabilityPeriodIn],
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await ListingService.replace_periods(db, listing_id, periods_in, actor)


@router.patch("/{listing_id}/availability/{period_id}", response_model=AvailabilityPeriodOut)
async def update_availability(
    listing_id: int,
    period_id: int,
    period_in: AvailabilityPeriodUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return await ListingService.update_period(db, listing_id, period_id, period_in, actor)


@router.delete("/{listing_id}/availability/{period_id}", status_code=204)
async def delete_availability(
    listing_id: int,
    period_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await ListingService.delete_period(db, listing_id, period_id, actor)
