from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.api.deps import get_actor, get_feed_fetcher
from rentals.core.config import settings
from rentals.core.rate_limiter import limiter
from rentals.database import get_db
from rentals.domain.actor import Actor
from rentals.schemas.calendar import CalendarCreate, CalendarOut, ImportResult
from rentals.services.ical_service import FeedFetcher, IcalService
from rentals.services.listing_service import ListingService

router = APIRouter(prefix="/listings/{listing_id}", tags=["calendars"])


@router.post("/calendars", response_model=CalendarOut, status_code=201)
async def add_calendar(
    listing_id: int,
    payload: CalendarCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await IcalService.upsert_calendar(db, listing_id, payload.url, payload.provider)


@router.get("/calendars", response_model=List[CalendarOut])
async def list_calendars(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await IcalService.list_calendars(db, listing_id)


@router.delete("/calendars/{calendar_id}", status_code=204)
async def remove_calendar(
    listing_id: int,
    calendar_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    await IcalService.remove_calendar(db, listing_id, calendar_id)


@router.post("/calendars/sync", response_model=List[ImportResult])
@limiter.limit(settings.rate_limit_calendar_sync)
async def sync_all_calendars(
    request: Request,
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    fetcher: FeedFetcher = Depends(get_feed_fetcher),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await IcalService.sync_all_for_listing(db, listing_id, fetcher)


@router.post("/calendars/{calendar_id}/sync", response_model=ImportResult)
@limiter.limit(settings.rate_limit_calendar_sync)
async def sync_calendar(
    request: Request,
    listing_id: int,
    calendar_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    fetcher: FeedFetcher = Depends(get_feed_fetcher),
):
    await ListingService.get_owned_listing(db, listing_id, actor)
    return await IcalService.sync_calendar(db, listing_id, calendar_id, fetcher)


@router.get("/calendar.ics")
async def export_calendar(listing_id: int, db: AsyncSession = Depends(get_db)):
    await ListingService.get_listing_by_id(db, listing_id)
    body = await IcalService.export_listing_ics(db, listing_id)
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'inline; filename="listing-{listing_id}.ics"'},
    )
