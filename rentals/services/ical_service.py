"""
Синхронизация внешних календарей (Airbnb, VRBO, Booking.com) через iCal.

Импорт: условный GET по сохранённым ETag / Last-Modified, разбор
icalendar, upsert BlockedDate по (объявление, UID события). События,
исчезнувшие из ленты, мягко удаляются. Экспорт: подтверждённые брони и
активные внешние блокировки одним VCALENDAR.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import requests
from icalendar import Calendar, Event
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.core.config import settings
from rentals.core.errors import NotFound, UpstreamFetchFailed, UpstreamParseFailed
from rentals.domain.calendar import to_utc_naive
from rentals.models import (
    BlockedDate,
    BlockSource,
    Booking,
    BookingStatus,
    CalendarProvider,
    ListingCalendar,
    SyncStatus,
    utcnow,
)
from rentals.schemas.calendar import ImportResult

logger = logging.getLogger(__name__)

EXPORTED_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)


@dataclass
class FeedResponse:
    status_code: int
    text: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


class FeedFetcher:
    """HTTP GET ленты с условными заголовками. requests синхронный, уходит в поток."""

    def __init__(self, timeout: Optional[float] = None, user_agent: Optional[str] = None):
        self.timeout = timeout or settings.calendar_fetch_timeout_seconds
        self.user_agent = user_agent or settings.calendar_user_agent

    def fetch_sync(
        self, url: str, etag: Optional[str] = None, last_modified: Optional[str] = None
    ) -> FeedResponse:
        headers = {"User-Agent": self.user_agent, "Accept": "text/calendar, */*"}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
            if response.status_code == 304:
                return FeedResponse(status_code=304, etag=etag, last_modified=last_modified)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamFetchFailed(f"Failed to fetch calendar: {e}") from e

        return FeedResponse(
            status_code=response.status_code,
            text=response.text,
            etag=response.headers.get("ETag"),
            last_modified=response.headers.get("Last-Modified"),
        )

    async def fetch(
        self, url: str, etag: Optional[str] = None, last_modified: Optional[str] = None
    ) -> FeedResponse:
        return await asyncio.to_thread(self.fetch_sync, url, etag, last_modified)


@dataclass
class FeedEvent:
    uid: str
    start: datetime
    end: datetime
    is_all_day: bool
    summary: Optional[str] = None
    description: Optional[str] = None


def parse_events(text: str, calendar_id: int) -> List[FeedEvent]:
    """
    VEVENT -> FeedEvent. Событие без начала или конца пропускается.
    Без UID ключом служит "<calendar_id>:<порядковый номер>".
    """
    try:
        cal = Calendar.from_ical(text)
    except (ValueError, IndexError) as e:
        raise UpstreamParseFailed(f"Invalid calendar feed: {e}") from e

    events = []
    for index, component in enumerate(cal.walk("VEVENT")):
        dtstart = component.get("DTSTART")
        if dtstart is None:
            continue
        start = dtstart.dt

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            end = dtend.dt
        elif duration is not None:
            end = start + duration.dt
        else:
            continue

        uid = str(component.get("UID") or "").strip() or f"{calendar_id}:{index}"
        summary = component.get("SUMMARY")
        description = component.get("DESCRIPTION")
        events.append(
            FeedEvent(
                uid=uid,
                start=to_utc_naive(start),
                end=to_utc_naive(end),
                is_all_day=not isinstance(start, datetime),
                summary=str(summary) if summary is not None else None,
                description=str(description) if description is not None else None,
            )
        )
    return events


class IcalService:
    # ------------------------------------------------------------------
    # Подписки
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert_calendar(
        db: AsyncSession,
        listing_id: int,
        url: str,
        provider: CalendarProvider = CalendarProvider.OTHER,
        feed_token: Optional[str] = None,
    ) -> ListingCalendar:
        result = await db.execute(
            select(ListingCalendar).where(
                ListingCalendar.listing_id == listing_id,
                ListingCalendar.url == url,
            )
        )
        calendar = result.scalar_one_or_none()
        if calendar is None:
            calendar = ListingCalendar(listing_id=listing_id, url=url)
            db.add(calendar)

        calendar.provider = provider
        calendar.active = True
        if feed_token:
            calendar.feed_token = feed_token
        await db.commit()
        await db.refresh(calendar)
        logger.info(f"✅ Calendar {calendar.id} ({provider.value}) saved for listing {listing_id}")
        return calendar

    @staticmethod
    async def list_calendars(db: AsyncSession, listing_id: int) -> List[ListingCalendar]:
        result = await db.execute(
            select(ListingCalendar)
            .where(ListingCalendar.listing_id == listing_id)
            .order_by(ListingCalendar.created_at.desc(), ListingCalendar.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_calendar(db: AsyncSession, listing_id: int, calendar_id: int) -> ListingCalendar:
        result = await db.execute(
            select(ListingCalendar).where(
                ListingCalendar.id == calendar_id,
                ListingCalendar.listing_id == listing_id,
            )
        )
        calendar = result.scalar_one_or_none()
        if calendar is None:
            raise NotFound(f"Calendar {calendar_id} not found")
        return calendar

    @staticmethod
    async def remove_calendar(db: AsyncSession, listing_id: int, calendar_id: int) -> None:
        calendar = await IcalService.get_calendar(db, listing_id, calendar_id)
        # Блокировки удалённой ленты больше не держат даты
        await db.execute(
            update(BlockedDate)
            .where(
                BlockedDate.calendar_id == calendar.id,
                BlockedDate.deleted_at.is_(None),
            )
            .values(deleted_at=utcnow())
        )
        await db.delete(calendar)
        await db.commit()
        logger.info(f"🗑 Calendar {calendar_id} removed from listing {listing_id}")

    # ------------------------------------------------------------------
    # Импорт
    # ------------------------------------------------------------------

    @staticmethod
    async def _upsert_block(
        db: AsyncSession, calendar: ListingCalendar, event: FeedEvent, now: datetime
    ) -> bool:
        result = await db.execute(
            select(BlockedDate).where(
                BlockedDate.listing_id == calendar.listing_id,
                BlockedDate.event_uid == event.uid,
            )
        )
        block = result.scalar_one_or_none()
        if block is not None and block.source == BlockSource.INTERNAL:
            # Наша же бронь, вернувшаяся через чужую ленту
            return False
        if block is None:
            block = BlockedDate(
                listing_id=calendar.listing_id,
                source=BlockSource.EXTERNAL,
                event_uid=event.uid,
            )
            db.add(block)

        block.provider = calendar.provider
        block.calendar_id = calendar.id
        block.summary = event.summary
        block.description = event.description
        block.start = event.start
        block.end = event.end
        block.is_all_day = event.is_all_day
        block.imported_at = now
        block.deleted_at = None
        await db.flush()
        return True

    @staticmethod
    async def import_calendar(
        db: AsyncSession,
        calendar: ListingCalendar,
        fetcher: Optional[FeedFetcher] = None,
    ) -> ImportResult:
        """
        Импорт одной ленты.

        При ошибке загрузки или разбора статус подписки переводится в error,
        текст ошибки сохраняется, исключение пробрасывается дальше. Уже
        записанные события остаются.
        """
        fetcher = fetcher or FeedFetcher()
        now = utcnow()

        try:
            response = await fetcher.fetch(calendar.url, calendar.last_etag, calendar.last_modified)
            if response.not_modified:
                calendar.last_sync_at = now
                calendar.last_status = SyncStatus.SUCCESS
                calendar.last_error = None
                await db.commit()
                logger.info(f"Calendar {calendar.id} not modified, skipping")
                return ImportResult(calendar_id=calendar.id, not_modified=True)

            events = parse_events(response.text, calendar.id)

            imported = 0
            seen = set()
            for event in events:
                async with db.begin_nested():
                    if await IcalService._upsert_block(db, calendar, event, now):
                        imported += 1
                        seen.add(event.uid)

            stale = update(BlockedDate).where(
                BlockedDate.listing_id == calendar.listing_id,
                BlockedDate.calendar_id == calendar.id,
                BlockedDate.source == BlockSource.EXTERNAL,
                BlockedDate.deleted_at.is_(None),
            )
            if seen:
                stale = stale.where(BlockedDate.event_uid.not_in(seen))
            removed = (await db.execute(stale.values(deleted_at=now))).rowcount or 0

            calendar.last_sync_at = now
            calendar.last_status = SyncStatus.SUCCESS
            calendar.last_error = None
            calendar.last_etag = response.etag or calendar.last_etag
            calendar.last_modified = response.last_modified or calendar.last_modified
            calendar.imported_events = (calendar.imported_events or 0) + imported
            calendar.removed_events = (calendar.removed_events or 0) + removed
            await db.commit()

        except Exception as e:
            calendar.last_sync_at = now
            calendar.last_status = SyncStatus.ERROR
            calendar.last_error = str(getattr(e, "detail", e))[:1000]
            await db.commit()
            logger.error(f"❌ Calendar {calendar.id} sync failed: {e}")
            raise

        logger.info(
            f"🔄 Calendar {calendar.id} synced for listing {calendar.listing_id}: "
            f"{imported} imported, {removed} removed"
        )
        return ImportResult(calendar_id=calendar.id, imported=imported, removed=removed)

    @staticmethod
    async def sync_calendar(
        db: AsyncSession, listing_id: int, calendar_id: int, fetcher: Optional[FeedFetcher] = None
    ) -> ImportResult:
        calendar = await IcalService.get_calendar(db, listing_id, calendar_id)
        return await IcalService.import_calendar(db, calendar, fetcher)

    @staticmethod
    async def sync_all_for_listing(
        db: AsyncSession, listing_id: int, fetcher: Optional[FeedFetcher] = None
    ) -> List[ImportResult]:
        """Все активные ленты объявления. Ошибка одной не останавливает остальные."""
        result = await db.execute(
            select(ListingCalendar)
            .where(ListingCalendar.listing_id == listing_id, ListingCalendar.active.is_(True))
            .order_by(ListingCalendar.id)
        )
        results = []
        for calendar in result.scalars().all():
            calendar_id = calendar.id
            try:
                results.append(await IcalService.import_calendar(db, calendar, fetcher))
            except Exception as e:
                results.append(
                    ImportResult(
                        calendar_id=calendar_id,
                        status=SyncStatus.ERROR,
                        error=str(getattr(e, "detail", e)),
                    )
                )
        return results

    @staticmethod
    async def sync_all_listings(db: AsyncSession, fetcher: Optional[FeedFetcher] = None) -> int:
        result = await db.execute(
            select(ListingCalendar.listing_id).where(ListingCalendar.active.is_(True)).distinct()
        )
        listing_ids = list(result.scalars().all())
        failed = 0
        for listing_id in listing_ids:
            results = await IcalService.sync_all_for_listing(db, listing_id, fetcher)
            failed += sum(1 for r in results if r.status == SyncStatus.ERROR)
        return failed

    # ------------------------------------------------------------------
    # Экспорт
    # ------------------------------------------------------------------

    @staticmethod
    async def export_listing_ics(db: AsyncSession, listing_id: int) -> str:
        bookings = await db.execute(
            select(Booking)
            .where(Booking.listing_id == listing_id, Booking.status.in_(EXPORTED_STATUSES))
            .order_by(Booking.check_in)
        )
        externals = await db.execute(
            select(BlockedDate)
            .where(
                BlockedDate.listing_id == listing_id,
                BlockedDate.source == BlockSource.EXTERNAL,
                BlockedDate.deleted_at.is_(None),
            )
            .order_by(BlockedDate.start)
        )

        cal = Calendar()
        cal.add("prodid", settings.ics_prodid)
        cal.add("version", "2.0")
        stamp = datetime.now(timezone.utc)

        # Без персональных данных гостя
        for booking in bookings.scalars().all():
            cal.add_component(
                _event(f"booking-{booking.reference}", booking.check_in, booking.check_out, "Booked", stamp)
            )

        for block in externals.scalars().all():
            if block.is_all_day:
                start, end = block.start.date(), block.end.date()
            else:
                start = block.start.replace(tzinfo=timezone.utc)
                end = block.end.replace(tzinfo=timezone.utc)
            summary = block.summary or f"Blocked ({block.provider.value})"
            cal.add_component(_event(f"external-{block.event_uid or block.id}", start, end, summary, stamp))

        return cal.to_ical().decode("utf-8")


def _event(uid: str, start: date | datetime, end: date | datetime, summary: str, stamp: datetime) -> Event:
    event = Event()
    event.add("uid", uid)
    event.add("dtstamp", stamp)
    event.add("dtstart", start)
    if end <= start:
        end = start + timedelta(days=1)
    event.add("dtend", end)
    event.add("summary", summary)
    return event
