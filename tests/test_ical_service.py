"""
Tests for external calendar import/export
"""
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests
from icalendar import Calendar
from sqlalchemy import select

from rentals.core.errors import UpstreamFetchFailed, UpstreamParseFailed
from rentals.domain.calendar import day_start
from rentals.models import BlockedDate, BlockSource, BookingStatus, CalendarProvider, SyncStatus
from rentals.services.availability_service import AvailabilityService
from rentals.services.ical_service import FeedFetcher, FeedResponse, IcalService, parse_events

from conftest import make_booking, make_listing

FEED = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Airbnb Inc//Hosting Calendar 1.0//EN
BEGIN:VEVENT
DTSTART;VALUE=DATE:20260701
DTEND;VALUE=DATE:20260705
UID:abc@airbnb.com
SUMMARY:Reserved
END:VEVENT
BEGIN:VEVENT
DTSTART;VALUE=DATE:20260710
DURATION:P2D
UID:def@airbnb.com
SUMMARY:Airbnb (Not available)
END:VEVENT
BEGIN:VEVENT
DTSTART;VALUE=DATE:20260720
UID:open-ended@airbnb.com
END:VEVENT
END:VCALENDAR
"""

FEED_ONE_EVENT = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Airbnb Inc//Hosting Calendar 1.0//EN
BEGIN:VEVENT
DTSTART;VALUE=DATE:20260701
DTEND;VALUE=DATE:20260705
UID:abc@airbnb.com
SUMMARY:Reserved
END:VEVENT
END:VCALENDAR
"""


def fake_fetcher(*responses):
    fetcher = MagicMock(spec=FeedFetcher)
    fetcher.fetch = AsyncMock(side_effect=list(responses))
    return fetcher


async def active_blocks(session, listing_id):
    result = await session.execute(
        select(BlockedDate)
        .where(BlockedDate.listing_id == listing_id, BlockedDate.deleted_at.is_(None))
        .order_by(BlockedDate.start)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class TestParseEvents:
    def test_dates_durations_and_skips(self):
        events = parse_events(FEED, calendar_id=1)

        assert [e.uid for e in events] == ["abc@airbnb.com", "def@airbnb.com"]
        assert events[0].start == day_start(date(2026, 7, 1))
        assert events[0].end == day_start(date(2026, 7, 5))
        assert events[0].is_all_day is True
        assert events[1].end == day_start(date(2026, 7, 12))

    def test_missing_uid_gets_positional_key(self):
        feed = FEED_ONE_EVENT.replace("UID:abc@airbnb.com\n", "")
        events = parse_events(feed, calendar_id=7)
        assert events[0].uid == "7:0"

    def test_timed_event_normalized_to_utc(self):
        feed = FEED_ONE_EVENT.replace("DTSTART;VALUE=DATE:20260701", "DTSTART:20260701T150000Z").replace(
            "DTEND;VALUE=DATE:20260705", "DTEND:20260705T110000Z"
        )
        event = parse_events(feed, calendar_id=1)[0]
        assert event.is_all_day is False
        assert event.start.hour == 15
        assert event.start.tzinfo is None

    def test_garbage_raises_parse_failed(self):
        with pytest.raises(UpstreamParseFailed):
            parse_events("this is not a calendar", calendar_id=1)


class TestFeedFetcher:
    def test_conditional_headers_and_response(self):
        response = MagicMock(status_code=200, text=FEED, headers={"ETag": '"v2"', "Last-Modified": "Wed"})
        with patch("rentals.services.ical_service.requests.get", return_value=response) as get:
            result = FeedFetcher(timeout=3).fetch_sync("https://example.com/a.ics", etag='"v1"')

        headers = get.call_args.kwargs["headers"]
        assert headers["If-None-Match"] == '"v1"'
        assert get.call_args.kwargs["timeout"] == 3
        assert result.etag == '"v2"'
        assert result.text == FEED

    def test_not_modified(self):
        response = MagicMock(status_code=304)
        with patch("rentals.services.ical_service.requests.get", return_value=response):
            result = FeedFetcher().fetch_sync("https://example.com/a.ics", etag='"v1"')
        assert result.not_modified
        assert result.etag == '"v1"'

    def test_network_error_becomes_fetch_failed(self):
        with patch(
            "rentals.services.ical_service.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(UpstreamFetchFailed):
                FeedFetcher().fetch_sync("https://example.com/a.ics")


@pytest.mark.asyncio
async def test_reimport_is_idempotent(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(
        session, listing.id, "https://example.com/a.ics", CalendarProvider.AIRBNB
    )
    fetcher = fake_fetcher(
        FeedResponse(status_code=200, text=FEED, etag='"v1"'),
        FeedResponse(status_code=200, text=FEED, etag='"v1"'),
    )

    first = await IcalService.import_calendar(session, calendar, fetcher)
    second = await IcalService.import_calendar(session, calendar, fetcher)

    assert first.imported == 2
    assert second.imported == 2
    assert second.removed == 0

    all_rows = (await session.execute(select(BlockedDate))).scalars().all()
    assert sorted(b.event_uid for b in all_rows) == ["abc@airbnb.com", "def@airbnb.com"]
    assert all(b.source == BlockSource.EXTERNAL and b.provider == CalendarProvider.AIRBNB for b in all_rows)

    # второй запрос шёл с ETag первого ответа
    assert fetcher.fetch.await_args_list[1].args == ("https://example.com/a.ics", '"v1"', None)
    assert calendar.last_status == SyncStatus.SUCCESS
    assert calendar.imported_events == 4


@pytest.mark.asyncio
async def test_imported_blocks_affect_availability(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    await IcalService.import_calendar(session, calendar, fake_fetcher(FeedResponse(status_code=200, text=FEED)))

    assert not await AvailabilityService.is_available(session, listing.id, date(2026, 7, 3), date(2026, 7, 6))
    assert await AvailabilityService.is_available(session, listing.id, date(2026, 7, 5), date(2026, 7, 10))


@pytest.mark.asyncio
async def test_event_gone_from_feed_is_soft_deleted(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    fetcher = fake_fetcher(
        FeedResponse(status_code=200, text=FEED),
        FeedResponse(status_code=200, text=FEED_ONE_EVENT),
    )

    await IcalService.import_calendar(session, calendar, fetcher)
    result = await IcalService.import_calendar(session, calendar, fetcher)

    assert result.removed == 1
    blocks = await active_blocks(session, listing.id)
    assert [b.event_uid for b in blocks] == ["abc@airbnb.com"]


@pytest.mark.asyncio
async def test_not_modified_keeps_blocks(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    fetcher = fake_fetcher(
        FeedResponse(status_code=200, text=FEED, etag='"v1"'),
        FeedResponse(status_code=304, etag='"v1"'),
    )

    await IcalService.import_calendar(session, calendar, fetcher)
    result = await IcalService.import_calendar(session, calendar, fetcher)

    assert result.not_modified is True
    assert len(await active_blocks(session, listing.id)) == 2


@pytest.mark.asyncio
async def test_fetch_failure_recorded_on_subscription(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    fetcher = fake_fetcher(UpstreamFetchFailed("Failed to fetch calendar: 503"))

    with pytest.raises(UpstreamFetchFailed):
        await IcalService.import_calendar(session, calendar, fetcher)

    await session.refresh(calendar)
    assert calendar.last_status == SyncStatus.ERROR
    assert "503" in calendar.last_error
    assert calendar.last_sync_at is not None


@pytest.mark.asyncio
async def test_sync_all_continues_after_failure(session):
    listing = await make_listing(session)
    await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    await IcalService.upsert_calendar(session, listing.id, "https://example.com/b.ics")
    fetcher = fake_fetcher(
        UpstreamParseFailed("Invalid calendar feed"),
        FeedResponse(status_code=200, text=FEED_ONE_EVENT),
    )

    results = await IcalService.sync_all_for_listing(session, listing.id, fetcher)

    assert [r.status for r in results] == [SyncStatus.ERROR, SyncStatus.SUCCESS]
    assert results[0].error == "Invalid calendar feed"
    assert results[1].imported == 1


@pytest.mark.asyncio
async def test_internal_hold_not_overwritten_by_feed(session):
    listing = await make_listing(session)
    booking = await make_booking(session, listing, date(2026, 7, 1), date(2026, 7, 3))
    await AvailabilityService.hold_for_booking(session, booking)
    await session.commit()

    # наша же бронь, вернувшаяся через ленту площадки
    feed = FEED_ONE_EVENT.replace("UID:abc@airbnb.com", f"UID:booking-{booking.reference}")
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    result = await IcalService.import_calendar(
        session, calendar, fake_fetcher(FeedResponse(status_code=200, text=feed))
    )

    assert result.imported == 0
    blocks = await active_blocks(session, listing.id)
    assert len(blocks) == 1
    assert blocks[0].source == BlockSource.INTERNAL
    assert blocks[0].end == day_start(date(2026, 7, 3))


@pytest.mark.asyncio
async def test_remove_calendar_releases_its_blocks(session):
    listing = await make_listing(session)
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    await IcalService.import_calendar(session, calendar, fake_fetcher(FeedResponse(status_code=200, text=FEED)))

    await IcalService.remove_calendar(session, listing.id, calendar.id)

    assert await active_blocks(session, listing.id) == []
    assert await IcalService.list_calendars(session, listing.id) == []


@pytest.mark.asyncio
async def test_export_contains_bookings_and_external_blocks(session):
    listing = await make_listing(session)
    confirmed = await make_booking(session, listing, date(2026, 8, 1), date(2026, 8, 4))
    await make_booking(
        session, listing, date(2026, 8, 10), date(2026, 8, 12), guest_id=2, status=BookingStatus.PENDING
    )
    calendar = await IcalService.upsert_calendar(session, listing.id, "https://example.com/a.ics")
    await IcalService.import_calendar(
        session, calendar, fake_fetcher(FeedResponse(status_code=200, text=FEED_ONE_EVENT))
    )

    body = await IcalService.export_listing_ics(session, listing.id)

    cal = Calendar.from_ical(body)
    events = {str(e.get("UID")): e for e in cal.walk("VEVENT")}
    assert set(events) == {f"booking-{confirmed.reference}", "external-abc@airbnb.com"}

    booked = events[f"booking-{confirmed.reference}"]
    assert str(booked.get("SUMMARY")) == "Booked"
    assert booked.decoded("DTSTART") == date(2026, 8, 1)
    assert booked.decoded("DTEND") == date(2026, 8, 4)
    assert events["external-abc@airbnb.com"].decoded("DTSTART") == date(2026, 7, 1)
