"""Tests for iCal fetching, feed sync, cleanup and export."""
from datetime import date

import httpx
import pytest
from icalendar import Calendar
from sqlalchemy import select

from coliving.core.dates import date_range
from coliving.core.exceptions import ExternalFetchError, NotFoundError, ValidationError
from coliving.models.calendar_day import DAY_BLOCKED, DAY_BOOKED
from coliving.models.ical_feed import ICalFeed
from coliving.schemas.ical import ICalFeedCreate
from coliving.services.availability_store import availability_store as store
from coliving.services.booking_manager import booking_manager
from coliving.services.ical_client import ICalClient
from coliving.services.ical_export import ical_exporter
from coliving.services.ical_sync import ICalSyncEngine

TODAY = date(2024, 5, 1)


def document(*events):
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Channel//Calendar//EN"]
    for uid, start, end in events:
        lines += [
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"DTSTART;VALUE=DATE:{start:%Y%m%d}",
            f"DTEND;VALUE=DATE:{end:%Y%m%d}",
            "SUMMARY:Reserved",
            "END:VEVENT",
        ]
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def feeds():
    """Documents served by the fake channel, keyed by URL path."""
    return {}


@pytest.fixture
def engine_under_test(feeds):
    def handler(request):
        body = feeds.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        if isinstance(body, Exception):
            raise body
        return httpx.Response(200, text=body, headers={"Content-Type": "text/calendar"})

    client = ICalClient(timeout=1, transport=httpx.MockTransport(handler))
    return ICalSyncEngine(store, client)


async def add_feed(engine, db, apartment_id, name, path, is_active=True):
    return await engine.add_feed(
        db,
        apartment_id,
        ICalFeedCreate(feed_name=name, ical_url=f"https://channel.test{path}", is_active=is_active),
    )


async def calendar_rows(db, apartment_id, start=date(2024, 5, 1), end=date(2024, 12, 31)):
    rows = await store.get_calendar(db, apartment_id, start, end)
    return [(r.date, r.status, r.source_tag, r.notes) for r in rows]


# Client

async def test_client_normalizes_webcal_links():
    assert ICalClient.normalize_url(" webcal://channel.test/a.ics ") == "https://channel.test/a.ics"
    assert ICalClient.normalize_url("https://channel.test/a.ics") == "https://channel.test/a.ics"


async def test_client_fetch_errors():
    def handler(request):
        if request.url.path == "/missing.ics":
            return httpx.Response(404)
        if request.url.path == "/slow.ics":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, text="<html>Login</html>")

    client = ICalClient(timeout=1, transport=httpx.MockTransport(handler))

    with pytest.raises(ExternalFetchError, match="HTTP 404"):
        await client.fetch("https://channel.test/missing.ics")
    with pytest.raises(ExternalFetchError, match="Timed out"):
        await client.fetch("https://channel.test/slow.ics")
    with pytest.raises(ExternalFetchError, match="not an iCalendar"):
        await client.fetch("webcal://channel.test/login.ics")
    with pytest.raises(ExternalFetchError, match="Invalid iCal feed URL"):
        await client.fetch("https://channel.test:abc/cal.ics")


# Feed registration

async def test_add_feed_validation(db, apartments, engine_under_test):
    y = apartments[1]
    await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    with pytest.raises(ValidationError):
        await add_feed(engine_under_test, db, y.id, "Airbnb", "/other.ics")
    with pytest.raises(ValidationError):
        await add_feed(engine_under_test, db, y.id, "direct", "/direct.ics")
    with pytest.raises(ValidationError):
        await add_feed(engine_under_test, db, 9999, "VRBO", "/vrbo.ics")
    with pytest.raises(ValidationError):
        await engine_under_test.add_feed(
            db, y.id, ICalFeedCreate(feed_name="VRBO", ical_url="ftp://channel.test/vrbo.ics")
        )
    with pytest.raises(ValidationError):
        await add_feed(engine_under_test, db, y.id, "VRBO", ":abc/vrbo.ics")
    with pytest.raises(ValidationError):
        await engine_under_test.add_feed(
            db, y.id, ICalFeedCreate(feed_name="VRBO", ical_url="https:///vrbo.ics")
        )

    feeds = await engine_under_test.list_feeds(db, y.id)
    assert [f.feed_name for f in feeds] == ["Airbnb"]


async def test_list_feeds_hides_inactive_by_default(db, apartments, engine_under_test):
    y = apartments[1]
    await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")
    await add_feed(engine_under_test, db, y.id, "VRBO", "/vrbo.ics", is_active=False)

    assert [f.feed_name for f in await engine_under_test.list_feeds(db, y.id)] == ["Airbnb"]
    assert len(await engine_under_test.list_feeds(db, y.id, include_inactive=True)) == 2


# Sync

async def test_sync_marks_event_dates_booked(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert result.success
    assert result.events_processed == 1
    assert result.dates_booked == 4
    assert await calendar_rows(db, y.id) == [
        (day, DAY_BOOKED, "Airbnb", "Synced from Airbnb")
        for day in date_range(date(2024, 6, 1), date(2024, 6, 5))
    ]
    assert not await store.is_range_available(db, y.id, date(2024, 6, 4), date(2024, 6, 6))
    assert await store.is_range_available(db, y.id, date(2024, 6, 5), date(2024, 6, 8))

    refreshed = await engine_under_test.get_feed(db, feed.id)
    assert refreshed.last_sync is not None


async def test_resync_is_idempotent(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(
        ("E1", date(2024, 6, 1), date(2024, 6, 5)),
        ("E2", date(2024, 7, 10), date(2024, 7, 12)),
    )
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    await engine_under_test.sync_feed(db, feed.id, today=TODAY)
    first = await calendar_rows(db, y.id)
    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)
    second = await calendar_rows(db, y.id)

    assert first == second
    assert len(second) == 6
    assert result.dates_cleared == 6


async def test_event_cancelled_upstream_disappears(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(
        ("E1", date(2024, 6, 1), date(2024, 6, 5)),
        ("E2", date(2024, 7, 10), date(2024, 7, 12)),
    )
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")
    await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    feeds["/airbnb.ics"] = document(("E2", date(2024, 7, 10), date(2024, 7, 12)))
    await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert [row[0] for row in await calendar_rows(db, y.id)] == [date(2024, 7, 10), date(2024, 7, 11)]
    assert await store.is_range_available(db, y.id, date(2024, 6, 1), date(2024, 6, 5))


async def test_sync_does_not_clobber_other_sources(db, apartments, feeds, engine_under_test, booking_data):
    y = apartments[1]
    await booking_manager.create(db, booking_data(y.id, date(2024, 6, 3), date(2024, 6, 7)))
    await store.set_bulk(db, y.id, [date(2024, 6, 10)], DAY_BLOCKED, notes="Deep clean")
    await db.commit()
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 11)))
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    tags = {row[0]: row[2] for row in await calendar_rows(db, y.id)}
    assert tags[date(2024, 6, 2)] == "Airbnb"
    assert tags[date(2024, 6, 3)] == "direct"
    assert tags[date(2024, 6, 6)] == "direct"
    assert tags[date(2024, 6, 7)] == "Airbnb"
    assert tags[date(2024, 6, 10)] is None


async def test_sync_skips_past_and_far_future_events(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(
        ("past", date(2024, 3, 1), date(2024, 3, 5)),
        ("current", date(2024, 6, 1), date(2024, 6, 3)),
        ("far", date(2027, 1, 1), date(2027, 1, 5)),
    )
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert result.events_processed == 3
    assert result.events_skipped == 2
    assert result.dates_booked == 2


async def test_event_ending_today_is_out_of_window(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    # DTEND is exclusive, so the guest leaves on TODAY
    feeds["/airbnb.ics"] = document(
        ("leaving", date(2024, 4, 25), TODAY),
        ("staying", date(2024, 4, 28), date(2024, 5, 3)),
    )
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert result.events_skipped == 1
    assert [row[0] for row in await calendar_rows(db, y.id)] == [TODAY, date(2024, 5, 2)]


async def test_feed_with_malformed_url_does_not_stop_siblings(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    # Registered before URLs were validated on insert
    db.add(ICalFeed(apartment_id=y.id, feed_name="VRBO", ical_url="https://channel.test:abc/vrbo.ics"))
    await db.commit()
    await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    report = await engine_under_test.sync_all_feeds(db, y.id, today=TODAY)

    outcome = {r.feed_name: r.success for r in report.results}
    assert outcome == {"VRBO": False, "Airbnb": True}
    assert "Invalid iCal feed URL" in report.failed[0].error
    assert len(await calendar_rows(db, y.id)) == 4


async def test_overlong_events_are_truncated(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("owner", date(2024, 6, 1), date(2026, 6, 1)))
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert result.dates_booked == 365


async def test_failing_feed_does_not_stop_siblings(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    feeds["/vrbo.ics"] = httpx.ConnectError("connection refused")
    # VCALENDAR never closed
    feeds["/booking.ics"] = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nBEGIN:VEVENT\r\nUID:b1\r\nEND:VCALENDAR\r\n"
    await add_feed(engine_under_test, db, y.id, "VRBO", "/vrbo.ics")
    await add_feed(engine_under_test, db, y.id, "Booking.com", "/booking.ics")
    await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")

    report = await engine_under_test.sync_all_feeds(db, y.id, today=TODAY)

    outcome = {r.feed_name: r.success for r in report.results}
    assert outcome == {"VRBO": False, "Booking.com": False, "Airbnb": True}
    assert {r.feed_name for r in report.failed} == {"VRBO", "Booking.com"}
    assert all(r.error for r in report.failed)
    assert len(await calendar_rows(db, y.id)) == 4


async def test_failed_fetch_keeps_previous_rows(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")
    await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    del feeds["/airbnb.ics"]
    result = await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    assert not result.success
    assert "404" in result.error
    assert len(await calendar_rows(db, y.id)) == 4


async def test_sync_unknown_or_inactive_feed(db, apartments, engine_under_test):
    y = apartments[1]
    inactive = await add_feed(engine_under_test, db, y.id, "VRBO", "/vrbo.ics", is_active=False)

    with pytest.raises(NotFoundError):
        await engine_under_test.sync_feed(db, 9999)
    with pytest.raises(NotFoundError):
        await engine_under_test.sync_feed(db, inactive.id)
    with pytest.raises(ValidationError):
        await engine_under_test.sync_all_feeds(db, 9999)


# Cleanup and deletion

async def test_cleanup_removes_rows_of_removed_feed(db, apartments, feeds, engine_under_test, booking_data):
    y = apartments[1]
    await booking_manager.create(db, booking_data(y.id, date(2024, 6, 10), date(2024, 6, 12)))
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    feeds["/vrbo.ics"] = document(("V1", date(2024, 7, 1), date(2024, 7, 3)))
    airbnb = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")
    await add_feed(engine_under_test, db, y.id, "VRBO", "/vrbo.ics")
    await engine_under_test.sync_all_feeds(db, y.id, today=TODAY)

    # Removed without going through delete_feed
    await db.delete(await db.get(ICalFeed, airbnb.id))
    await db.commit()

    result = await engine_under_test.cleanup_orphaned(db, y.id)

    assert result.deleted_count == 4
    assert result.orphaned_feeds == ["Airbnb"]
    tags = [row[2] for row in await calendar_rows(db, y.id)]
    assert tags == ["direct", "direct", "VRBO", "VRBO"]

    again = await engine_under_test.cleanup_orphaned(db)
    assert again.deleted_count == 0


async def test_delete_feed_removes_its_rows(db, apartments, feeds, engine_under_test):
    y = apartments[1]
    feeds["/airbnb.ics"] = document(("E1", date(2024, 6, 1), date(2024, 6, 5)))
    feed = await add_feed(engine_under_test, db, y.id, "Airbnb", "/airbnb.ics")
    await engine_under_test.sync_feed(db, feed.id, today=TODAY)

    result = await engine_under_test.delete_feed(db, feed.id)

    assert result.availability_deleted == 4
    assert await calendar_rows(db, y.id) == []
    remaining = await db.execute(select(ICalFeed))
    assert remaining.scalars().all() == []
    with pytest.raises(NotFoundError):
        await engine_under_test.delete_feed(db, feed.id)


# Export

async def test_export_publishes_occupied_days(db, apartments, booking_data):
    x = apartments[0]
    await booking_manager.create(db, booking_data(x.id, date(2024, 3, 10), date(2024, 3, 13)))
    await store.set_bulk(db, x.id, [date(2024, 3, 20)], DAY_BLOCKED, notes="Repairs")
    await db.commit()

    content = await ical_exporter.build_calendar(db, x.id, start=date(2024, 3, 1), days=60)

    events = Calendar.from_ical(content).walk("VEVENT")
    assert [str(e["UID"]) for e in events] == [
        f"coliving-{x.id}-2024-03-10",
        f"coliving-{x.id}-2024-03-11",
        f"coliving-{x.id}-2024-03-12",
        f"coliving-{x.id}-2024-03-20",
    ]
    assert [str(e["STATUS"]) for e in events] == ["CONFIRMED"] * 3 + ["TENTATIVE"]
    assert events[0].decoded("DTSTART") == date(2024, 3, 10)
    assert events[0].decoded("DTEND") == date(2024, 3, 11)


async def test_export_unknown_apartment(db, apartments):
    with pytest.raises(NotFoundError):
        await ical_exporter.build_calendar(db, 9999)
