"""Tests for event shaping and the fetch-events operation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import http_error
from errors import PreconditionError, TokenExpiredError, UpstreamError
from services import event_feed
from store import UserStore

NOW = datetime(2025, 9, 1, 9, 30, tzinfo=timezone.utc)


def _timed(event_id: str, start: str, end: str, **extra) -> dict:
    return {"id": event_id, "start": {"dateTime": start}, "end": {"dateTime": end}, **extra}


def _all_day(event_id: str, day: str) -> dict:
    return {"id": event_id, "summary": "Holiday", "start": {"date": day}, "end": {"date": day}}


# ---------------------------------------------------------------------------
# Pure shaping
# ---------------------------------------------------------------------------


class TestIsTimedEvent:
    def test_both_times_present(self):
        assert event_feed.is_timed_event(_timed("a", "2025-09-01T09:00:00Z", "2025-09-01T10:00:00Z"))

    def test_date_only_event_is_excluded_even_for_today(self):
        assert not event_feed.is_timed_event(_all_day("b", "2025-09-01"))

    def test_missing_end_time(self):
        event = {"id": "c", "start": {"dateTime": "2025-09-01T09:00:00Z"}, "end": {"date": "2025-09-01"}}
        assert not event_feed.is_timed_event(event)


class TestNormalizeEvent:
    def test_defaults(self):
        shaped = event_feed.normalize_event(_timed("a", "2025-09-01T09:00:00Z", "2025-09-01T10:00:00Z"))
        assert shaped == {
            "id": "a",
            "title": "Untitled Event",
            "description": "",
            "startTime": "2025-09-01T09:00:00Z",
            "endTime": "2025-09-01T10:00:00Z",
            "location": "",
            "meetingLink": "",
        }

    def test_video_link_preferred_over_html_link(self):
        event = _timed(
            "a", "2025-09-01T09:00:00Z", "2025-09-01T10:00:00Z",
            summary="Standup", hangoutLink="https://meet.google.com/abc", htmlLink="https://calendar.google.com/e/1",
        )
        shaped = event_feed.normalize_event(event)
        assert shaped["title"] == "Standup"
        assert shaped["meetingLink"] == "https://meet.google.com/abc"

    def test_html_link_fallback(self):
        event = _timed("a", "2025-09-01T09:00:00Z", "2025-09-01T10:00:00Z", htmlLink="https://calendar.google.com/e/1")
        assert event_feed.normalize_event(event)["meetingLink"] == "https://calendar.google.com/e/1"


class TestSelectNextEvent:
    def test_picks_first_event_after_now(self):
        events = event_feed.shape_events([
            _timed("nine", "2025-09-01T09:00:00Z", "2025-09-01T09:45:00Z"),
            _timed("ten", "2025-09-01T10:00:00Z", "2025-09-01T11:00:00Z"),
        ])
        assert event_feed.select_next_event(events, NOW)["id"] == "ten"

    def test_event_starting_exactly_now_is_not_next(self):
        events = event_feed.shape_events([_timed("now", "2025-09-01T09:30:00Z", "2025-09-01T10:00:00Z")])
        assert event_feed.select_next_event(events, NOW) is None

    def test_offsets_are_compared_as_instants(self):
        # 11:00+02:00 is 09:00Z, already started
        events = event_feed.shape_events([
            _timed("past", "2025-09-01T11:00:00+02:00", "2025-09-01T12:00:00+02:00"),
            _timed("later", "2025-09-01T07:00:00-03:00", "2025-09-01T08:00:00-03:00"),
        ])
        assert event_feed.select_next_event(events, NOW)["id"] == "later"

    def test_empty(self):
        assert event_feed.select_next_event([], NOW) is None


def test_event_window_spans_24_hours():
    time_min, time_max = event_feed.event_window(NOW)
    assert event_feed.parse_instant(time_max) - event_feed.parse_instant(time_min) == timedelta(hours=24)
    assert event_feed.parse_instant(time_min) == NOW


# ---------------------------------------------------------------------------
# fetch_events
# ---------------------------------------------------------------------------


async def _configure(session, user, **fields):
    await UserStore(session, user.id).upsert_settings(**fields)


READY = {"service_enabled": True, "selected_calendar_id": "team@group.calendar.google.com", "google_access_token": "ya29.stored"}


class TestFetchPreconditions:
    async def test_missing_settings(self, session, make_user, google):
        user, _ = await make_user()
        with pytest.raises(PreconditionError, match="User settings not found"):
            await event_feed.fetch_events(session, user, now=NOW)
        google.build.assert_not_called()

    async def test_service_disabled_makes_no_provider_call(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **{**READY, "service_enabled": False})
        with pytest.raises(PreconditionError, match="^Calert service is not enabled$"):
            await event_feed.fetch_events(session, user, now=NOW)
        google.build.assert_not_called()

    async def test_no_calendar_selected(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **{**READY, "selected_calendar_id": None})
        with pytest.raises(PreconditionError, match="No calendar selected"):
            await event_feed.fetch_events(session, user, now=NOW)

    async def test_no_stored_token(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **{**READY, "google_access_token": None})
        with pytest.raises(PreconditionError, match="No Google access token found"):
            await event_feed.fetch_events(session, user, now=NOW)
        google.build.assert_not_called()


class TestFetchEvents:
    async def test_filters_all_day_and_finds_next(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **READY)
        google.events().list().execute.return_value = {"items": [
            _all_day("holiday", "2025-09-01"),
            _timed("nine", "2025-09-01T09:00:00Z", "2025-09-01T09:45:00Z", summary="Standup"),
            _timed("ten", "2025-09-01T10:00:00Z", "2025-09-01T11:00:00Z", summary="Review"),
        ]}

        result = await event_feed.fetch_events(session, user, now=NOW)

        assert result["success"] is True
        assert [e["id"] for e in result["events"]] == ["nine", "ten"]
        assert result["totalCount"] == 2
        assert result["nextEvent"]["id"] == "ten"

    async def test_queries_selected_calendar_over_window(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **READY)
        google.events().list().execute.return_value = {}
        google.events().list.reset_mock()

        result = await event_feed.fetch_events(session, user, now=NOW)

        time_min, time_max = event_feed.event_window(NOW)
        google.events().list.assert_called_once_with(
            calendarId="team@group.calendar.google.com", timeMin=time_min, timeMax=time_max,
            singleEvents=True, orderBy="startTime", maxResults=50,
        )
        credentials = google.build.call_args.kwargs["http"].credentials
        assert credentials.token == "ya29.stored"
        assert result["events"] == [] and result["nextEvent"] is None

    async def test_401_means_token_expired(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **READY)
        google.events().list().execute.side_effect = http_error(401)
        with pytest.raises(TokenExpiredError) as excinfo:
            await event_feed.fetch_events(session, user, now=NOW)
        assert excinfo.value.message == "Google access token expired. Please reconnect your Google account."

    async def test_other_status_is_generic_upstream_error(self, session, make_user, google):
        user, _ = await make_user()
        await _configure(session, user, **READY)
        google.events().list().execute.side_effect = http_error(403, b"rate limited")
        with pytest.raises(UpstreamError) as excinfo:
            await event_feed.fetch_events(session, user, now=NOW)
        assert not isinstance(excinfo.value, TokenExpiredError)
        assert excinfo.value.message == "Google Calendar API error: 403 - rate limited"


async def test_google_401_over_the_wire_is_token_expired(session, make_user, google_transport):
    user, _ = await make_user()
    await _configure(session, user, **READY)
    google_transport.append(({"status": "401"}, b'{"error": {"code": 401, "message": "Invalid Credentials"}}'))

    with pytest.raises(TokenExpiredError) as excinfo:
        await event_feed.fetch_events(session, user, now=NOW)

    assert excinfo.value.status == 401
    assert "Invalid Credentials" in excinfo.value.body
