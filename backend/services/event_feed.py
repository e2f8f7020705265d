# backend/services/event_feed.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from errors import PreconditionError
from logging_setup import log_step
from models import Identity
from store import UserStore
from services import calendar_service

logger = logging.getLogger(__name__)
TAG = "FETCH-EVENTS"
WINDOW = timedelta(hours=24)

def parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace('Z', '+00:00'))

def event_window(now: datetime) -> Tuple[str, str]:
    return now.isoformat(), (now + WINDOW).isoformat()

def is_timed_event(event: Dict[str, Any]) -> bool:
    # All-day events only carry a 'date' on start and end
    return bool(event.get('start', {}).get('dateTime') and event.get('end', {}).get('dateTime'))

def normalize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': event['id'],
        'title': event.get('summary') or 'Untitled Event',
        'description': event.get('description') or '',
        'startTime': event['start']['dateTime'],
        'endTime': event['end']['dateTime'],
        'location': event.get('location') or '',
        'meetingLink': event.get('hangoutLink') or event.get('htmlLink') or '',
    }

def shape_events(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [normalize_event(event) for event in events if is_timed_event(event)]

def select_next_event(events: List[Dict[str, Any]], now: datetime) -> Optional[Dict[str, Any]]:
    """First event starting strictly after ``now``; ``events`` must be in start order."""
    return next((event for event in events if parse_instant(event['startTime']) > now), None)

async def fetch_events(session: AsyncSession, user: Identity, now: Optional[datetime] = None) -> Dict[str, Any]:
    settings = await UserStore(session, user.id).get_settings()
    if settings is None:
        raise PreconditionError("User settings not found. Please complete setup first.")
    if not settings.service_enabled:
        raise PreconditionError("Calert service is not enabled")
    if not settings.selected_calendar_id:
        raise PreconditionError("No calendar selected")
    if not settings.google_access_token:
        raise PreconditionError("No Google access token found. Please reconnect your Google account.")
    log_step(logger, TAG, "User settings loaded", {
        "calendarId": settings.selected_calendar_id, "serviceEnabled": settings.service_enabled,
    })

    now = now or datetime.now(timezone.utc)
    time_min, time_max = event_window(now)
    items = await calendar_service.list_events(
        settings.google_access_token, settings.selected_calendar_id, time_min, time_max,
    )
    log_step(logger, TAG, "Fetched events from Google", {"count": len(items)})

    events = shape_events(items)
    log_step(logger, TAG, "Filtered and formatted events", {"count": len(events)})

    return {
        'success': True,
        'events': events,
        'nextEvent': select_next_event(events, now),
        'totalCount': len(events),
    }
