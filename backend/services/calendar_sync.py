# backend/services/calendar_sync.py
import logging
from typing import Any, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession

from errors import StorageError, UpstreamError
from logging_setup import log_step
from models import Identity
from store import UserStore
from services import calendar_service

logger = logging.getLogger(__name__)
TAG = "SYNC-CALENDARS"

def to_calendar_rows(calendars: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            'calendar_id': calendar['id'],
            'calendar_name': calendar.get('summary', ''),
            'calendar_description': calendar.get('description') or None,
            'is_primary': bool(calendar.get('primary', False)),
        }
        for calendar in calendars
    ]

async def sync_calendars(session: AsyncSession, user: Identity) -> Dict[str, Any]:
    """Replaces the user's stored calendars with the ones Google lists now.

    The old rows are deleted and the new ones inserted in two separate
    commits. A failed insert leaves the user without calendars until the next
    successful sync.
    """
    provider_token = user.provider_token
    if not provider_token:
        raise UpstreamError("No Google access token found. Please reconnect your Google account.")
    log_step(logger, TAG, "Provider token found")

    calendars = await calendar_service.list_calendars(provider_token)
    log_step(logger, TAG, "Fetched calendars from Google", {"count": len(calendars)})

    store = UserStore(session, user.id)
    try:
        await store.delete_calendars()
    except StorageError as e:
        log_step(logger, TAG, "Error deleting existing calendars", {"error": e.message})

    rows = [{'user_id': user.id, **row} for row in to_calendar_rows(calendars)]
    if rows:
        try:
            await store.insert_calendars(rows)
        except StorageError as e:
            raise StorageError(f"Error inserting calendars: {e.message}") from e
    log_step(logger, TAG, "Calendars synced successfully", {"count": len(rows)})

    try:
        await store.upsert_settings(google_access_token=provider_token)
    except StorageError as e:
        log_step(logger, TAG, "Error updating user settings", {"error": e.message})

    return {
        'success': True,
        'calendars': rows,
        'message': f"Successfully synced {len(rows)} calendars",
    }
