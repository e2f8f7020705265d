# backend/services/calendar_service.py
import logging
from typing import Any, Dict, List
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import build_http
from starlette.concurrency import run_in_threadpool

from errors import TokenExpiredError, UpstreamError

logger = logging.getLogger(__name__)

MAX_EVENTS = 50

def get_calendar_service(access_token: str):
    """Builds a Calendar v3 client around a bare access token.

    Refresh on 401 is switched off, so Google's own 401 response comes back
    as an HttpError and the caller has to sign in again.
    """
    creds = Credentials(token=access_token)
    http = AuthorizedHttp(creds, http=build_http(), refresh_status_codes=())
    return build('calendar', 'v3', http=http, cache_discovery=False)

def _error_body(error: HttpError) -> str:
    content = error.content
    if isinstance(content, bytes):
        return content.decode('utf-8', errors='replace')
    return str(content or "")

async def _execute(request, expired_on_401: bool) -> Dict[str, Any]:
    try:
        return await run_in_threadpool(request.execute)
    except HttpError as error:
        status, body = error.resp.status, _error_body(error)
        logger.warning(f"Google API error: {status} {body}")
        if expired_on_401 and status == 401:
            raise TokenExpiredError(body) from error
        raise UpstreamError.from_response(status, body) from error

async def list_calendars(access_token: str) -> List[Dict[str, Any]]:
    service = get_calendar_service(access_token)
    result = await _execute(service.calendarList().list(), expired_on_401=False)
    return result.get('items', [])

async def list_events(access_token: str, calendar_id: str, time_min: str, time_max: str) -> List[Dict[str, Any]]:
    """Single instances in ``[time_min, time_max)``, ordered by start time."""
    service = get_calendar_service(access_token)
    request = service.events().list(
        calendarId=calendar_id, timeMin=time_min, timeMax=time_max,
        singleEvents=True, orderBy='startTime', maxResults=MAX_EVENTS,
    )
    result = await _execute(request, expired_on_401=True)
    return result.get('items', [])
