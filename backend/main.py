# backend/main.py
import os
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Depends, Header, Request, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from logging_setup import configure_logging, log_step
from database import create_db_and_tables, get_session
from models import Identity, UserSettings
from auth import oauth, create_access_token, find_or_create_user, get_current_user, resolve_bearer_identity, sync_profile
from errors import CalertError
from store import UserStore
from services import calendar_sync, event_feed

load_dotenv()
configure_logging()
logger = logging.getLogger(__name__)

CLIENT_URL = os.getenv("CLIENT_URL")
SESSION_SECRET_KEY = os.getenv("JWT_SECRET")
if not CLIENT_URL or not SESSION_SECRET_KEY:
    raise ValueError("CLIENT_URL and JWT_SECRET must be set in .env file!")

FUNCTION_CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]

DEMO_ALERT = {
    "title": "Product Strategy Meeting",
    "time": "2:00 PM - 3:00 PM",
    "location": "Conference Room A",
    "meetingLink": "https://meet.google.com/demo-link",
    "description": "Quarterly product planning and roadmap review with the engineering team.",
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up and creating database tables...")
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

# --- Functions: stateless request/response endpoints called with a bearer token ---
functions_app = FastAPI(title="Calert functions")
functions_app.add_middleware(
    CORSMiddleware, allow_origins=["*"], allow_methods=["POST", "OPTIONS"],
    allow_headers=FUNCTION_CORS_HEADERS,
)

async def run_function(tag: str, name: str, operation: Callable[[], Awaitable[Dict[str, Any]]]):
    """Runs one function invocation, turning any failure into the error envelope."""
    log_step(logger, tag, "Function started")
    try:
        return await operation()
    except Exception as e:
        message = e.message if isinstance(e, CalertError) else str(e)
        if not isinstance(e, CalertError):
            logger.exception(f"[{tag}] Unexpected failure")
        log_step(logger, tag, f"ERROR in {name}", {"message": message})
        return JSONResponse(status_code=500, content={"error": message, "success": False})

@functions_app.options("/sync-calendars")
@functions_app.options("/fetch-events")
async def preflight():
    return Response(status_code=200)

@functions_app.post("/sync-calendars")
async def sync_calendars_function(authorization: Optional[str] = Header(None), session: AsyncSession = Depends(get_session)):
    async def operation():
        user = await resolve_bearer_identity(session, authorization)
        log_step(logger, calendar_sync.TAG, "User authenticated", {"userId": user.id})
        return await calendar_sync.sync_calendars(session, user)
    return await run_function(calendar_sync.TAG, "sync-calendars", operation)

@functions_app.post("/fetch-events")
async def fetch_events_function(authorization: Optional[str] = Header(None), session: AsyncSession = Depends(get_session)):
    async def operation():
        user = await resolve_bearer_identity(session, authorization)
        log_step(logger, event_feed.TAG, "User authenticated", {"userId": user.id})
        return await event_feed.fetch_events(session, user)
    return await run_function(event_feed.TAG, "fetch-events", operation)

# --- Dashboard app: the signed-in client's reads and mutations ---
dashboard_app = FastAPI(title="Calert")
dashboard_app.add_middleware(
    CORSMiddleware, allow_origins=[CLIENT_URL], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
dashboard_app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET_KEY)

# Each half keeps its own CORS policy, so they are mounted side by side.
app = FastAPI(lifespan=lifespan)
app.mount("/functions/v1", functions_app)
app.mount("/", dashboard_app)

# --- Pydantic Models ---
class CalendarSelectionRequest(BaseModel): calendar_id: str
class ServiceToggleRequest(BaseModel): enabled: bool

def settings_view(settings: Optional[UserSettings]) -> Dict[str, Any]:
    if settings is None:
        return {"selected_calendar_id": None, "service_enabled": False, "google_connected": False}
    return {
        "selected_calendar_id": settings.selected_calendar_id,
        "service_enabled": settings.service_enabled,
        "google_connected": settings.google_access_token is not None,
    }

# --- API Routes ---
@dashboard_app.get("/auth/google")
async def login(request: Request):
    assert oauth.google is not None
    redirect_uri = request.url_for('auth_callback')
    return await oauth.google.authorize_redirect(request, redirect_uri)

@dashboard_app.get("/auth/google/callback", name="auth_callback")
async def auth_callback(request: Request, background_tasks: BackgroundTasks, session: AsyncSession = Depends(get_session)):
    try:
        assert oauth.google is not None
        token = await oauth.google.authorize_access_token(request)
        user_info = token['userinfo']
        db_user = await find_or_create_user(session, user_info, token)
        access_token = create_access_token(data={"sub": db_user.id})
    except Exception:
        logger.exception("Error during auth callback")
        return RedirectResponse(url=f"{CLIENT_URL}/login/error")
    background_tasks.add_task(sync_profile, db_user.id, db_user.email, db_user.full_name, db_user.avatar_url)
    return RedirectResponse(url=f"{CLIENT_URL}/dashboard?token={access_token}")

@dashboard_app.get("/api/me")
async def get_me(current_user: Identity = Depends(get_current_user)):
    return {
        "id": current_user.id, "email": current_user.email,
        "full_name": current_user.full_name, "avatar_url": current_user.avatar_url,
    }

@dashboard_app.get("/api/me/profile")
async def get_profile(current_user: Identity = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    profile = await UserStore(session, current_user.id).get_profile()
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"email": profile.email, "display_name": profile.display_name, "avatar_url": profile.avatar_url}

@dashboard_app.get("/api/dashboard")
async def get_dashboard(current_user: Identity = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    store = UserStore(session, current_user.id)
    try:
        settings = settings_view(await store.get_settings())
        calendars = [
            {"id": cal.calendar_id, "summary": cal.calendar_name, "description": cal.calendar_description, "primary": cal.is_primary}
            for cal in await store.list_calendars()
        ]
    except CalertError as e:
        raise HTTPException(status_code=500, detail=e.message)
    status = {
        "google_connected": settings["google_connected"],
        "calendars_synced": bool(calendars),
        "calendar_selected": bool(settings["selected_calendar_id"]),
        "service_active": settings["service_enabled"],
    }
    status["can_enable_service"] = status["google_connected"] and status["calendars_synced"] and status["calendar_selected"]
    return {"settings": settings, "calendars": calendars, "status": status}

@dashboard_app.put("/api/settings/calendar")
async def update_calendar_selection(
    request: CalendarSelectionRequest,
    current_user: Identity = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    store = UserStore(session, current_user.id)
    try:
        current = await store.get_settings()
        settings = await store.upsert_settings(
            selected_calendar_id=request.calendar_id,
            service_enabled=current.service_enabled if current else False,
        )
    except CalertError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return {"message": "Your preferred calendar has been saved.", "settings": settings_view(settings)}

@dashboard_app.put("/api/settings/service")
async def toggle_service(
    request: ServiceToggleRequest,
    current_user: Identity = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    store = UserStore(session, current_user.id)
    try:
        current = await store.get_settings()
        settings = await store.upsert_settings(
            selected_calendar_id=current.selected_calendar_id if current else None,
            service_enabled=request.enabled,
        )
    except CalertError as e:
        raise HTTPException(status_code=500, detail=e.message)
    message = "You'll now receive assertive calendar alerts." if request.enabled else "Calendar alerts have been disabled."
    return {"message": message, "settings": settings_view(settings)}

@dashboard_app.get("/api/demo/alert")
async def get_demo_alert():
    return {"demo": True, "event": DEMO_ALERT}

@dashboard_app.get("/")
async def read_root():
    return {"message": "Calert Backend is running!"}
