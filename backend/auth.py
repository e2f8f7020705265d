# backend/auth.py
import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, cast
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from authlib.integrations.starlette_client import OAuth
from jose import JWTError, jwt
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Identity
from database import AsyncSessionLocal, get_session
from errors import AuthenticationError
from store import UserStore

load_dotenv()
logger = logging.getLogger(__name__)

CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar.readonly"

oauth = OAuth()
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
    raise ValueError("Google OAuth credentials are not set in .env file.")
oauth.register(
    name='google', client_id=GOOGLE_CLIENT_ID, client_secret=GOOGLE_CLIENT_SECRET,
    server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
    client_kwargs={'scope': f'openid email profile {CALENDAR_SCOPE}'},
    authorize_params={'access_type': 'offline', 'prompt': 'consent'},
)

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET: raise ValueError("JWT_SECRET is not set in .env file!")
safe_jwt_secret: str = cast(str, JWT_SECRET)
ALGORITHM = "HS256"
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(days=3)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, safe_jwt_secret, algorithm=ALGORITHM)

def display_name_for(email: Optional[str], full_name: Optional[str]) -> Optional[str]:
    """Full name from the provider, else the local part of the email."""
    if full_name:
        return full_name
    return email.split('@')[0] if email else None

async def find_or_create_user(session: AsyncSession, user_info: dict, token: dict) -> Identity:
    google_id = user_info.get('sub')
    if not google_id: raise HTTPException(status_code=400, detail="Invalid user info from Google")

    statement = select(Identity).where(Identity.google_id == google_id)
    result = await session.execute(statement)
    db_user = result.scalar_one_or_none()

    if db_user:
        db_user.email = user_info.get('email') or db_user.email
        db_user.full_name = user_info.get('name')
        db_user.avatar_url = user_info.get('picture')
        db_user.provider_token = token.get('access_token')
        if token.get('refresh_token'):
            db_user.provider_refresh_token = token.get('refresh_token')
    else:
        db_user = Identity(
            google_id=google_id, email=user_info.get('email') or "", full_name=user_info.get('name'),
            avatar_url=user_info.get('picture'), provider_token=token.get('access_token'),
            provider_refresh_token=token.get('refresh_token'),
        )
    session.add(db_user)
    await session.commit()
    await session.refresh(db_user)
    return db_user

async def sync_profile(user_id: str, email: Optional[str], full_name: Optional[str], avatar_url: Optional[str]) -> None:
    """Create or update the caller's profile after sign-in.

    Runs as a background task once the sign-in response is on its way, so no
    request waits for it and a failure here only gets logged.
    """
    try:
        async with AsyncSessionLocal() as session:
            await UserStore(session, user_id).upsert_profile(
                email=email, display_name=display_name_for(email, full_name), avatar_url=avatar_url,
            )
    except Exception:
        logger.exception("Error creating/updating profile for %s", user_id)

async def get_current_user(token: str = Depends(oauth2_scheme), session: AsyncSession = Depends(get_session)) -> Identity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, safe_jwt_secret, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None: raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = await session.get(Identity, str(user_id))
    if user is None: raise credentials_exception
    return user

async def resolve_bearer_identity(session: AsyncSession, authorization: Optional[str]) -> Identity:
    """Identity behind a raw ``Authorization`` header, for the function endpoints."""
    if not authorization:
        raise AuthenticationError("No authorization header provided")
    token = authorization.replace("Bearer ", "", 1).strip()
    try:
        payload = jwt.decode(token, safe_jwt_secret, algorithms=[ALGORITHM])
    except JWTError as e:
        raise AuthenticationError(f"Authentication error: {e}") from e
    user_id = payload.get("sub")
    user = await session.get(Identity, str(user_id)) if user_id else None
    if user is None:
        raise AuthenticationError("User not authenticated")
    return user
