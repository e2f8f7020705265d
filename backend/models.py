# backend/models.py
import uuid
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

def _uuid() -> str:
    return str(uuid.uuid4())

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _created_at():
    return Field(default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False, default=_now))

def _updated_at():
    return Field(default_factory=_now, sa_column=Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now))

class Identity(SQLModel, table=True):
    """A signed-in Google account and the provider tokens it handed us."""
    __tablename__ = "identities"
    id: str = Field(default_factory=_uuid, primary_key=True)
    google_id: str = Field(unique=True, index=True)
    email: str = Field(default="")
    full_name: Optional[str] = Field(default=None)
    avatar_url: Optional[str] = Field(default=None, max_length=512)
    provider_token: Optional[str] = Field(default=None, max_length=2048)
    provider_refresh_token: Optional[str] = Field(default=None, max_length=2048)

class Profile(SQLModel, table=True):
    __tablename__ = "profiles"
    id: str = Field(default_factory=_uuid, primary_key=True)
    user_id: str = Field(foreign_key="identities.id", unique=True, index=True)
    email: Optional[str] = Field(default=None)
    display_name: Optional[str] = Field(default=None)
    avatar_url: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = _created_at()
    updated_at: datetime = _updated_at()

class UserSettings(SQLModel, table=True):
    __tablename__ = "user_settings"
    id: str = Field(default_factory=_uuid, primary_key=True)
    user_id: str = Field(foreign_key="identities.id", unique=True, index=True)
    selected_calendar_id: Optional[str] = Field(default=None)
    service_enabled: bool = Field(default=False)
    google_access_token: Optional[str] = Field(default=None, max_length=2048)
    # Declared for a refresh flow that does not exist yet; nothing reads or writes these.
    google_refresh_token: Optional[str] = Field(default=None, max_length=2048)
    google_token_expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = _created_at()
    updated_at: datetime = _updated_at()

class UserCalendar(SQLModel, table=True):
    __tablename__ = "user_calendars"
    __table_args__ = (UniqueConstraint("user_id", "calendar_id"),)
    id: str = Field(default_factory=_uuid, primary_key=True)
    user_id: str = Field(foreign_key="identities.id", index=True)
    calendar_id: str
    calendar_name: str
    calendar_description: Optional[str] = Field(default=None)
    is_primary: bool = Field(default=False)
    created_at: datetime = _created_at()
    updated_at: datetime = _updated_at()
