# backend/store.py
from typing import Any, Dict, List, Optional
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from errors import StorageError
from models import Profile, UserCalendar, UserSettings


class UserStore:
    def __init__(self, session: AsyncSession, user_id: str):
        self.session = session
        self.user_id = user_id

    def _owned(self, model):
        return select(model).where(model.user_id == self.user_id)

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(str(getattr(e, "orig", None) or e)) from e

    async def _first(self, model):
        try:
            result = await self.session.execute(self._owned(model))
        except SQLAlchemyError as e:
            raise StorageError(str(getattr(e, "orig", None) or e)) from e
        return result.scalars().first()

    async def _upsert(self, model, fields: Dict[str, Any]):
        row = await self._first(model)
        if row is None:
            row = model(user_id=self.user_id, **fields)
        else:
            for key, value in fields.items():
                setattr(row, key, value)
        self.session.add(row)
        await self._commit()
        try:
            await self.session.refresh(row)
        except SQLAlchemyError as e:
            raise StorageError(str(getattr(e, "orig", None) or e)) from e
        return row

    # --- settings ---
    async def get_settings(self) -> Optional[UserSettings]:
        return await self._first(UserSettings)

    async def upsert_settings(self, **fields) -> UserSettings:
        return await self._upsert(UserSettings, fields)

    # --- profile ---
    async def get_profile(self) -> Optional[Profile]:
        return await self._first(Profile)

    async def upsert_profile(self, email: Optional[str], display_name: Optional[str], avatar_url: Optional[str]) -> Profile:
        return await self._upsert(Profile, {"email": email, "display_name": display_name, "avatar_url": avatar_url})

    # --- calendars ---
    async def list_calendars(self) -> List[UserCalendar]:
        try:
            result = await self.session.execute(self._owned(UserCalendar))
        except SQLAlchemyError as e:
            raise StorageError(str(getattr(e, "orig", None) or e)) from e
        return list(result.scalars().all())

    async def delete_calendars(self) -> None:
        try:
            await self.session.execute(delete(UserCalendar).where(UserCalendar.user_id == self.user_id))
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StorageError(str(getattr(e, "orig", None) or e)) from e
        await self._commit()

    async def insert_calendars(self, rows: List[Dict[str, Any]]) -> List[UserCalendar]:
        """Bulk insert in its own commit; not atomic with a preceding delete."""
        calendars = [UserCalendar(**{**row, "user_id": self.user_id}) for row in rows]
        self.session.add_all(calendars)
        await self._commit()
        return calendars
