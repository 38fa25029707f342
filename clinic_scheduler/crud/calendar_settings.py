# clinic_scheduler/crud/calendar_settings.py

from __future__ import annotations
from typing import Any, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduler.db.base import CalendarSyncSettings


async def get_settings(db: AsyncSession, provider_id: str) -> Optional[CalendarSyncSettings]:
    res = await db.execute(
        sa.select(CalendarSyncSettings).where(CalendarSyncSettings.provider_id == provider_id)
    )
    return res.scalar_one_or_none()


async def upsert_settings(
    db: AsyncSession,
    provider_id: str,
    values: Mapping[str, Any],
) -> CalendarSyncSettings:
    row = await get_settings(db, provider_id)
    if row is None:
        row = CalendarSyncSettings(provider_id=provider_id, **values)
        db.add(row)
    else:
        for key, value in values.items():
            setattr(row, key, value)
    await db.commit()
    await db.refresh(row)
    return row


async def update_settings(
    db: AsyncSession,
    provider_id: str,
    values: Mapping[str, Any],
) -> bool:
    res = await db.execute(
        sa.update(CalendarSyncSettings)
        .where(CalendarSyncSettings.provider_id == provider_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount > 0
