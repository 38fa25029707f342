# clinic_scheduler/db/models/calendar_settings.py

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_scheduler.db.enums import SyncDirection, SyncStatus
from clinic_scheduler.db.models.appointment import enum_column
from clinic_scheduler.db.session import Base


class CalendarSyncSettings(Base):
    """External calendar connection and sync preferences, one row per provider."""
    __tablename__ = "calendar_sync_settings"

    id: Mapped[int] = mapped_column(sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True)
    provider_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("providers.id"), nullable=False, unique=True)

    calendar_id: Mapped[str] = mapped_column(sa.String(500), nullable=False, default="primary")

    # OAuth credentials
    access_token: Mapped[Optional[str]] = mapped_column(sa.Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(sa.Text)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # Preferences
    sync_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    sync_direction: Mapped[SyncDirection] = mapped_column(
        enum_column(SyncDirection), nullable=False, default=SyncDirection.BIDIRECTIONAL
    )
    auto_create_events: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    auto_update_events: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    sync_past_events: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    sync_future_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=30)
    default_reminder_minutes: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=60)

    # Bookkeeping of the last batch
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_sync_status: Mapped[SyncStatus] = mapped_column(
        enum_column(SyncStatus, length=16), nullable=False, default=SyncStatus.PENDING
    )
    last_sync_error: Mapped[Optional[str]] = mapped_column(sa.Text)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
