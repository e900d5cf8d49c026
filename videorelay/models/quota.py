import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from videorelay.models.base import Base, TimestampMixin, generate_uuid


class QuotaRecord(TimestampMixin, Base):
    """Per-user rolling upload counters.

    Created lazily on the first quota check. Counters are only ever changed by
    atomic delta UPDATEs (see quota_service) and never drop below zero.
    """

    __tablename__ = "user_quotas"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    daily_uploads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_uploads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_bytes_used: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    monthly_bytes_used: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_reset_daily: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_reset_monthly: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
