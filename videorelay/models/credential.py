"""Aggregator credentials: one encrypted access/secret key pair per user.

Plaintext keys never touch the database; see videorelay.core.crypto.
"""

import uuid

from sqlalchemy import ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from videorelay.models.base import Base, TimestampMixin, generate_uuid


class AggregatorKey(TimestampMixin, Base):
    __tablename__ = "aggregator_keys"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    access_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    secret_key_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
