"""repositories table."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.core.database import Base, TimestampMixin, UTCDateTime


class Repository(TimestampMixin, Base):
    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    clone_url: Mapped[Optional[str]] = mapped_column(Text)

    # alternate API base for self-hosted hosts, e.g. https://ghe.example.com/api/v3
    api_url: Mapped[Optional[str]] = mapped_column(Text)
    api_token: Mapped[Optional[str]] = mapped_column(Text)
    platform: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'github'")
    )
    tenant_id: Mapped[Optional[int]] = mapped_column(Integer)

    # incremental watermark
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    __table_args__ = (Index("idx_repositories_tenant", "tenant_id"),)
