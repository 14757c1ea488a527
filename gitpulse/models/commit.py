"""commits table."""

from datetime import datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.core.database import Base, TimestampMixin, UTCDateTime


class Commit(TimestampMixin, Base):
    __tablename__ = "commits"

    # remote commit hash
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    repository_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    author_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    committer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    message: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    committed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    additions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    deletions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    __table_args__ = (
        Index("idx_commits_repository_date", "repository_id", "committed_at"),
        Index("idx_commits_author_date", "author_id", "committed_at"),
    )
