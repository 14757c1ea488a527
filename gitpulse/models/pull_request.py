"""pull_requests table."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.core.database import Base, TimestampMixin, UTCDateTime

PR_STATES = ("open", "closed", "merged")

pr_state_enum = Enum(*PR_STATES, name="pr_state", native_enum=False, length=16)


class PullRequest(TimestampMixin, Base):
    __tablename__ = "pull_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)
    state: Mapped[str] = mapped_column(pr_state_enum, nullable=False)
    author_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    merged_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))

    # size stats
    additions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    deletions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    changed_files: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    # remote lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    merged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_pull_requests_repository_number"),
        Index("idx_pull_requests_repository_created", "repository_id", "created_at"),
        Index("idx_pull_requests_author_created", "author_id", "created_at"),
    )
