"""reviews table."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.core.database import Base, TimestampMixin, UTCDateTime

REVIEW_STATES = ("approved", "changes_requested", "commented", "dismissed", "pending")

review_state_enum = Enum(*REVIEW_STATES, name="review_state", native_enum=False, length=32)


class Review(TimestampMixin, Base):
    __tablename__ = "reviews"

    # remote review id
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    pull_request_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("pull_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    state: Mapped[str] = mapped_column(review_state_enum, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_reviews_pull_request", "pull_request_id"),
        Index("idx_reviews_reviewer_submitted", "reviewer_id", "submitted_at"),
    )
