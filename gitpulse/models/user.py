"""users table."""

from typing import Optional

from sqlalchemy import BigInteger, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from gitpulse.core.database import Base, TimestampMixin


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    login: Mapped[Optional[str]] = mapped_column(Text)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text)
    remote_id: Mapped[Optional[int]] = mapped_column(BigInteger, unique=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_users_email", "email"),
        Index("idx_users_login", "login"),
    )
