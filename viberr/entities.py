# viberr/entities.py
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class ChatSession(Base, TimestampMixin):
    """
    One conversation log per (namespace, session_key).

    `namespace` separates the assistant conversation from the plain visitor
    chat so the same slug can carry both without mixing context.
    """
    __tablename__ = "chat_session"

    namespace: Mapped[str] = mapped_column(String(32), primary_key=True)
    session_key: Mapped[str] = mapped_column(String(255), primary_key=True)

    # ordered list of {"role", "content", "timestamp"}
    messages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_chat_session_key", "session_key"),
    )
