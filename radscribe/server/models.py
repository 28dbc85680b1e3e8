"""SQLAlchemy ORM models: chats, messages, usage events and credit balances.

Nothing here ever holds raw PII.  User messages are stored in their
redacted form, and only entity *types* are kept for audit.  Blocked
requests are not stored at all.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from radscribe.server.db import Base

# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------


class CreditBalance(Base):
    """Running credit total for one organisation.

    ``credits_used`` is only ever changed by a single
    ``UPDATE ... SET credits_used = credits_used + :delta`` so concurrent
    charges cannot lose an update.
    """

    __tablename__ = "credit_balances"

    org_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    credits_granted: Mapped[float] = mapped_column(Float, default=0.0)
    credits_used: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())


class UsageEvent(Base):
    """One charged run.  Append-only: rows are never updated or deleted."""

    __tablename__ = "usage_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), index=True)
    tokens_in: Mapped[int] = mapped_column(Integer, default=0)
    tokens_out: Mapped[int] = mapped_column(Integer, default=0)
    audio_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    pages: Mapped[int] = mapped_column(Integer, default=0)
    credits_charged: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(default=func.now())


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(primary_key=True)
    org_id: Mapped[str] = mapped_column(String(100), index=True)
    title: Mapped[str] = mapped_column(String(200), default="New report")
    template_id: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    messages: Mapped[list[Message]] = relationship(
        back_populates="chat", order_by="Message.id", cascade="all, delete-orphan"
    )


class Message(Base):
    """A user turn (redacted input) or an assistant turn (rendered report)."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    chat_id: Mapped[int] = mapped_column(ForeignKey("chats.id"), index=True)
    role: Mapped[str] = mapped_column(String(20))  # "user" or "assistant"
    text: Mapped[str] = mapped_column(Text, default="")
    json_output: Mapped[str | None] = mapped_column(Text, default=None)
    citations_json: Mapped[str | None] = mapped_column(Text, default=None)
    compliance_json: Mapped[str | None] = mapped_column(Text, default=None)
    pii_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    pii_types: Mapped[str] = mapped_column(String(200), default="")  # comma-separated
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    chat: Mapped[Chat] = relationship(back_populates="messages")
