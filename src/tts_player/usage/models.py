"""SQLAlchemy ORM models and value objects for the usage ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for the usage tables."""


class UsageAccount(Base):
    """Quota counters for one account; one row per account_id."""

    __tablename__ = "usage_accounts"

    account_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    character_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    characters_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Naive UTC; SQLite does not keep offsets
    last_reset_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class UsageEventRow(Base):
    """Append-only log of generation attempts."""

    __tablename__ = "usage_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    characters: Mapped[int] = mapped_column(Integer, nullable=False)
    voice_id: Mapped[str] = mapped_column(String(64), nullable=False)
    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    text_preview: Mapped[str | None] = mapped_column(Text, nullable=True)


@dataclass
class UsageRecord:
    """
    Quota snapshot for an account.

    ``character_limit`` and ``characters_remaining`` are -1 for unlimited
    tiers.
    """
    tier: str
    character_limit: int
    characters_used: int
    characters_remaining: int
    last_reset_date: datetime
    next_reset_date: datetime

    @property
    def unlimited(self) -> bool:
        return self.character_limit < 0

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "character_limit": self.character_limit,
            "characters_used": self.characters_used,
            "characters_remaining": self.characters_remaining,
            "last_reset_date": self.last_reset_date.isoformat(),
            "next_reset_date": self.next_reset_date.isoformat(),
        }


@dataclass
class UsageEvent:
    """One generation attempt, successful or not."""
    characters: int
    voice_id: str
    model: str
    succeeded: bool = True
    error_message: Optional[str] = None
    text_preview: Optional[str] = None
    timestamp: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "characters": self.characters,
            "voice_id": self.voice_id,
            "model": self.model,
            "succeeded": self.succeeded,
            "error_message": self.error_message,
            "text_preview": self.text_preview,
        }


@dataclass
class DailyUsage:
    date: date
    character_count: int
    request_count: int


@dataclass
class UsageStats:
    window_days: int
    total_requests: int = 0
    total_characters: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    most_used_voice: Optional[str] = None
    estimated_cost_usd: float = 0.0
    daily_usage: List[DailyUsage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "window_days": self.window_days,
            "total_requests": self.total_requests,
            "total_characters": self.total_characters,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "most_used_voice": self.most_used_voice,
            "estimated_cost_usd": self.estimated_cost_usd,
            "daily_usage": [
                {"date": d.date.isoformat(), "character_count": d.character_count, "request_count": d.request_count}
                for d in self.daily_usage
            ],
        }


@dataclass
class QuotaCheck:
    """Advisory result of UsageTracker.check_quota()."""
    allowed: bool
    would_exceed: bool
    requested: int
    used: int
    limit: int
    remaining: int

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "would_exceed": self.would_exceed,
            "requested": self.requested,
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
        }
