"""
Usage Tracking and Character Quotas.

Persists per-account character counters and an append-only event log in
SQLite through SQLAlchemy. The ledger is consulted before generation
(``check_quota``) and updated after it (``record_usage``).

Concurrency:
    Writers in one process are serialized by a lock; the counter itself is
    incremented with an SQL expression (``characters_used + n``) inside a
    single transaction, so concurrent processes sharing the file never lose
    an update. Billing-cycle resets use compare-and-set on
    ``last_reset_date`` so a given reset happens exactly once.

Usage:
    tracker = UsageTracker("~/.tts-player/tts_usage.db", tier="free")

    check = tracker.check_quota(9000)
    if check.would_exceed:
        ...
    tracker.record_usage(UsageEvent(characters=9000, voice_id="alloy", model="tts-1"))
    print(tracker.get_user_info().characters_remaining)
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from sqlalchemy import case, create_engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tts_player.core.config import Defaults
from tts_player.core.logging import get_logger, info, verbose
from tts_player.usage.models import (
    Base,
    DailyUsage,
    QuotaCheck,
    UsageAccount,
    UsageEvent,
    UsageEventRow,
    UsageRecord,
    UsageStats,
)

_LOG = get_logger("tts-player.usage")

PREVIEW_MAX_CHARS = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _naive(dt: datetime) -> datetime:
    """Naive UTC for storage."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def make_text_preview(text: str) -> str:
    """First 97 characters plus "..." when the text is longer than 100."""
    if len(text) > PREVIEW_MAX_CHARS:
        return text[:PREVIEW_MAX_CHARS - 3] + "..."
    return text


def estimate_cost(characters: int, model: str) -> float:
    """USD cost of ``characters``; unknown models are priced as tts-1-hd."""
    price = Defaults.MODEL_PRICE_PER_CHAR.get(model, Defaults.MODEL_PRICE_PER_CHAR["tts-1-hd"])
    return round(max(0, characters) * price, 6)


class UsageTracker:
    """Quota ledger for one account."""

    def __init__(
        self,
        db_path: str | Path = Defaults.USAGE_DB_PATH,
        account_id: str = Defaults.USAGE_ACCOUNT_ID,
        tier: str = Defaults.USAGE_TIER,
        character_limit: Optional[int] = None,
        billing_cycle_days: int = Defaults.USAGE_BILLING_CYCLE_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if tier not in Defaults.USAGE_TIER_LIMITS:
            raise ValueError(f"unknown tier {tier!r}")
        if billing_cycle_days <= 0:
            raise ValueError(f"billing_cycle_days must be positive, got {billing_cycle_days}")

        self.db_path = Path(db_path).expanduser()
        self.account_id = account_id
        self.tier = tier
        self.character_limit = (
            character_limit if character_limit is not None else Defaults.USAGE_TIER_LIMITS[tier]
        )
        self.billing_cycle = timedelta(days=billing_cycle_days)
        self._clock = clock
        self._write_lock = threading.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"timeout": 30, "check_same_thread": False},
        )
        Base.metadata.create_all(self._engine)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        self._ensure_account()

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _now(self) -> datetime:
        return _naive(self._clock())

    def _ensure_account(self) -> None:
        now = self._now()
        with self._write_lock:
            try:
                with self._sessions.begin() as session:
                    account = session.get(UsageAccount, self.account_id)
                    if account is None:
                        session.add(UsageAccount(
                            account_id=self.account_id,
                            tier=self.tier,
                            character_limit=self.character_limit,
                            characters_used=0,
                            last_reset_date=now,
                            updated_at=now,
                        ))
                        info(_LOG, "usage_account_created", account=self.account_id, tier=self.tier,
                             limit=self.character_limit)
                    elif account.tier != self.tier or account.character_limit != self.character_limit:
                        account.tier = self.tier
                        account.character_limit = self.character_limit
                        account.updated_at = now
            except IntegrityError:
                # Another process created the row first
                verbose(_LOG, "usage_account_exists", account=self.account_id)

    def _account(self, session: Session) -> UsageAccount:
        account = session.get(UsageAccount, self.account_id)
        if account is None:
            raise RuntimeError(f"usage account {self.account_id!r} is missing")
        return account

    def _reset_if_due(self, session: Session, now: datetime) -> bool:
        account = self._account(session)
        last = account.last_reset_date
        elapsed = now - last
        if elapsed < self.billing_cycle:
            return False

        cycle_start = last + (elapsed // self.billing_cycle) * self.billing_cycle
        result = session.execute(
            update(UsageAccount)
            .where(UsageAccount.account_id == self.account_id)
            .where(UsageAccount.last_reset_date == last)
            .values(characters_used=0, last_reset_date=cycle_start, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        session.expire(account)
        if result.rowcount == 1:
            info(_LOG, "usage_cycle_reset", account=self.account_id, cycle_start=cycle_start.isoformat())
            return True
        return False

    def _record_of(self, account: UsageAccount) -> UsageRecord:
        limit = account.character_limit
        used = account.characters_used
        last = _aware(account.last_reset_date)
        return UsageRecord(
            tier=account.tier,
            character_limit=limit,
            characters_used=used,
            characters_remaining=-1 if limit < 0 else max(0, limit - used),
            last_reset_date=last,
            next_reset_date=last + self.billing_cycle,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    def reset_if_due(self) -> bool:
        """Apply a pending billing-cycle reset; True if this call performed it."""
        with self._write_lock, self._sessions.begin() as session:
            return self._reset_if_due(session, self._now())

    def get_user_info(self) -> UsageRecord:
        with self._write_lock, self._sessions.begin() as session:
            self._reset_if_due(session, self._now())
            return self._record_of(self._account(session))

    def check_quota(self, requested_chars: int) -> QuotaCheck:
        """
        Advisory quota check; nothing is reserved.

        ``would_exceed`` is True when used + requested > limit. Unlimited
        tiers never exceed.
        """
        record = self.get_user_info()
        if record.unlimited:
            return QuotaCheck(
                allowed=True,
                would_exceed=False,
                requested=requested_chars,
                used=record.characters_used,
                limit=-1,
                remaining=-1,
            )
        would_exceed = record.characters_used + requested_chars > record.character_limit
        return QuotaCheck(
            allowed=not would_exceed,
            would_exceed=would_exceed,
            requested=requested_chars,
            used=record.characters_used,
            limit=record.character_limit,
            remaining=record.characters_remaining,
        )

    def record_usage(self, event: UsageEvent) -> UsageRecord:
        """
        Append an event; successful events also increment the counter.

        Raises:
            ValueError: If the character count is negative.
        """
        if event.characters < 0:
            raise ValueError(f"characters must be non-negative, got {event.characters}")

        now = self._now()
        timestamp = _naive(event.timestamp) if event.timestamp else now

        with self._write_lock, self._sessions.begin() as session:
            self._reset_if_due(session, now)
            row = UsageEventRow(
                timestamp=timestamp,
                characters=event.characters,
                voice_id=event.voice_id,
                model_id=event.model,
                succeeded=event.succeeded,
                error_message=event.error_message,
                text_preview=event.text_preview,
            )
            session.add(row)
            if event.succeeded and event.characters > 0:
                session.execute(
                    update(UsageAccount)
                    .where(UsageAccount.account_id == self.account_id)
                    .values(
                        characters_used=UsageAccount.characters_used + event.characters,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            session.flush()
            event.id = row.id
            event.timestamp = _aware(timestamp)
            account = self._account(session)
            session.refresh(account)
            record = self._record_of(account)

        verbose(_LOG, "usage_recorded", chars=event.characters, succeeded=event.succeeded,
                used=record.characters_used, limit=record.character_limit)
        return record

    def get_stats(self, window_days: int = 30) -> UsageStats:
        """Aggregate events of the last ``window_days`` days."""
        if window_days <= 0:
            raise ValueError(f"window_days must be positive, got {window_days}")

        since = self._now() - timedelta(days=window_days)
        in_window = UsageEventRow.timestamp >= since
        stats = UsageStats(window_days=window_days)

        with self._sessions() as session:
            total_requests, total_chars, ok_count = session.execute(
                select(
                    func.count(UsageEventRow.id),
                    func.coalesce(func.sum(UsageEventRow.characters), 0),
                    func.coalesce(func.sum(case((UsageEventRow.succeeded.is_(True), 1), else_=0)), 0),
                ).where(in_window)
            ).one()
            stats.total_requests = int(total_requests)
            stats.total_characters = int(total_chars)
            stats.successful_requests = int(ok_count)
            stats.failed_requests = stats.total_requests - stats.successful_requests

            voice_count = func.count(UsageEventRow.id)
            top = session.execute(
                select(UsageEventRow.voice_id, voice_count)
                .where(in_window)
                .group_by(UsageEventRow.voice_id)
                .order_by(voice_count.desc(), UsageEventRow.voice_id)
                .limit(1)
            ).first()
            stats.most_used_voice = top[0] if top else None

            cost = 0.0
            for model_id, chars in session.execute(
                select(UsageEventRow.model_id, func.sum(UsageEventRow.characters))
                .where(in_window, UsageEventRow.succeeded.is_(True))
                .group_by(UsageEventRow.model_id)
            ):
                cost += estimate_cost(int(chars or 0), model_id)
            stats.estimated_cost_usd = round(cost, 6)

            day = func.date(UsageEventRow.timestamp)
            for day_value, chars, count in session.execute(
                select(day, func.sum(UsageEventRow.characters), func.count(UsageEventRow.id))
                .where(in_window)
                .group_by(day)
                .order_by(day)
            ):
                stats.daily_usage.append(DailyUsage(
                    date=datetime.strptime(str(day_value), "%Y-%m-%d").date(),
                    character_count=int(chars or 0),
                    request_count=int(count),
                ))

        return stats

    def get_history(self, limit: int = 50, days: Optional[int] = None) -> List[UsageEvent]:
        """Most recent events first."""
        stmt = select(UsageEventRow).order_by(UsageEventRow.timestamp.desc(), UsageEventRow.id.desc())
        if days is not None:
            stmt = stmt.where(UsageEventRow.timestamp >= self._now() - timedelta(days=days))
        stmt = stmt.limit(max(0, limit))

        with self._sessions() as session:
            return [
                UsageEvent(
                    id=row.id,
                    timestamp=_aware(row.timestamp),
                    characters=row.characters,
                    voice_id=row.voice_id,
                    model=row.model_id,
                    succeeded=row.succeeded,
                    error_message=row.error_message,
                    text_preview=row.text_preview,
                )
                for row in session.scalars(stmt)
            ]

    def cleanup_old_events(self, days: int = Defaults.USAGE_HISTORY_RETENTION_DAYS) -> int:
        """Delete events older than ``days``; returns the number removed."""
        cutoff = self._now() - timedelta(days=days)
        with self._write_lock, self._sessions.begin() as session:
            result = session.execute(delete(UsageEventRow).where(UsageEventRow.timestamp < cutoff))
            removed = result.rowcount or 0
        if removed:
            info(_LOG, "usage_events_cleanup", removed=removed, days=days)
        return removed

    def close(self) -> None:
        self._engine.dispose()
