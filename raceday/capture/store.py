"""
Durable local queue of captured finishes.

Lives in its own SQLite file on the operator's device, separate from the
record store, so a capture survives a crash or a restart before it ever
reaches the server. Rows are keyed by race id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import String, Integer, DateTime, Index, create_engine, select, and_, delete
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..settings import settings
from ..utils import as_utc

PENDING = "pending"
SYNCED = "synced"
ERROR = "error"


class CaptureBase(DeclarativeBase):
    pass


class QueuedFinish(CaptureBase):
    __tablename__ = "queued_finishes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    race_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bib_number: Mapped[int] = mapped_column(Integer, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    state: Mapped[str] = mapped_column(String(10), nullable=False, default=PENDING)  # pending | synced | error
    error: Mapped[str | None] = mapped_column(String, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    finish_time_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    queued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_queued_race_state", "race_id", "state"),)


@dataclass(frozen=True)
class QueueItem:
    id: int
    race_id: int
    bib_number: int
    captured_at: datetime
    state: str
    error: Optional[str] = None
    attempts: int = 0
    finish_time_id: Optional[int] = None
    settled_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.state == PENDING


def _item(row: QueuedFinish) -> QueueItem:
    return QueueItem(
        id=row.id,
        race_id=row.race_id,
        bib_number=row.bib_number,
        captured_at=as_utc(row.captured_at),
        state=row.state,
        error=row.error,
        attempts=row.attempts,
        finish_time_id=row.finish_time_id,
        settled_at=as_utc(row.settled_at),
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CaptureStore:
    def __init__(self, url: Optional[str] = None):
        url = url or settings.CAPTURE_QUEUE_URL
        kwargs = {}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._engine = create_engine(url, future=True, echo=False, connect_args=connect_args, **kwargs)
        self._Session = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False, future=True)
        CaptureBase.metadata.create_all(bind=self._engine)

    def close(self) -> None:
        self._engine.dispose()

    def add(self, race_id: int, bib_numbers: list[int], captured_at: datetime) -> list[QueueItem]:
        """Persist one pending row per bib in a single transaction."""
        now = _now()
        with self._Session() as s:
            rows = [
                QueuedFinish(
                    race_id=race_id,
                    bib_number=bib,
                    captured_at=as_utc(captured_at),
                    state=PENDING,
                    queued_at=now,
                )
                for bib in bib_numbers
            ]
            s.add_all(rows)
            s.commit()
            return [_item(r) for r in rows]

    def get(self, item_id: int) -> Optional[QueueItem]:
        with self._Session() as s:
            row = s.get(QueuedFinish, item_id)
            return _item(row) if row else None

    def _by_state(self, race_id: int, state: str) -> list[QueueItem]:
        with self._Session() as s:
            rows = s.execute(
                select(QueuedFinish)
                .where(and_(QueuedFinish.race_id == race_id, QueuedFinish.state == state))
                .order_by(QueuedFinish.id.asc())
            ).scalars().all()
            return [_item(r) for r in rows]

    def pending(self, race_id: int) -> list[QueueItem]:
        return self._by_state(race_id, PENDING)

    def errors(self, race_id: int) -> list[QueueItem]:
        return self._by_state(race_id, ERROR)

    def synced(self, race_id: int) -> list[QueueItem]:
        return self._by_state(race_id, SYNCED)

    def _update(self, item_id: int, **values) -> Optional[QueueItem]:
        with self._Session() as s:
            row = s.get(QueuedFinish, item_id)
            if row is None:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            s.commit()
            return _item(row)

    def record_attempt(self, item_id: int) -> Optional[QueueItem]:
        with self._Session() as s:
            row = s.get(QueuedFinish, item_id)
            if row is None:
                return None
            row.attempts += 1
            s.commit()
            return _item(row)

    def mark_synced(self, item_id: int, finish_time_id: Optional[int] = None) -> Optional[QueueItem]:
        return self._update(item_id, state=SYNCED, error=None, finish_time_id=finish_time_id, settled_at=_now())

    def mark_error(self, item_id: int, reason: str) -> Optional[QueueItem]:
        return self._update(item_id, state=ERROR, error=reason, settled_at=_now())

    def remove(self, item_id: int) -> bool:
        with self._Session() as s:
            res = s.execute(delete(QueuedFinish).where(QueuedFinish.id == item_id))
            s.commit()
            return res.rowcount > 0

    def purge_synced(self, race_id: int, older_than: timedelta, now: Optional[datetime] = None) -> int:
        cutoff = (now or _now()) - older_than
        removed = 0
        # compare in Python: SQLite stores naive datetimes
        for item in self.synced(race_id):
            if item.settled_at is not None and item.settled_at <= cutoff:
                removed += int(self.remove(item.id))
        return removed
