from __future__ import annotations

from datetime import date, datetime, timezone
from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Participant(Base):
    __tablename__ = "participants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)  # Male | Female | Other
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    race_entries: Mapped[list["RaceParticipant"]] = relationship(back_populates="participant")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or "Unnamed"


class Race(Base):
    __tablename__ = "races"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    race_date: Mapped[date] = mapped_column(Date, nullable=False)
    # null until the race is started; set exactly once
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    race_participants: Mapped[list["RaceParticipant"]] = relationship(
        back_populates="race", cascade="all, delete-orphan"
    )


class RaceParticipant(Base):
    __tablename__ = "race_participants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    race_id: Mapped[int] = mapped_column(ForeignKey("races.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[int] = mapped_column(ForeignKey("participants.id"), nullable=False)
    # null means awaiting assignment
    bib_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    race: Mapped["Race"] = relationship(back_populates="race_participants")
    participant: Mapped["Participant"] = relationship(back_populates="race_entries")
    finish_time: Mapped["FinishTime | None"] = relationship(
        back_populates="race_participant", cascade="all, delete-orphan", uselist=False
    )

    __table_args__ = (
        UniqueConstraint("race_id", "participant_id", name="uq_race_participant"),
        # NULL bibs never collide, so unassigned entries are unconstrained
        UniqueConstraint("race_id", "bib_number", name="uq_race_bib"),
        Index("ix_race_participants_race", "race_id"),
    )


class FinishTime(Base):
    __tablename__ = "finish_times"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    race_participant_id: Mapped[int] = mapped_column(
        ForeignKey("race_participants.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    # raw capture, never overwritten
    finish_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    adjusted_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    race_participant: Mapped["RaceParticipant"] = relationship(back_populates="finish_time")
