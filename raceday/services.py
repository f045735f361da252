from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, and_, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import models
from .age_groups import AGE_GROUP_SCHEMES
from .categorize import NamedGroup, categorize, search_results
from .errors import ConflictError, NotFoundError
from .placements import (
    FinishTimeView,
    ParticipantView,
    PlacementResult,
    RaceParticipantView,
    compute_placements,
)
from .schemas import ParticipantCreate, ParticipantUpdate, RaceCreate
from .utils import as_utc

logger = logging.getLogger(__name__)

# ---------------------------
# Races
# ---------------------------

def create_race(session: Session, payload: RaceCreate) -> models.Race:
    name = payload.name.strip()
    if not name:
        raise ValueError("Race name required")
    race = models.Race(name=name, race_date=payload.race_date)
    session.add(race)
    session.commit()
    logger.info("Created race %s (%s) on %s", race.id, race.name, race.race_date)
    return race

def list_races(session: Session) -> list[models.Race]:
    return session.execute(select(models.Race).order_by(models.Race.race_date.desc())).scalars().all()

def get_race(session: Session, race_id: int) -> models.Race:
    race = session.get(models.Race, race_id)
    if not race:
        raise NotFoundError("Race not found")
    return race

def start_race(session: Session, race_id: int, now: Optional[datetime] = None) -> models.Race:
    """Set the race start time. One-way: a started race cannot be restarted."""
    race = get_race(session, race_id)
    start = as_utc(now) if now else datetime.now(timezone.utc)
    # conditional write so two consoles pressing start cannot both win
    res = session.execute(
        update(models.Race)
        .where(and_(models.Race.id == race_id, models.Race.start_time.is_(None)))
        .values(start_time=start)
    )
    if res.rowcount == 0:
        session.rollback()
        raise ConflictError("Race has already been started")
    session.commit()
    session.refresh(race)
    logger.info("Race %s started at %s", race_id, start.isoformat())
    return race

# ---------------------------
# Participants
# ---------------------------

def create_participant(session: Session, payload: ParticipantCreate) -> models.Participant:
    p = models.Participant(**payload.model_dump())
    session.add(p)
    session.commit()
    return p

def get_participant(session: Session, participant_id: int) -> models.Participant:
    p = session.get(models.Participant, participant_id)
    if not p:
        raise NotFoundError("Participant not found")
    return p

def update_participant(session: Session, participant_id: int, payload: ParticipantUpdate) -> models.Participant:
    p = get_participant(session, participant_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(p, key, value)
    session.commit()
    return p

# ---------------------------
# Race entries / bibs
# ---------------------------

def _bib_taken(session: Session, race_id: int, bib_number: int, exclude_id: Optional[int] = None) -> bool:
    q = select(models.RaceParticipant.id).where(
        and_(models.RaceParticipant.race_id == race_id, models.RaceParticipant.bib_number == bib_number)
    )
    if exclude_id is not None:
        q = q.where(models.RaceParticipant.id != exclude_id)
    return session.execute(q.limit(1)).first() is not None

def _get_race_participant(session: Session, race_id: int, race_participant_id: int) -> models.RaceParticipant:
    rp = session.get(models.RaceParticipant, race_participant_id)
    if not rp or rp.race_id != race_id:
        raise NotFoundError("Race participant not found")
    return rp

def add_participant_to_race(
    session: Session, race_id: int, participant_id: int, bib_number: Optional[int] = None
) -> models.RaceParticipant:
    get_race(session, race_id)
    get_participant(session, participant_id)
    if bib_number is not None and _bib_taken(session, race_id, bib_number):
        raise ConflictError(f"Bib number {bib_number} is already assigned")
    existing = session.execute(
        select(models.RaceParticipant).where(
            and_(
                models.RaceParticipant.race_id == race_id,
                models.RaceParticipant.participant_id == participant_id,
            )
        )
    ).scalar_one_or_none()
    if existing:
        raise ConflictError("Participant is already in this race")
    rp = models.RaceParticipant(race_id=race_id, participant_id=participant_id, bib_number=bib_number)
    session.add(rp)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("Participant or bib number already registered for this race") from exc
    return rp

def update_bib_number(session: Session, race_id: int, race_participant_id: int, bib_number: int) -> models.RaceParticipant:
    rp = _get_race_participant(session, race_id, race_participant_id)
    if _bib_taken(session, race_id, bib_number, exclude_id=rp.id):
        raise ConflictError(f"Bib number {bib_number} is already assigned")
    rp.bib_number = bib_number
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(f"Bib number {bib_number} is already assigned") from exc
    return rp

def remove_participant_from_race(session: Session, race_id: int, race_participant_id: int) -> None:
    rp = _get_race_participant(session, race_id, race_participant_id)
    session.delete(rp)
    session.commit()

def assign_bib_numbers(session: Session, race_id: int) -> list[models.RaceParticipant]:
    """Give every entry without a bib the next free numbers, in registration order."""
    get_race(session, race_id)
    entries = session.execute(
        select(models.RaceParticipant)
        .where(models.RaceParticipant.race_id == race_id)
        .order_by(models.RaceParticipant.id.asc())
    ).scalars().all()
    used = {rp.bib_number for rp in entries if rp.bib_number is not None}
    changed = []
    candidate = 1
    for rp in entries:
        if rp.bib_number is not None:
            continue
        while candidate in used:
            candidate += 1
        rp.bib_number = candidate
        used.add(candidate)
        changed.append(rp)
    session.commit()
    if changed:
        logger.info("Assigned %d bib numbers in race %s", len(changed), race_id)
    return changed

# ---------------------------
# Read model
# ---------------------------

def to_view(rp: models.RaceParticipant) -> RaceParticipantView:
    p = rp.participant
    ft = rp.finish_time
    return RaceParticipantView(
        id=rp.id,
        bib_number=rp.bib_number,
        participant=ParticipantView(
            id=p.id,
            first_name=p.first_name,
            last_name=p.last_name,
            gender=p.gender,
            date_of_birth=p.date_of_birth,
        ),
        finish_time=(
            FinishTimeView(id=ft.id, finish_time=as_utc(ft.finish_time), adjusted_time=as_utc(ft.adjusted_time))
            if ft is not None
            else None
        ),
    )

def get_race_participants(session: Session, race_id: int) -> list[RaceParticipantView]:
    """Entries of a race ordered by bib (unassigned last), finish time normalised."""
    get_race(session, race_id)
    rows = session.execute(
        select(models.RaceParticipant)
        .where(models.RaceParticipant.race_id == race_id)
        .options(
            selectinload(models.RaceParticipant.participant),
            selectinload(models.RaceParticipant.finish_time),
        )
        .order_by(
            models.RaceParticipant.bib_number.is_(None),
            models.RaceParticipant.bib_number.asc(),
            models.RaceParticipant.id.asc(),
        )
    ).scalars().all()
    return [to_view(rp) for rp in rows]

# ---------------------------
# Finish times
# ---------------------------

@dataclass
class BibResult:
    bib_number: int
    finish_time_id: Optional[int] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error

def _find_by_bib(session: Session, race_id: int, bib_number: int) -> Optional[models.RaceParticipant]:
    return session.execute(
        select(models.RaceParticipant).where(
            and_(models.RaceParticipant.race_id == race_id, models.RaceParticipant.bib_number == bib_number)
        )
    ).scalar_one_or_none()

def record_finish_time(
    session: Session, race_id: int, bib_number: int, timestamp: Optional[datetime] = None
) -> models.FinishTime:
    """Record a finish for ``bib_number``. Never overwrites an existing finish."""
    race = get_race(session, race_id)
    if race.start_time is None:
        raise ConflictError("Race has not been started yet")
    rp = _find_by_bib(session, race_id, bib_number)
    if not rp:
        logger.info("Rejected finish for bib %s in race %s: not found", bib_number, race_id)
        raise NotFoundError(f"Bib number {bib_number} not found in this race")

    existing = session.execute(
        select(models.FinishTime.id).where(models.FinishTime.race_participant_id == rp.id)
    ).first()
    if existing:
        logger.info("Rejected finish for bib %s in race %s: already finished", bib_number, race_id)
        raise ConflictError(f"Bib number {bib_number} has already finished")

    ft = models.FinishTime(
        race_participant_id=rp.id,
        finish_time=as_utc(timestamp) if timestamp else datetime.now(timezone.utc),
    )
    session.add(ft)
    try:
        session.commit()
    except IntegrityError as exc:
        # another device won the race between check and insert
        session.rollback()
        logger.info("Rejected finish for bib %s in race %s: concurrent insert", bib_number, race_id)
        raise ConflictError(f"Bib number {bib_number} has already finished") from exc
    logger.info("Recorded finish for bib %s in race %s at %s", bib_number, race_id, ft.finish_time.isoformat())
    return ft

def record_multiple_finish_times(
    session: Session, race_id: int, bib_numbers: list[int], timestamp: Optional[datetime] = None
) -> list[BibResult]:
    """Record several co-finishers with one shared timestamp; each bib settles on its own."""
    shared = as_utc(timestamp) if timestamp else datetime.now(timezone.utc)
    out: list[BibResult] = []
    for bib in bib_numbers:
        try:
            ft = record_finish_time(session, race_id, bib, shared)
        except ValueError as e:
            out.append(BibResult(bib_number=bib, error=str(e)))
        else:
            out.append(BibResult(bib_number=bib, finish_time_id=ft.id))
    return out

def get_finish_time(session: Session, finish_time_id: int) -> models.FinishTime:
    ft = session.get(models.FinishTime, finish_time_id)
    if not ft:
        raise NotFoundError("Finish time not found")
    return ft

def update_finish_time(session: Session, finish_time_id: int, new_timestamp: datetime) -> models.FinishTime:
    """Correct a finish. The original capture stays in ``finish_time``."""
    ft = get_finish_time(session, finish_time_id)
    ft.adjusted_time = as_utc(new_timestamp)
    session.commit()
    logger.info("Adjusted finish time %s to %s", finish_time_id, ft.adjusted_time.isoformat())
    return ft

def delete_finish_time(session: Session, finish_time_id: int) -> None:
    ft = get_finish_time(session, finish_time_id)
    session.delete(ft)
    session.commit()
    logger.info("Deleted finish time %s", finish_time_id)

# ---------------------------
# Results
# ---------------------------

def get_placements(session: Session, race_id: int) -> list[PlacementResult]:
    race = get_race(session, race_id)
    if race.start_time is None:
        return []
    entries = get_race_participants(session, race_id)
    return compute_placements(entries, as_utc(race.start_time), race_date=race.race_date)

def resolve_age_scheme(name: str):
    try:
        return AGE_GROUP_SCHEMES[name]
    except KeyError:
        raise ValueError(f"Unknown age scheme '{name}'. Use one of: {', '.join(AGE_GROUP_SCHEMES)}") from None

def get_categorized_results(
    session: Session, race_id: int, scheme: str = "overall", age_scheme: str = "standard", query: str = ""
) -> list[NamedGroup]:
    age_groups = resolve_age_scheme(age_scheme)
    results = search_results(get_placements(session, race_id), query)
    return categorize(results, scheme, age_groups=age_groups)

@dataclass
class RaceStats:
    total: int
    finished: int

    @property
    def still_racing(self) -> int:
        return self.total - self.finished

def race_stats(session: Session, race_id: int) -> RaceStats:
    get_race(session, race_id)
    total = session.execute(
        select(func.count(models.RaceParticipant.id)).where(models.RaceParticipant.race_id == race_id)
    ).scalar_one()
    finished = session.execute(
        select(func.count(models.FinishTime.id))
        .join(models.RaceParticipant, models.FinishTime.race_participant_id == models.RaceParticipant.id)
        .where(models.RaceParticipant.race_id == race_id)
    ).scalar_one()
    return RaceStats(total=total, finished=finished)

def recent_finishes(session: Session, race_id: int, limit: int = 10) -> list[PlacementResult]:
    results = get_placements(session, race_id)
    results.sort(key=lambda r: r.finish_time, reverse=True)
    return results[:limit]
