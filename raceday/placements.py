"""
Placement engine.

Turns a race's start time plus the normalised race participant views into
ranked results. Pure: no session, no clock, no logging side effects beyond
reporting anomalies.

Every finisher gets an overall place. Gender and age-group places are
computed independently inside their own partitions; a finisher whose gender
is not one of ``RECOGNIZED_GENDERS`` (or who has no date of birth) keeps a
``None`` place on that axis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from .age_groups import AgeGroup, STANDARD_AGE_GROUPS, age_on, bracket_for_age
from .utils import elapsed_ms, format_elapsed

logger = logging.getLogger(__name__)

RECOGNIZED_GENDERS = ("Male", "Female", "Other")


@dataclass(frozen=True)
class ParticipantView:
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or "Unnamed"


@dataclass(frozen=True)
class FinishTimeView:
    id: int
    finish_time: datetime
    adjusted_time: Optional[datetime] = None

    @property
    def effective(self) -> datetime:
        return effective_finish_time(self)


@dataclass(frozen=True)
class RaceParticipantView:
    id: int
    bib_number: Optional[int]
    participant: ParticipantView
    finish_time: Optional[FinishTimeView] = None


@dataclass
class PlacementResult:
    race_participant_id: int
    bib_number: Optional[int]
    participant: ParticipantView
    finish_time_id: int
    finish_time: datetime  # effective
    original_finish_time: datetime
    elapsed_ms: int
    overall_place: int = 0
    gender_place: Optional[int] = None
    age: Optional[int] = None
    age_group: Optional[str] = None
    age_group_place: Optional[int] = None
    notes: list[str] = field(default_factory=list)

    @property
    def is_adjusted(self) -> bool:
        return self.finish_time != self.original_finish_time

    @property
    def is_anomaly(self) -> bool:
        return self.elapsed_ms < 0

    @property
    def elapsed_str(self) -> str:
        return format_elapsed(self.elapsed_ms)


def effective_finish_time(ft: FinishTimeView) -> datetime:
    return ft.adjusted_time if ft.adjusted_time is not None else ft.finish_time


def _assign_partition_places(results: list[PlacementResult], key, attr: str) -> None:
    counters: dict[str, int] = {}
    for r in results:
        k = key(r)
        if k is None:
            continue
        counters[k] = counters.get(k, 0) + 1
        setattr(r, attr, counters[k])


def compute_placements(
    entries: Iterable[RaceParticipantView],
    start_time: datetime,
    race_date: Optional[date] = None,
    age_groups: tuple[AgeGroup, ...] = STANDARD_AGE_GROUPS,
) -> list[PlacementResult]:
    """Rank every entry that carries a finish time.

    ``start_time`` must be set; an unstarted race has no results and callers
    should not get here. Ages are evaluated on ``race_date`` (defaults to the
    start time's date). Equal elapsed times keep their input order and still
    receive consecutive places.
    """
    reference = race_date or start_time.date()
    results: list[PlacementResult] = []
    for entry in entries:
        ft = entry.finish_time
        if ft is None:
            continue
        effective = effective_finish_time(ft)
        dob = entry.participant.date_of_birth
        age = age_on(dob, reference) if dob is not None else None
        group = bracket_for_age(age, age_groups)
        result = PlacementResult(
            race_participant_id=entry.id,
            bib_number=entry.bib_number,
            participant=entry.participant,
            finish_time_id=ft.id,
            finish_time=effective,
            original_finish_time=ft.finish_time,
            elapsed_ms=elapsed_ms(start_time, effective),
            age=age,
            age_group=group.label if group else None,
        )
        if result.is_anomaly:
            result.notes.append("Finish recorded before race start")
            logger.warning(
                "Negative elapsed time for bib %s (%d ms): check start time or device clock",
                entry.bib_number,
                result.elapsed_ms,
            )
        results.append(result)

    # list.sort is stable, so ties keep input order
    results.sort(key=lambda r: r.elapsed_ms)

    for position, r in enumerate(results, start=1):
        r.overall_place = position

    _assign_partition_places(
        results,
        lambda r: r.participant.gender if r.participant.gender in RECOGNIZED_GENDERS else None,
        "gender_place",
    )
    _assign_partition_places(results, lambda r: r.age_group, "age_group_place")
    return results


def find_anomalies(results: Iterable[PlacementResult]) -> list[PlacementResult]:
    return [r for r in results if r.is_anomaly]
