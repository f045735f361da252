from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .age_groups import AgeGroup, STANDARD_AGE_GROUPS, bracket_for_age
from .placements import PlacementResult

SCHEMES = ("overall", "gender", "age", "gender-age")

OVERALL_LABEL = "Overall Results"
DISPLAY_GENDERS = ("Male", "Female")
UNASSIGNED_GENDER = "Unassigned Gender"
UNASSIGNED_AGE = "Unassigned Age"


@dataclass
class NamedGroup:
    label: str
    results: list[PlacementResult] = field(default_factory=list)


def gender_label(gender: Optional[str]) -> str:
    normalized = (gender or "").strip().lower()
    for g in DISPLAY_GENDERS:
        if normalized == g.lower():
            return g
    return UNASSIGNED_GENDER


def age_label(result: PlacementResult, age_groups: tuple[AgeGroup, ...]) -> str:
    group = bracket_for_age(result.age, age_groups)
    return group.label if group else UNASSIGNED_AGE


def _by_elapsed(results: Iterable[PlacementResult]) -> list[PlacementResult]:
    return sorted(results, key=lambda r: r.elapsed_ms)


def _ordered_groups(buckets: dict[str, list[PlacementResult]], order: list[str]) -> list[NamedGroup]:
    return [NamedGroup(label, _by_elapsed(buckets[label])) for label in order if buckets.get(label)]


def categorize(
    results: Iterable[PlacementResult],
    scheme: str,
    age_groups: tuple[AgeGroup, ...] = STANDARD_AGE_GROUPS,
) -> list[NamedGroup]:
    """Group ranked results into display groups.

    ``age_groups`` picks the bracket scheme for the ``age`` and
    ``gender-age`` views; one call never mixes schemes. Empty groups are
    left out.
    """
    if scheme not in SCHEMES:
        raise ValueError(f"Unknown scheme '{scheme}'. Use one of: {', '.join(SCHEMES)}")
    results = list(results)

    if scheme == "overall":
        if not results:
            return []
        return [NamedGroup(OVERALL_LABEL, _by_elapsed(results))]

    gender_order = [*DISPLAY_GENDERS, UNASSIGNED_GENDER]
    age_order = [g.label for g in age_groups] + [UNASSIGNED_AGE]
    buckets: dict[str, list[PlacementResult]] = {}

    if scheme == "gender":
        for r in results:
            buckets.setdefault(gender_label(r.participant.gender), []).append(r)
        return _ordered_groups(buckets, gender_order)

    if scheme == "age":
        for r in results:
            buckets.setdefault(age_label(r, age_groups), []).append(r)
        return _ordered_groups(buckets, age_order)

    for r in results:
        key = f"{gender_label(r.participant.gender)} - {age_label(r, age_groups)}"
        buckets.setdefault(key, []).append(r)
    return _ordered_groups(buckets, [f"{g} - {a}" for g in gender_order for a in age_order])


def is_unassigned(label: str) -> bool:
    return label.startswith(UNASSIGNED_GENDER) or label.endswith(UNASSIGNED_AGE)


def group_places(group: NamedGroup) -> list[Optional[int]]:
    """Place of each result within its group.

    Members of an unassigned bucket are listed but not ranked.
    """
    if is_unassigned(group.label):
        return [None] * len(group.results)
    return list(range(1, len(group.results) + 1))


def search_results(results: Iterable[PlacementResult], query: str) -> list[PlacementResult]:
    q = (query or "").strip().lower()
    if not q:
        return list(results)
    out = []
    for r in results:
        if q.isdigit() and r.bib_number is not None and str(r.bib_number) == q:
            out.append(r)
        elif q in r.participant.full_name.lower():
            out.append(r)
    return out


class GroupRotation:
    """Cycles through a sequence of display groups, one page at a time.

    The sequence can be swapped on every refresh; the cursor stays on the
    same label when it still exists, and wraps otherwise.
    """

    def __init__(self, groups: Optional[list[NamedGroup]] = None):
        self._groups: list[NamedGroup] = list(groups or [])
        self._index = 0

    @property
    def groups(self) -> list[NamedGroup]:
        return list(self._groups)

    @property
    def index(self) -> int:
        return self._index

    def current(self) -> Optional[NamedGroup]:
        if not self._groups:
            return None
        return self._groups[self._index]

    def next(self) -> Optional[NamedGroup]:
        if self._groups:
            self._index = (self._index + 1) % len(self._groups)
        return self.current()

    def previous(self) -> Optional[NamedGroup]:
        if self._groups:
            self._index = (self._index - 1) % len(self._groups)
        return self.current()

    def reset(self) -> None:
        self._index = 0

    def replace(self, groups: list[NamedGroup]) -> None:
        current = self.current()
        self._groups = list(groups)
        if not self._groups:
            self._index = 0
            return
        if current is not None:
            for i, g in enumerate(self._groups):
                if g.label == current.label:
                    self._index = i
                    return
        self._index = self._index % len(self._groups)
