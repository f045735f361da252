from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class AgeGroup:
    label: str
    min_age: int
    max_age: Optional[int] = None  # None = open ended

    def contains(self, age: int) -> bool:
        if age < self.min_age:
            return False
        return self.max_age is None or age <= self.max_age


# Canonical brackets used for age_group_place.
STANDARD_AGE_GROUPS: tuple[AgeGroup, ...] = (
    AgeGroup("0-12", 0, 12),
    AgeGroup("13-17", 13, 17),
    AgeGroup("18-29", 18, 29),
    AgeGroup("30-39", 30, 39),
    AgeGroup("40-49", 40, 49),
    AgeGroup("50-59", 50, 59),
    AgeGroup("60+", 60, None),
)

# Public leaderboard naming.
DISPLAY_AGE_GROUPS: tuple[AgeGroup, ...] = (
    AgeGroup("Youth (Under 18)", 0, 17),
    AgeGroup("Adult (18-29)", 18, 29),
    AgeGroup("Masters (30-39)", 30, 39),
    AgeGroup("Veterans (40-49)", 40, 49),
    AgeGroup("Seniors (50-59)", 50, 59),
    AgeGroup("Super Seniors (60+)", 60, None),
)

AGE_GROUP_SCHEMES: dict[str, tuple[AgeGroup, ...]] = {
    "standard": STANDARD_AGE_GROUPS,
    "display": DISPLAY_AGE_GROUPS,
}


def age_on(date_of_birth: date, reference_date: date) -> int:
    age = reference_date.year - date_of_birth.year
    if (reference_date.month, reference_date.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def bracket_for_age(age: Optional[int], groups: tuple[AgeGroup, ...] = STANDARD_AGE_GROUPS) -> Optional[AgeGroup]:
    if age is None:
        return None
    for group in groups:
        if group.contains(age):
            return group
    return None


def classify(
    date_of_birth: Optional[date],
    reference_date: date,
    groups: tuple[AgeGroup, ...] = STANDARD_AGE_GROUPS,
) -> Optional[AgeGroup]:
    """Age bracket for someone born on ``date_of_birth`` as of ``reference_date``.

    Returns None without a date of birth, or when the birth date lies after
    the reference date.
    """
    if date_of_birth is None:
        return None
    return bracket_for_age(age_on(date_of_birth, reference_date), groups)
