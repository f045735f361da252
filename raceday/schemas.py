from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

# ---------------------------
# Requests
# ---------------------------

class RaceCreate(BaseModel):
    name: str
    race_date: date

class RaceStart(BaseModel):
    start_time: Optional[datetime] = None  # defaults to server now

class ParticipantCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None

class ParticipantUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None

class RaceParticipantCreate(BaseModel):
    participant_id: int
    bib_number: Optional[int] = Field(default=None, ge=1)

class BibUpdate(BaseModel):
    bib_number: int = Field(ge=1)

class FinishTimeCreate(BaseModel):
    bib_number: int
    timestamp: Optional[datetime] = None

class FinishTimeBatchCreate(BaseModel):
    bib_numbers: list[int] = Field(min_length=1)
    timestamp: Optional[datetime] = None

class FinishTimeAdjust(BaseModel):
    adjusted_time: datetime

# ---------------------------
# Responses
# ---------------------------

class RaceOut(BaseModel):
    id: int
    name: str
    race_date: date
    start_time: Optional[datetime] = None

class ParticipantOut(BaseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[date] = None

class FinishTimeOut(BaseModel):
    id: int
    finish_time: datetime
    adjusted_time: Optional[datetime] = None

class RaceParticipantOut(BaseModel):
    id: int
    bib_number: Optional[int] = None
    participant: ParticipantOut
    finish_time: Optional[FinishTimeOut] = None

class BibOutcome(BaseModel):
    bib_number: int
    ok: bool
    finish_time_id: Optional[int] = None
    error: Optional[str] = None

class PlacementOut(BaseModel):
    race_participant_id: int
    bib_number: Optional[int] = None
    name: str
    gender: Optional[str] = None
    finish_time_id: int
    finish_time: datetime
    original_finish_time: datetime
    adjusted: bool
    elapsed_ms: int
    elapsed: str
    overall_place: int
    gender_place: Optional[int] = None
    age_group: Optional[str] = None
    age_group_place: Optional[int] = None
    anomaly: bool = False
    notes: list[str] = Field(default_factory=list)
    place: Optional[int] = None  # within the enclosing group

class NamedGroupOut(BaseModel):
    label: str
    results: list[PlacementOut]

class ResultsOut(BaseModel):
    race: RaceOut
    started: bool
    scheme: str
    finishers: int
    groups: list[NamedGroupOut]
    anomalies: list[int] = Field(default_factory=list)  # bib numbers

class TimingOut(BaseModel):
    race: RaceOut
    total: int
    finished: int
    still_racing: int
    recent: list[PlacementOut]
