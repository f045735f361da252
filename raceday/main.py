from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from . import services
from .categorize import NamedGroup, group_places
from .db import dispose_db, get_session, init_db
from .errors import ConflictError, NotFoundError
from .log import setup_logging
from .placements import PlacementResult, find_anomalies
from .schemas import (
    BibOutcome,
    BibUpdate,
    FinishTimeAdjust,
    FinishTimeBatchCreate,
    FinishTimeCreate,
    FinishTimeOut,
    NamedGroupOut,
    ParticipantCreate,
    ParticipantOut,
    ParticipantUpdate,
    PlacementOut,
    RaceCreate,
    RaceOut,
    RaceParticipantCreate,
    RaceParticipantOut,
    RaceStart,
    ResultsOut,
    TimingOut,
)
from .settings import settings
from .utils import as_utc, classify_race_status, format_elapsed

app = FastAPI(title="Raceday")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals["format_elapsed"] = format_elapsed


@app.on_event("startup")
def _startup() -> None:
    setup_logging()
    init_db()


@app.on_event("shutdown")
def _shutdown() -> None:
    dispose_db()


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(ConflictError)
async def _conflict(request: Request, exc: ConflictError):
    return JSONResponse({"detail": str(exc)}, status_code=409)


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError):
    return JSONResponse({"detail": str(exc)}, status_code=400)


# ---------------------------
# Serializers
# ---------------------------

def race_out(race) -> RaceOut:
    return RaceOut(id=race.id, name=race.name, race_date=race.race_date, start_time=as_utc(race.start_time))


def participant_out(p) -> ParticipantOut:
    return ParticipantOut(
        id=p.id, first_name=p.first_name, last_name=p.last_name, gender=p.gender, date_of_birth=p.date_of_birth
    )


def finish_time_out(ft) -> FinishTimeOut:
    return FinishTimeOut(id=ft.id, finish_time=as_utc(ft.finish_time), adjusted_time=as_utc(ft.adjusted_time))


def placement_out(r: PlacementResult, place: Optional[int] = None) -> PlacementOut:
    return PlacementOut(
        place=place,
        race_participant_id=r.race_participant_id,
        bib_number=r.bib_number,
        name=r.participant.full_name,
        gender=r.participant.gender,
        finish_time_id=r.finish_time_id,
        finish_time=r.finish_time,
        original_finish_time=r.original_finish_time,
        adjusted=r.is_adjusted,
        elapsed_ms=r.elapsed_ms,
        elapsed=r.elapsed_str,
        overall_place=r.overall_place,
        gender_place=r.gender_place,
        age_group=r.age_group,
        age_group_place=r.age_group_place,
        anomaly=r.is_anomaly,
        notes=list(r.notes),
    )


def groups_out(groups: list[NamedGroup]) -> list[NamedGroupOut]:
    return [
        NamedGroupOut(
            label=g.label,
            results=[placement_out(r, place) for r, place in zip(g.results, group_places(g))],
        )
        for g in groups
    ]


def build_results(session: Session, race_id: int, scheme: str, age_scheme: str, q: str) -> ResultsOut:
    race = services.get_race(session, race_id)
    groups = services.get_categorized_results(session, race_id, scheme=scheme, age_scheme=age_scheme, query=q)
    placements = services.get_placements(session, race_id)
    return ResultsOut(
        race=race_out(race),
        started=race.start_time is not None,
        scheme=scheme,
        finishers=len(placements),
        groups=groups_out(groups),
        anomalies=[r.bib_number for r in find_anomalies(placements) if r.bib_number is not None],
    )


# ---------------------------
# Health
# ---------------------------

@app.get("/api/health")
def health():
    return {"ok": True}


# ---------------------------
# Races
# ---------------------------

@app.post("/api/races", response_model=RaceOut, status_code=201)
def create_race(payload: RaceCreate, session: Session = Depends(get_session)):
    return race_out(services.create_race(session, payload))


@app.get("/api/races")
def list_races(session: Session = Depends(get_session)):
    today = date.today()
    return [
        {**race_out(r).model_dump(mode="json"), "status": classify_race_status(r.race_date, today, r.start_time is not None)}
        for r in services.list_races(session)
    ]


@app.get("/api/races/{race_id}", response_model=RaceOut)
def get_race(race_id: int, session: Session = Depends(get_session)):
    return race_out(services.get_race(session, race_id))


@app.post("/api/races/{race_id}/start", response_model=RaceOut)
def start_race(race_id: int, payload: RaceStart | None = None, session: Session = Depends(get_session)):
    now = payload.start_time if payload else None
    return race_out(services.start_race(session, race_id, now=now))


# ---------------------------
# Participants and race entries
# ---------------------------

@app.post("/api/participants", response_model=ParticipantOut, status_code=201)
def create_participant(payload: ParticipantCreate, session: Session = Depends(get_session)):
    return participant_out(services.create_participant(session, payload))


@app.patch("/api/participants/{participant_id}", response_model=ParticipantOut)
def update_participant(participant_id: int, payload: ParticipantUpdate, session: Session = Depends(get_session)):
    return participant_out(services.update_participant(session, participant_id, payload))


@app.get("/api/races/{race_id}/participants", response_model=list[RaceParticipantOut])
def race_participants(race_id: int, session: Session = Depends(get_session)):
    return [
        RaceParticipantOut(
            id=v.id,
            bib_number=v.bib_number,
            participant=ParticipantOut(
                id=v.participant.id,
                first_name=v.participant.first_name,
                last_name=v.participant.last_name,
                gender=v.participant.gender,
                date_of_birth=v.participant.date_of_birth,
            ),
            finish_time=(
                FinishTimeOut(id=v.finish_time.id, finish_time=v.finish_time.finish_time, adjusted_time=v.finish_time.adjusted_time)
                if v.finish_time
                else None
            ),
        )
        for v in services.get_race_participants(session, race_id)
    ]


@app.post("/api/races/{race_id}/participants", status_code=201)
def add_participant_to_race(race_id: int, payload: RaceParticipantCreate, session: Session = Depends(get_session)):
    rp = services.add_participant_to_race(session, race_id, payload.participant_id, payload.bib_number)
    return {"id": rp.id, "race_id": rp.race_id, "participant_id": rp.participant_id, "bib_number": rp.bib_number}


@app.patch("/api/races/{race_id}/participants/{race_participant_id}")
def update_bib(race_id: int, race_participant_id: int, payload: BibUpdate, session: Session = Depends(get_session)):
    rp = services.update_bib_number(session, race_id, race_participant_id, payload.bib_number)
    return {"id": rp.id, "bib_number": rp.bib_number}


@app.delete("/api/races/{race_id}/participants/{race_participant_id}")
def remove_participant(race_id: int, race_participant_id: int, session: Session = Depends(get_session)):
    services.remove_participant_from_race(session, race_id, race_participant_id)
    return {"ok": True}


@app.post("/api/races/{race_id}/bibs/assign")
def assign_bibs(race_id: int, session: Session = Depends(get_session)):
    changed = services.assign_bib_numbers(session, race_id)
    return {"ok": True, "assigned": [{"id": rp.id, "bib_number": rp.bib_number} for rp in changed]}


# ---------------------------
# Finish times
# ---------------------------

@app.post("/api/races/{race_id}/finish-times", response_model=FinishTimeOut, status_code=201)
def record_finish_time(race_id: int, payload: FinishTimeCreate, session: Session = Depends(get_session)):
    return finish_time_out(services.record_finish_time(session, race_id, payload.bib_number, payload.timestamp))


@app.post("/api/races/{race_id}/finish-times/batch")
def record_finish_times(race_id: int, payload: FinishTimeBatchCreate, session: Session = Depends(get_session)):
    outcomes = services.record_multiple_finish_times(session, race_id, payload.bib_numbers, payload.timestamp)
    recorded = sum(1 for o in outcomes if o.ok)
    return {
        "ok": recorded > 0,
        "message": f"Recorded {recorded} finish time{'s' if recorded != 1 else ''}" if recorded else "No finish times recorded",
        "results": [
            BibOutcome(bib_number=o.bib_number, ok=o.ok, finish_time_id=o.finish_time_id, error=o.error or None).model_dump()
            for o in outcomes
        ],
    }


@app.patch("/api/finish-times/{finish_time_id}", response_model=FinishTimeOut)
def adjust_finish_time(finish_time_id: int, payload: FinishTimeAdjust, session: Session = Depends(get_session)):
    return finish_time_out(services.update_finish_time(session, finish_time_id, payload.adjusted_time))


@app.delete("/api/finish-times/{finish_time_id}")
def delete_finish_time(finish_time_id: int, session: Session = Depends(get_session)):
    services.delete_finish_time(session, finish_time_id)
    return {"ok": True}


# ---------------------------
# Results
# ---------------------------

@app.get("/api/races/{race_id}/results", response_model=ResultsOut)
def results(
    race_id: int,
    scheme: str = Query("overall"),
    age_scheme: str = Query("standard"),
    q: str = Query(""),
    session: Session = Depends(get_session),
):
    return build_results(session, race_id, scheme, age_scheme, q)


@app.get("/api/races/{race_id}/timing", response_model=TimingOut)
def timing(race_id: int, limit: int = Query(10, ge=1, le=100), session: Session = Depends(get_session)):
    race = services.get_race(session, race_id)
    stats = services.race_stats(session, race_id)
    return TimingOut(
        race=race_out(race),
        total=stats.total,
        finished=stats.finished,
        still_racing=stats.still_racing,
        recent=[placement_out(r) for r in services.recent_finishes(session, race_id, limit)],
    )


@app.get("/races/{race_id}/board", response_class=HTMLResponse)
def results_board(
    request: Request,
    race_id: int,
    scheme: str = Query("overall"),
    age_scheme: str = Query("display"),
    session: Session = Depends(get_session),
):
    try:
        payload = build_results(session, race_id, scheme, age_scheme, "")
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Race not found")
    if request.query_params.get("format") == "json":
        return JSONResponse(payload.model_dump(mode="json"))
    poll = request.url.include_query_params(format="json")
    return templates.TemplateResponse(
        request,
        "board.html",
        {
            "results": payload,
            "json_url": f"{poll.path}?{poll.query}",
            "poll_ms": settings.RESULTS_POLL_MS,
            "rotate_ms": settings.BOARD_ROTATE_MS,
        },
    )


from .csv_export import router as csv_router
app.include_router(csv_router, prefix="/api", tags=["csv"])
