from __future__ import annotations

import csv
from io import StringIO

from fastapi import APIRouter, Depends, Query
from starlette.responses import Response
from sqlalchemy.orm import Session

from .db import get_session
from . import services

router = APIRouter()

def _csv_response(filename: str, text: str) -> Response:
    return Response(
        content=text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

def _iso(value) -> str:
    return value.isoformat() if value else ""

@router.get("/races/{race_id}/results.csv")
def results_csv(
    race_id: int,
    scheme: str = Query("overall"),
    age_scheme: str = Query("standard"),
    session: Session = Depends(get_session),
):
    race = services.get_race(session, race_id)
    groups = services.get_categorized_results(session, race_id, scheme=scheme, age_scheme=age_scheme)
    buf = StringIO()
    w = csv.writer(buf)
    w.writerow([
        "category", "overall_place", "gender_place", "age_group_place", "bib", "name", "gender",
        "age_group", "elapsed", "elapsed_ms", "finish_time", "original_finish_time", "note",
    ])
    for g in groups:
        for r in g.results:
            w.writerow([
                g.label,
                r.overall_place,
                r.gender_place or "",
                r.age_group_place or "",
                r.bib_number if r.bib_number is not None else "",
                r.participant.full_name,
                r.participant.gender or "",
                r.age_group or "",
                r.elapsed_str,
                r.elapsed_ms,
                _iso(r.finish_time),
                _iso(r.original_finish_time),
                "; ".join(r.notes),
            ])
    safe_name = race.name.replace(" ", "_")
    return _csv_response(f"results_{safe_name}_{scheme}.csv", buf.getvalue())

@router.get("/races/{race_id}/finish-times.csv")
def finish_times_csv(race_id: int, session: Session = Depends(get_session)):
    entries = services.get_race_participants(session, race_id)
    buf = StringIO()
    w = csv.writer(buf)
    w.writerow(["race_participant_id", "bib", "name", "finish_time_id", "finish_time", "adjusted_time"])
    for e in entries:
        if e.finish_time is None:
            continue
        w.writerow([
            e.id,
            e.bib_number if e.bib_number is not None else "",
            e.participant.full_name,
            e.finish_time.id,
            _iso(e.finish_time.finish_time),
            _iso(e.finish_time.adjusted_time),
        ])
    return _csv_response(f"finish-times_{race_id}.csv", buf.getvalue())
