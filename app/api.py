"""FastAPI surface over the checkpoint roster database.

Handlers stay thin: parse input, call the service helpers, encode the result.
"Now" is resolved once per request in the schedule timezone and passed down.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure legacy absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import (  # noqa: E402
    auto_time,
    create_vacation,
    delete_shifts_for_date,
    delete_vacation,
    delete_weekly_pattern,
    get_officer_shift,
    get_schedule_log,
    get_shifts_for_date,
    init_database,
    list_users,
    list_vacations,
    list_weekly_patterns,
    recent_officer_shifts,
    rule_to_dict,
    set_auto_time,
    upsert_weekly_pattern,
)
from choices import ChoiceRejected, choice_window_status, submit_shift_choice  # noqa: E402
from generator.api import generate_schedule_for_date, last_schedule_summary, run_auto_schedule  # noqa: E402
from generator.availability import get_available_officers  # noqa: E402
from generator.capacity import preview_rule, set_rule  # noqa: E402
from policy import VACATION_APPROVED, parse_calendar_date, schedule_zone  # noqa: E402
from validation import validate_day_schedule  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("checkpoint.api")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Checkpoint Roster API", version="0.1", lifespan=lifespan)


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_db():
    db = database.UserSessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_time() -> datetime.datetime:
    return datetime.datetime.now(schedule_zone())


def _parse_date(value: Any, field: str = "date") -> datetime.date:
    try:
        return parse_calendar_date(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


def _parse_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} must be an integer")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/officers")
def officers(only_active: bool = Query(True), user_db=Depends(get_user_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder({"officers": list_users(user_db, only_active=only_active)}))


@app.get("/api/v1/officers/available")
def available_officers(date: str = Query(...), db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    target = _parse_date(date)
    available = get_available_officers(db, target, user_session=user_db)
    return JSONResponse(content=jsonable_encoder({"date": target.isoformat(), "count": len(available), "officers": available}))


@app.get("/api/v1/officers/{user_id}/shifts")
def officer_shifts(user_id: int, db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder({"user_id": user_id, "shifts": recent_officer_shifts(db, user_id)}))


@app.get("/api/v1/officers/{user_id}/shifts/{day}")
def officer_day(user_id: int, day: str, db=Depends(get_db)) -> JSONResponse:
    target = _parse_date(day)
    return JSONResponse(content=jsonable_encoder({"shift": get_officer_shift(db, user_id, target)}))


@app.get("/api/v1/rules/{day}")
def get_rule(day: str, db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    target = _parse_date(day)
    morning_limit, afternoon_limit, is_manual = preview_rule(db, target, user_session=user_db)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "date": target.isoformat(),
                "morning_limit": morning_limit,
                "afternoon_limit": afternoon_limit,
                "is_manual": is_manual,
            }
        )
    )


@app.post("/api/v1/rules")
def save_rule(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    target = _parse_date(payload.get("date"))
    try:
        rule = set_rule(db, target, payload.get("morning_limit"), payload.get("afternoon_limit"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"rule": rule_to_dict(rule)}))


@app.get("/api/v1/shifts")
def shifts_for_date(date: str = Query(...), db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    target = _parse_date(date)
    shifts = get_shifts_for_date(db, target, user_session=user_db)
    return JSONResponse(content=jsonable_encoder({"date": target.isoformat(), "shifts": shifts}))


@app.post("/api/v1/shifts/generate")
def generate_shifts(payload: Dict[str, Any]) -> JSONResponse:
    target = _parse_date(payload.get("date"))
    is_auto = payload.get("is_auto") is True
    try:
        result = generate_schedule_for_date(
            database.SessionLocal,
            target,
            is_auto=is_auto,
            user_session_factory=database.UserSessionLocal,
        )
    except Exception as exc:  # pragma: no cover - surface generator errors
        logger.exception("Schedule generation failed for %s", target.isoformat())
        raise HTTPException(status_code=500, detail=f"schedule generation failed: {exc}") from exc
    return JSONResponse(content=jsonable_encoder(result))


@app.delete("/api/v1/shifts/{day}")
def clear_shifts(day: str, db=Depends(get_db)) -> JSONResponse:
    target = _parse_date(day)
    deleted = delete_shifts_for_date(db, target)
    return JSONResponse(content=jsonable_encoder({"date": target.isoformat(), "deleted": deleted}))


@app.get("/api/v1/shifts/{day}/status")
def shift_status(day: str, db=Depends(get_db)) -> JSONResponse:
    target = _parse_date(day)
    return JSONResponse(content=jsonable_encoder(choice_window_status(db, target, current_time())))


@app.get("/api/v1/shifts/{day}/validate")
def validate_shifts(day: str, db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    target = _parse_date(day)
    return JSONResponse(content=jsonable_encoder(validate_day_schedule(db, target, user_session=user_db)))


@app.post("/api/v1/choices")
def choose_shift(payload: Dict[str, Any], db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    if payload.get("user_id") is None or not payload.get("date"):
        raise HTTPException(status_code=400, detail="Missing fields")
    user_id = _parse_int(payload.get("user_id"), "user_id")
    target = _parse_date(payload.get("date"))
    try:
        saved = submit_shift_choice(
            db,
            user_id,
            target,
            str(payload.get("choice") or ""),
            current_time(),
            user_session=user_db,
        )
    except ChoiceRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {"choice": {"id": saved.id, "user_id": saved.user_id, "date": saved.date.isoformat(), "choice": saved.choice}}
        )
    )


@app.get("/api/v1/schedule-log/latest")
def latest_log(db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(last_schedule_summary(db)))


@app.get("/api/v1/schedule-log/{day}")
def schedule_log(day: str, db=Depends(get_db)) -> JSONResponse:
    target = _parse_date(day)
    log = get_schedule_log(db, target)
    payload: Optional[Dict[str, Any]] = None
    if log:
        payload = {
            "date": log.date.isoformat(),
            "is_auto": bool(log.is_auto),
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
    return JSONResponse(content=jsonable_encoder({"log": payload}))


@app.post("/api/v1/schedule/auto-run")
def auto_run() -> JSONResponse:
    try:
        result = run_auto_schedule(
            database.SessionLocal,
            current_time(),
            user_session_factory=database.UserSessionLocal,
        )
    except Exception as exc:  # pragma: no cover - surface generator errors
        logger.exception("Automatic schedule run failed")
        raise HTTPException(status_code=500, detail=f"schedule generation failed: {exc}") from exc
    return JSONResponse(content=jsonable_encoder(result))


@app.get("/api/v1/settings/auto")
def get_auto_setting(db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder({"auto_time_24": auto_time(db)}))


@app.post("/api/v1/settings/auto")
def save_auto_setting(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        setting = set_auto_time(db, str(payload.get("auto_time_24") or ""))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"auto_time_24": setting.auto_time_24}))


@app.get("/api/v1/patterns/{kind}")
def patterns(kind: str, db=Depends(get_db)) -> JSONResponse:
    try:
        rows = list_weekly_patterns(db, kind)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"kind": kind, "patterns": rows}))


@app.post("/api/v1/patterns/{kind}")
def save_pattern(kind: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    if payload.get("user_id") is None:
        raise HTTPException(status_code=400, detail="Invalid input")
    is_active = payload.get("is_active")
    try:
        pattern = upsert_weekly_pattern(
            db,
            kind,
            _parse_int(payload.get("user_id"), "user_id"),
            payload.get("day_of_week"),
            shift_type=payload.get("shift_type"),
            is_active=is_active if isinstance(is_active, bool) else True,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"pattern": pattern}))


@app.delete("/api/v1/patterns/{kind}")
def remove_pattern(kind: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    if payload.get("user_id") is None:
        raise HTTPException(status_code=400, detail="Invalid input")
    try:
        deleted = delete_weekly_pattern(
            db,
            kind,
            _parse_int(payload.get("user_id"), "user_id"),
            payload.get("day_of_week"),
            shift_type=payload.get("shift_type"),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Pattern not found")
    return JSONResponse(content=jsonable_encoder({"deleted": True}))


@app.get("/api/v1/vacations")
def vacations(db=Depends(get_db), user_db=Depends(get_user_db)) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder({"vacations": list_vacations(db, user_db)}))


@app.post("/api/v1/vacations")
def add_vacation(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    if payload.get("user_id") is None or not payload.get("start_date") or not payload.get("end_date"):
        raise HTTPException(status_code=400, detail="Missing fields")
    try:
        row = create_vacation(
            db,
            _parse_int(payload.get("user_id"), "user_id"),
            _parse_date(payload.get("start_date"), "start_date"),
            _parse_date(payload.get("end_date"), "end_date"),
            status=str(payload.get("status") or VACATION_APPROVED),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {
                "vacation": {
                    "id": row.id,
                    "user_id": row.user_id,
                    "start_date": row.start_date.isoformat(),
                    "end_date": row.end_date.isoformat(),
                    "status": row.status,
                }
            }
        )
    )


@app.delete("/api/v1/vacations/{vacation_id}")
def remove_vacation(vacation_id: int, db=Depends(get_db)) -> JSONResponse:
    try:
        delete_vacation(db, vacation_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"deleted": True}))
