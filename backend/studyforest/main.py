"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Study Forest backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and translate domain errors into HTTP errors.

Endpoints implemented:
- /api/studies: list (paged/sorted/searched), CRUD, detail, password check,
  concentration time, batch fetch
- /api/points: list, award, delete
- /api/habits: list, create, batch reconcile, rename, delete, today/week
  views, fulfillments
- /api/emojis: list, react, increment, delete
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request, Body
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Any, List
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services
from .errors import InvalidInputError, NotFoundError
from .schemas import (
    ConcentrationTimeIn, EmojiIn, HabitNamesIn, HabitOut, HabitUpdateIn, PasswordIn, PointIn,
    ReconcileOut, StudyBatchIn, StudyIn, StudyOut, StudyUpdate, TodayHabitOut, WeekHabitOut,
)
from .config import settings

app = FastAPI(title="Study Forest API")
logger = logging.getLogger("studyforest.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Wide-open CORS is a dev convenience; otherwise only the known frontends.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=86400,
    )

create_db_and_tables()


LOGGED_PREFIX = "/api"


def _log_request(level: int, event: str, request: Request, req_id: str, started: float, **extra) -> None:
    if not request.url.path.startswith(LOGGED_PREFIX):
        return
    payload = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        **extra,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
    }
    logger.log(level, "%s %s", event, json.dumps(payload, ensure_ascii=True), exc_info=level >= logging.ERROR)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        _log_request(logging.ERROR, "request_failed", request, req_id, started)
        raise
    response.headers["X-Request-ID"] = req_id
    _log_request(logging.INFO, "request_done", request, req_id, started, status_code=response.status_code)
    return response


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# -----------------------------
# Studies
# -----------------------------

@app.get('/api/studies')
def list_studies(page: int = 1, limit: int = 6, sort: str = 'recent', search: str = '', db: Session = Depends(get_session)):
    """Page through studies.

    `sort` is one of `recent`, `oldest`, `points_desc`, `points_asc`;
    `search` filters by a case-insensitive substring of the study name.
    """
    try:
        return services.StudyService(db).list_studies(page=page, limit=limit, sort=sort, search=search)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post('/api/studies/batch')
def studies_batch(payload: StudyBatchIn, db: Session = Depends(get_session)):
    """Fetch up to three studies by id, in the order given."""
    return services.StudyService(db).get_studies_by_ids(payload.study_ids)


@app.get('/api/studies/{study_id}', response_model=StudyOut)
def get_study(study_id: int, db: Session = Depends(get_session)):
    try:
        return services.StudyService(db).get_study(study_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.post('/api/studies', response_model=StudyOut, status_code=201)
def create_study(payload: StudyIn, db: Session = Depends(get_session)):
    return services.StudyService(db).create_study(**payload.model_dump())


@app.put('/api/studies/{study_id}', response_model=StudyOut)
def update_study(study_id: int, payload: StudyUpdate, db: Session = Depends(get_session)):
    try:
        return services.StudyService(db).update_study(study_id, payload.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise _not_found(e)


@app.delete('/api/studies/{study_id}')
def delete_study(study_id: int, db: Session = Depends(get_session)):
    try:
        services.StudyService(db).delete_study(study_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {'status': 'ok', 'message': 'Study deleted successfully'}


@app.get('/api/studies/{study_id}/detail')
def study_detail(study_id: int, week: int, db: Session = Depends(get_session)):
    """Study header, emojis and the given week's habit fulfillments."""
    try:
        return services.StudyService(db).get_study_detail(study_id, week)
    except NotFoundError as e:
        raise _not_found(e)


@app.post('/api/studies/{study_id}/verify-password')
def verify_password(study_id: int, payload: PasswordIn, db: Session = Depends(get_session)):
    return {'valid': services.StudyService(db).verify_password(study_id, payload.password)}


@app.get('/api/studies/{study_id}/concentration')
def today_concentration(study_id: int, db: Session = Depends(get_session)):
    try:
        return services.StudyService(db).get_today_concentration(study_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.put('/api/studies/{study_id}/concentration-time')
def update_concentration_time(study_id: int, payload: ConcentrationTimeIn, db: Session = Depends(get_session)):
    try:
        study = services.StudyService(db).update_concentration_time(study_id, payload.concentration_time)
    except NotFoundError as e:
        raise _not_found(e)
    return {'id': study.id, 'study_name': study.study_name, 'concentration_time': study.concentration_time}


# -----------------------------
# Points
# -----------------------------

@app.get('/api/points')
def list_all_points(db: Session = Depends(get_session)):
    return services.PointService(db).list_all_points()


@app.get('/api/points/study/{study_id}')
def list_points(study_id: int, db: Session = Depends(get_session)):
    return services.PointService(db).list_points(study_id)


@app.post('/api/points/study/{study_id}', status_code=201)
def create_point(study_id: int, payload: PointIn, db: Session = Depends(get_session)):
    """Award points to a study; the study's `point_sum` is recomputed."""
    try:
        return services.PointService(db).create_point(study_id, payload.point_content, payload.point)
    except NotFoundError as e:
        raise _not_found(e)


@app.delete('/api/points/study/{study_id}/{point_id}')
def delete_point(study_id: int, point_id: int, db: Session = Depends(get_session)):
    try:
        services.PointService(db).delete_point(study_id, point_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {'status': 'ok', 'message': 'Point deleted successfully'}


# -----------------------------
# Habits
# -----------------------------

@app.get('/api/habits', response_model=List[HabitOut])
def list_all_habits(db: Session = Depends(get_session)):
    return services.HabitService(db).list_all_habits()


@app.get('/api/habits/study/{study_id}', response_model=List[HabitOut])
def list_habits(study_id: int, db: Session = Depends(get_session)):
    return services.HabitService(db).list_habits(study_id)


@app.post('/api/habits/study/{study_id}', status_code=201)
def create_habits(study_id: int, payload: HabitNamesIn, db: Session = Depends(get_session)):
    """Create the named habits the study does not have yet."""
    try:
        res = services.HabitService(db).create_habits(study_id, payload.habit_names)
    except NotFoundError as e:
        raise _not_found(e)
    return res


@app.put('/api/habits/study/{study_id}', response_model=ReconcileOut)
def reconcile_habits(study_id: int, habits: Any = Body(...), db: Session = Depends(get_session)):
    """Replace the study's habit roster with the submitted list.

    The body is a JSON array of `{habit_id?, habit_name}` objects. The
    response lists created, renamed, removed (ids) and unchanged habits.
    """
    try:
        result = services.HabitService(db).reconcile(study_id, habits)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        'created': result.created,
        'updated': result.updated,
        'removed': result.removed,
        'unchanged': result.unchanged,
    }


@app.get('/api/habits/study/{study_id}/today', response_model=List[TodayHabitOut])
def today_habits(study_id: int, db: Session = Depends(get_session)):
    """Habits fulfilled at least once today, with today's counts."""
    try:
        return services.HabitService(db).get_today_habits(study_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.get('/api/habits/study/{study_id}/week', response_model=List[WeekHabitOut])
def week_habits(study_id: int, db: Session = Depends(get_session)):
    """This week's fulfillments per habit, counted by weekday (Sunday = 0)."""
    try:
        return services.HabitService(db).get_week_fulfillments(study_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.put('/api/habits/study/{study_id}/{habit_id}', response_model=HabitOut)
def update_habit(study_id: int, habit_id: int, payload: HabitUpdateIn, db: Session = Depends(get_session)):
    try:
        return services.HabitService(db).update_habit(study_id, habit_id, payload.habit_name)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete('/api/habits/study/{study_id}/{habit_id}')
def delete_habit(study_id: int, habit_id: int, db: Session = Depends(get_session)):
    try:
        services.HabitService(db).delete_habit(study_id, habit_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {'status': 'ok', 'message': 'Habit deleted successfully'}


@app.post('/api/habits/study/{study_id}/{habit_id}/fulfillment', status_code=201)
def create_fulfillment(study_id: int, habit_id: int, db: Session = Depends(get_session)):
    """Record that the habit was done once today."""
    try:
        return services.HabitService(db).create_fulfillment_today(study_id, habit_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.delete('/api/habits/fulfillments/{fulfillment_id}')
def delete_fulfillment(fulfillment_id: int, db: Session = Depends(get_session)):
    try:
        services.HabitService(db).delete_fulfillment(fulfillment_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {'status': 'ok', 'message': 'Habit fulfillment deleted successfully'}


# -----------------------------
# Emojis
# -----------------------------

@app.get('/api/emojis/study/{study_id}')
def list_emojis(study_id: int, db: Session = Depends(get_session)):
    return services.EmojiService(db).list_emojis(study_id)


@app.post('/api/emojis', status_code=201)
def add_emoji(payload: EmojiIn, db: Session = Depends(get_session)):
    """React to a study; repeated reactions increment the hit count."""
    try:
        return services.EmojiService(db).add_emoji(payload.study_id, payload.emoji_name)
    except NotFoundError as e:
        raise _not_found(e)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post('/api/emojis/{emoji_id}/increment')
def increment_emoji(emoji_id: int, db: Session = Depends(get_session)):
    try:
        return services.EmojiService(db).increment_emoji(emoji_id)
    except NotFoundError as e:
        raise _not_found(e)


@app.delete('/api/emojis/{emoji_id}')
def delete_emoji(emoji_id: int, db: Session = Depends(get_session)):
    try:
        services.EmojiService(db).delete_emoji(emoji_id)
    except NotFoundError as e:
        raise _not_found(e)
    return {'status': 'ok', 'message': 'Emoji deleted successfully'}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
