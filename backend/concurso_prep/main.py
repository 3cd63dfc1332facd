"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the exam-preparation study
backend. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON responses. Error responses use a
single `{"error": message}` envelope.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET /apostilas
- POST /apostilas
- GET /performance
- GET /performance/simulados
- GET /performance/questoes
- GET /performance/disciplinas
- GET /performance/disciplinas/{disciplina}
- POST /performance/disciplinas
- POST /simulados/{simulado_id}/complete
- POST /questoes-semanais/{questoes_id}/complete
- GET /audit/events
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from typing import Optional
import json
import logging
import time
import uuid
from .database import engine, create_db_and_tables, get_session
from . import services, repositories, models
from .auth import get_current_user
from .schemas import (
    RegisterIn,
    ApostilaIn,
    SimuladoCompletionIn,
    QuestaoCompletionIn,
    DisciplineActivityIn,
)
from .utils.audit import AuditLogger
from .utils.cache import SnapshotCache
from .config import settings

app = FastAPI(title="Concurso Prep Study API")
logger = logging.getLogger("app.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

# One aggregator per process; routes receive it through `get_performance_service`.
app.state.performance = services.PerformanceService(engine, SnapshotCache(), AuditLogger())


def get_performance_service(request: Request) -> services.PerformanceService:
    return request.app.state.performance


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
    return JSONResponse(status_code=400, content={"error": message})


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns existing user if the username already exists to make the
    operation idempotent (useful for automation/tests).
    """
    auth = services.AuthService(db)
    existing = repositories.UserRepository(db).get_by_username(payload.username)
    if existing:
        return {'id': existing.id, 'username': existing.username}
    user = auth.register(payload.username, payload.password)
    return {'id': user.id, 'username': user.username}


@app.post('/auth/login')
def login(payload: RegisterIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token."""
    auth = services.AuthService(db)
    token = auth.authenticate(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.get('/apostilas')
def list_apostilas(concurso_id: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List study material, optionally only for `concurso_id`.

    Each item carries a `concursos` object with the contest's name,
    category, year and banca (or null when it has no contest).
    """
    svc = services.ApostilaService(db)
    try:
        apostilas = svc.list(concurso_id)
    except SQLAlchemyError as e:
        logger.error("list_apostilas_failed %s", json.dumps({"error": str(e)}, ensure_ascii=True))
        return JSONResponse(status_code=500, content={'error': str(e)})
    return {'apostilas': apostilas}


@app.post('/apostilas')
def create_apostila(payload: ApostilaIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a study material record; `title` and `url` are required."""
    svc = services.ApostilaService(db)
    try:
        apostila = svc.create(payload.title, payload.url, payload.description, payload.concurso_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("create_apostila_failed %s", json.dumps({"error": str(e)}, ensure_ascii=True))
        return JSONResponse(status_code=500, content={'error': str(e)})
    return {'message': 'Apostila created successfully', 'apostila': apostila.model_dump(mode="json")}


@app.get('/performance')
async def get_performance(user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    """Return the authenticated user's complete performance snapshot (cached)."""
    snapshot = await perf.get_snapshot(user.id)
    return snapshot.model_dump()


@app.get('/performance/simulados')
async def get_simulados_performance(user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    summary = await perf.get_simulados_summary(user.id)
    return summary.model_dump()


@app.get('/performance/questoes')
async def get_questoes_performance(user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    summary = await perf.get_questoes_summary(user.id)
    return summary.model_dump()


@app.get('/performance/disciplinas')
async def get_discipline_performance(user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    rows = await perf.get_discipline_performance(user.id)
    return {'disciplinas': [r.model_dump() for r in rows]}


@app.get('/performance/disciplinas/{disciplina}')
async def get_one_discipline(disciplina: str, user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    try:
        row = await perf.get_discipline(user.id, disciplina)
    except SQLAlchemyError as e:
        logger.error("get_discipline_failed %s", json.dumps({"error": str(e)}, ensure_ascii=True))
        return JSONResponse(status_code=500, content={'error': str(e)})
    if row is None:
        raise HTTPException(status_code=404, detail='disciplina not found')
    return row.model_dump()


@app.post('/performance/disciplinas')
async def add_discipline_activity(payload: DisciplineActivityIn, user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    """Add study activity to one subject's running totals."""
    if payload.correct_answers > payload.questions_answered:
        raise HTTPException(status_code=400, detail='correct_answers cannot exceed questions_answered')
    outcome = await perf.update_discipline_stats(
        user.id,
        payload.disciplina,
        payload.questions_answered,
        payload.correct_answers,
        payload.study_time_minutes,
    )
    return outcome.to_dict()


@app.post('/simulados/{simulado_id}/complete')
async def complete_simulado(simulado_id: str, payload: SimuladoCompletionIn, user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    """Record a finished practice exam.

    The write is best effort: the response reports `success`, `degraded`
    or `failed` instead of raising.
    """
    outcome = await perf.record_simulado_completion(user.id, simulado_id, payload.score, payload.time_taken_minutes, payload.answers)
    return outcome.to_dict()


@app.post('/questoes-semanais/{questoes_id}/complete')
async def complete_questoes(questoes_id: str, payload: QuestaoCompletionIn, user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    """Record a finished weekly question set (best effort, see `complete_simulado`)."""
    outcome = await perf.record_questao_completion(user.id, questoes_id, payload.score, payload.answers)
    return outcome.to_dict()


@app.get('/audit/events')
def list_audit_events(limit: int = 50, user: models.User = Depends(get_current_user), perf: services.PerformanceService = Depends(get_performance_service)):
    """Return the authenticated user's most recent audit events."""
    return {'events': perf.audit.read_events(user_id=user.id, limit=limit)}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
