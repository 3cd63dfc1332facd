"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
auxiliary logic. Services are intentionally thin: they perform
validation, execute domain logic and persist aggregates via repositories.

`PerformanceService` is the one stateful piece: it holds the engine, the
snapshot cache and the audit sink, and is built once by the application
and handed to routes through a dependency.
"""

import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from . import models, repositories, schemas
from .config import settings
from .utils.audit import AuditLogger
from .utils.cache import SnapshotCache, discipline_stats_key, performance_key

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 24

logger = logging.getLogger("app.performance")


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _concurso_dict(c: models.Concurso) -> dict:
    return {"id": c.id, "nome": c.nome, "categoria": c.categoria, "ano": c.ano, "banca": c.banca}


class ApostilaService:
    """List and create study material, enriched with contest fields."""
    def __init__(self, session: Session):
        self.session = session
        self.apostila_repo = repositories.ApostilaRepository(session)
        self.concurso_repo = repositories.ConcursoRepository(session)

    def list(self, concurso_id: Optional[int] = None) -> List[dict]:
        """Return apostilas (optionally for one contest) with a `concursos` field.

        Contest data is fetched in one batch for every referenced id; an
        apostila without a contest gets `concursos: None`. Store errors
        propagate to the caller.
        """
        apostilas = self.apostila_repo.list(concurso_id)
        ids = [a.concurso_id for a in apostilas if a.concurso_id is not None]
        by_id = {c.id: _concurso_dict(c) for c in self.concurso_repo.list_by_ids(ids)}
        out = []
        for a in apostilas:
            item = a.model_dump(mode="json")
            item["concursos"] = by_id.get(a.concurso_id) if a.concurso_id is not None else None
            out.append(item)
        return out

    def create(self, title: Optional[str], url: Optional[str], description: Optional[str] = None, concurso_id: Optional[int] = None) -> models.Apostila:
        """Validate and insert one apostila; raises ValueError when title or url is blank."""
        if not title or not title.strip() or not url or not url.strip():
            raise ValueError("title and url are required")
        apostila = models.Apostila(
            title=title.strip(),
            url=url.strip(),
            description=description,
            concurso_id=concurso_id,
        )
        return self.apostila_repo.create(apostila)

    def create_concurso(self, nome: str, categoria: Optional[str] = None, ano: Optional[int] = None, banca: Optional[str] = None) -> models.Concurso:
        if not nome or not nome.strip():
            raise ValueError("nome is required")
        return self.concurso_repo.create(models.Concurso(nome=nome.strip(), categoria=categoria, ano=ano, banca=banca))


class WriteStatus(str, enum.Enum):
    SUCCESS = "success"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class WriteOutcome:
    """Result of a best-effort write.

    `degraded` means the primary row was written but a follow-up step
    (stats, audit, cache invalidation) did not complete.
    """
    status: WriteStatus = WriteStatus.SUCCESS
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == WriteStatus.SUCCESS

    def degrade(self, message: str) -> None:
        self.errors.append(message)
        if self.status == WriteStatus.SUCCESS:
            self.status = WriteStatus.DEGRADED

    def merge(self, other: "WriteOutcome") -> None:
        for message in other.errors:
            self.degrade(message)

    def to_dict(self) -> dict:
        return {"status": self.status.value, "errors": list(self.errors)}


def _pct(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _count_correct(answers: List[Dict[str, Any]]) -> int:
    return sum(1 for a in answers or [] if isinstance(a, dict) and a.get("correct") is True)


def _discipline_row(r: models.UserDisciplineStats) -> schemas.DisciplinePerformance:
    return schemas.DisciplinePerformance(
        disciplina=r.disciplina,
        total_questions=r.total_questions,
        correct_answers=r.correct_answers,
        average_score=r.average_score,
        study_time=r.study_time_minutes,
        last_activity=r.last_activity.isoformat() if r.last_activity else None,
        progress_percentage=_pct(r.correct_answers, r.total_questions),
    )


class PerformanceService:
    """Aggregate a user's study history into dashboard snapshots.

    Reads fan out over several independent queries, each in its own
    session on the worker threadpool, and degrade to zero values when a
    query fails. Writes never raise; they report a `WriteOutcome`.
    """

    def __init__(self, engine: Engine, cache: SnapshotCache, audit: AuditLogger,
                 ttl_minutes: Optional[int] = None, passing_score: Optional[float] = None,
                 minutes_per_question: Optional[int] = None,
                 clock: Callable[[], datetime] = None):
        self.engine = engine
        self.cache = cache
        self.audit = audit
        self.ttl_minutes = settings.SNAPSHOT_CACHE_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        self.passing_score = settings.SIMULADO_PASSING_SCORE if passing_score is None else passing_score
        self.minutes_per_question = settings.MINUTES_PER_QUESTION if minutes_per_question is None else minutes_per_question
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _run(self, fn, *args):
        """Run `fn(session, *args)` on the threadpool with a dedicated session."""
        def _work():
            with Session(self.engine) as session:
                return fn(session, *args)
        return await run_in_threadpool(_work)

    # read path

    async def get_snapshot(self, user_id: int) -> schemas.PerformanceSnapshot:
        """Return the complete snapshot, from cache when fresh.

        The cache generation is read before computing; a write that
        invalidates in the meantime keeps this result out of the cache.
        """
        key = performance_key(user_id, "complete")
        cached = self.cache.get(user_id, key)
        if cached is not None:
            return schemas.PerformanceSnapshot.model_validate(cached)
        generation = self.cache.generation(user_id)
        simulados, questoes, disciplines, weekly = await asyncio.gather(
            self.simulados_stats(user_id),
            self.questoes_stats(user_id),
            self.discipline_stats(user_id),
            self.weekly_progress(user_id),
        )
        snapshot = schemas.PerformanceSnapshot(
            total_simulados=simulados.total,
            total_questoes=questoes.total,
            total_study_time=simulados.total_time + questoes.total_time,
            average_score=simulados.average_score,
            accuracy_rate=questoes.accuracy_rate,
            weekly_progress=weekly,
            discipline_stats=disciplines,
        )
        self.cache.set(user_id, key, snapshot.model_dump(), self.ttl_minutes, generation=generation)
        return snapshot

    async def get_simulados_summary(self, user_id: int) -> schemas.SimuladosSummary:
        key = performance_key(user_id, "simulados")
        cached = self.cache.get(user_id, key)
        if cached is not None:
            return schemas.SimuladosSummary.model_validate(cached)
        generation = self.cache.generation(user_id)
        summary = await self.simulados_stats(user_id)
        self.cache.set(user_id, key, summary.model_dump(), self.ttl_minutes, generation=generation)
        return summary

    async def get_questoes_summary(self, user_id: int) -> schemas.QuestoesSummary:
        key = performance_key(user_id, "questoes")
        cached = self.cache.get(user_id, key)
        if cached is not None:
            return schemas.QuestoesSummary.model_validate(cached)
        generation = self.cache.generation(user_id)
        summary = await self.questoes_stats(user_id)
        self.cache.set(user_id, key, summary.model_dump(), self.ttl_minutes, generation=generation)
        return summary

    async def get_discipline_performance(self, user_id: int) -> List[schemas.DisciplinePerformance]:
        key = performance_key(user_id, "disciplinas")
        cached = self.cache.get(user_id, key)
        if cached is not None:
            return [schemas.DisciplinePerformance.model_validate(d) for d in cached]
        generation = self.cache.generation(user_id)
        rows = await self.discipline_stats(user_id)
        self.cache.set(user_id, key, [r.model_dump() for r in rows], self.ttl_minutes, generation=generation)
        return rows

    async def get_discipline(self, user_id: int, disciplina: str) -> Optional[schemas.DisciplinePerformance]:
        """One subject's totals, or None when the user has no activity in it.

        Absent subjects are not cached. Store errors propagate.
        """
        key = discipline_stats_key(user_id, disciplina)
        cached = self.cache.get(user_id, key)
        if cached is not None:
            return schemas.DisciplinePerformance.model_validate(cached)
        generation = self.cache.generation(user_id)

        def _query(session, uid, name):
            r = repositories.DisciplineStatsRepository(session).get(uid, name)
            return _discipline_row(r) if r else None
        row = await self._run(_query, user_id, disciplina)
        if row is not None:
            self.cache.set(user_id, key, row.model_dump(), self.ttl_minutes, generation=generation)
        return row

    async def simulados_stats(self, user_id: int) -> schemas.SimuladosSummary:
        """Count, mean score and summed time over non-deleted exam attempts."""
        def _query(session, uid):
            rows = repositories.SimuladoProgressRepository(session).list_for_user(uid)
            return [(r.score or 0.0, r.time_taken_minutes or 0) for r in rows]
        try:
            rows = await self._run(_query, user_id)
        except Exception as e:
            logger.error("simulados_stats_failed %s", json.dumps({"user_id": user_id, "error": str(e)}, ensure_ascii=True))
            return schemas.SimuladosSummary()
        return schemas.SimuladosSummary(
            total=len(rows),
            average_score=_mean([score for score, _ in rows]),
            total_time=sum(minutes for _, minutes in rows),
        )

    async def questoes_stats(self, user_id: int) -> schemas.QuestoesSummary:
        """Count and answer-level accuracy over weekly question sets.

        Time is estimated per attempt at `minutes_per_question`.
        """
        def _query(session, uid):
            rows = repositories.QuestoesProgressRepository(session).list_for_user(uid)
            return [r.answers if isinstance(r.answers, list) else [] for r in rows]
        try:
            answer_lists = await self._run(_query, user_id)
        except Exception as e:
            logger.error("questoes_stats_failed %s", json.dumps({"user_id": user_id, "error": str(e)}, ensure_ascii=True))
            return schemas.QuestoesSummary()
        total_questions = sum(len(answers) for answers in answer_lists)
        correct = sum(_count_correct(answers) for answers in answer_lists)
        total = len(answer_lists)
        return schemas.QuestoesSummary(
            total=total,
            accuracy_rate=_pct(correct, total_questions),
            total_time=total * self.minutes_per_question,
        )

    async def discipline_stats(self, user_id: int) -> List[schemas.DisciplinePerformance]:
        def _query(session, uid):
            rows = repositories.DisciplineStatsRepository(session).list_for_user(uid)
            return [_discipline_row(r) for r in rows]
        try:
            return await self._run(_query, user_id)
        except Exception as e:
            logger.error("discipline_stats_failed %s", json.dumps({"user_id": user_id, "error": str(e)}, ensure_ascii=True))
            return []

    async def weekly_progress(self, user_id: int, now: Optional[datetime] = None) -> schemas.WeeklyProgress:
        """Trailing seven days of activity and the score change against the week before.

        `score_improvement` is relative to the previous week's mean simulado
        score and is 0 when that week has no attempts.
        """
        now = now or self.clock()
        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)

        def _simulados(session, uid, since, until):
            rows = repositories.SimuladoProgressRepository(session).list_for_user(uid, since=since, until=until)
            return [(r.score or 0.0, r.time_taken_minutes or 0) for r in rows]

        def _questoes(session, uid, since):
            return len(repositories.QuestoesProgressRepository(session).list_for_user(uid, since=since))

        current, questoes, previous = await asyncio.gather(
            self._run(_simulados, user_id, week_ago, None),
            self._run(_questoes, user_id, week_ago),
            self._run(_simulados, user_id, two_weeks_ago, week_ago),
            return_exceptions=True,
        )
        for name, result in (("current_week", current), ("questoes", questoes), ("previous_week", previous)):
            if isinstance(result, Exception):
                logger.error("weekly_progress_failed %s", json.dumps({"user_id": user_id, "query": name, "error": str(result)}, ensure_ascii=True))
        current = [] if isinstance(current, Exception) else current
        previous = [] if isinstance(previous, Exception) else previous
        questoes = 0 if isinstance(questoes, Exception) else questoes

        current_avg = _mean([score for score, _ in current])
        previous_avg = _mean([score for score, _ in previous])
        improvement = ((current_avg - previous_avg) / previous_avg) * 100 if previous_avg > 0 else 0.0
        return schemas.WeeklyProgress(
            simulados=len(current),
            questoes=questoes,
            study_time=sum(minutes for _, minutes in current),
            score_improvement=improvement,
        )

    # write path

    def _invalidate(self, user_id: int, *keys: str) -> WriteOutcome:
        outcome = WriteOutcome()
        for key in keys:
            try:
                self.cache.delete(user_id, key)
            except Exception as e:
                logger.exception("cache_invalidate_failed key=%s", key)
                outcome.degrade(f"cache invalidation failed for {key}: {e}")
        return outcome

    async def record_simulado_completion(self, user_id: int, simulado_id: str, score: float,
                                         time_taken: int, answers: List[Dict[str, Any]]) -> WriteOutcome:
        """Store an exam attempt, then update totals, audit and invalidate caches.

        Account totals count the attempt as one question, correct when
        `score` exceeds the passing score.
        """
        outcome = WriteOutcome()

        def _insert(session):
            repositories.SimuladoProgressRepository(session).create(models.UserSimuladoProgress(
                user_id=user_id,
                simulado_id=simulado_id,
                score=score,
                time_taken_minutes=time_taken,
                answers=list(answers or []),
                completed_at=self.clock(),
            ))
        try:
            await self._run(_insert)
        except Exception as e:
            logger.exception("record_simulado_failed user_id=%s simulado_id=%s", user_id, simulado_id)
            return WriteOutcome(WriteStatus.FAILED, [str(e)])

        passed = 1 if score > self.passing_score else 0
        outcome.merge(await self.update_user_stats(user_id, 1, passed, time_taken))
        try:
            self.audit.log_simulado_complete(user_id, simulado_id, score, time_taken)
        except Exception as e:
            logger.exception("audit_simulado_failed user_id=%s", user_id)
            outcome.degrade(f"audit failed: {e}")
        outcome.merge(self._invalidate(user_id, performance_key(user_id, "simulados"), performance_key(user_id, "complete")))
        return outcome

    async def record_questao_completion(self, user_id: int, questoes_id: str, score: float,
                                        answers: List[Dict[str, Any]]) -> WriteOutcome:
        """Store a weekly question set, then update totals, audit and invalidate caches.

        Per-subject stats are not updated here: answers do not carry a subject.
        """
        outcome = WriteOutcome()
        answers = list(answers or [])

        def _insert(session):
            repositories.QuestoesProgressRepository(session).create(models.UserQuestoesSemanaisProgress(
                user_id=user_id,
                questoes_semanais_id=questoes_id,
                score=score,
                answers=answers,
                completed_at=self.clock(),
            ))
        try:
            await self._run(_insert)
        except Exception as e:
            logger.exception("record_questao_failed user_id=%s questoes_id=%s", user_id, questoes_id)
            return WriteOutcome(WriteStatus.FAILED, [str(e)])

        total_questions = len(answers)
        correct = _count_correct(answers)
        outcome.merge(await self.update_user_stats(user_id, total_questions, correct, total_questions * self.minutes_per_question))
        try:
            self.audit.log_questao_complete(user_id, questoes_id, score)
        except Exception as e:
            logger.exception("audit_questao_failed user_id=%s", user_id)
            outcome.degrade(f"audit failed: {e}")
        outcome.merge(self._invalidate(user_id, performance_key(user_id, "questoes"), performance_key(user_id, "complete")))
        return outcome

    async def update_discipline_stats(self, user_id: int, disciplina: str, questions_answered: int,
                                      correct_answers: int, study_time_minutes: int) -> WriteOutcome:
        """Add activity to the (user, disciplina) totals, creating the row on first use."""
        def _upsert(session):
            repo = repositories.DisciplineStatsRepository(session)
            now = self.clock()
            stats = repo.get(user_id, disciplina)
            if stats:
                stats.total_questions += questions_answered
                stats.correct_answers += correct_answers
                stats.study_time_minutes += study_time_minutes
                stats.updated_at = now
            else:
                stats = models.UserDisciplineStats(
                    user_id=user_id,
                    disciplina=disciplina,
                    total_questions=questions_answered,
                    correct_answers=correct_answers,
                    study_time_minutes=study_time_minutes,
                )
            stats.average_score = _pct(stats.correct_answers, stats.total_questions)
            stats.last_activity = now
            repo.save(stats)
        try:
            await self._run(_upsert)
        except Exception as e:
            logger.exception("update_discipline_stats_failed user_id=%s disciplina=%s", user_id, disciplina)
            return WriteOutcome(WriteStatus.FAILED, [str(e)])
        return self._invalidate(
            user_id,
            discipline_stats_key(user_id, disciplina),
            performance_key(user_id, "disciplinas"),
            performance_key(user_id, "complete"),
        )

    async def update_user_stats(self, user_id: int, questions_answered: int, correct_answers: int,
                                study_time_minutes: int) -> WriteOutcome:
        """Add activity to the account-level totals on the user row.

        A missing user is reported as `degraded` and nothing is created.
        """
        def _update(session):
            repo = repositories.UserRepository(session)
            user = repo.get(user_id)
            if not user:
                return False
            user.total_questions_answered += questions_answered
            user.total_correct_answers += correct_answers
            user.study_time_minutes += study_time_minutes
            user.average_score = _pct(user.total_correct_answers, user.total_questions_answered)
            user.updated_at = self.clock()
            repo.save(user)
            return True
        try:
            found = await self._run(_update)
        except Exception as e:
            logger.exception("update_user_stats_failed user_id=%s", user_id)
            return WriteOutcome(WriteStatus.FAILED, [str(e)])
        outcome = self._invalidate(user_id, performance_key(user_id, "complete"))
        if not found:
            logger.warning("update_user_stats_skipped %s", json.dumps({"user_id": user_id, "reason": "user not found"}, ensure_ascii=True))
            outcome.degrade(f"user not found: {user_id}")
        return outcome
