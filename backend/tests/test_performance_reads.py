import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import text
from sqlmodel import Session

from concurso_prep import models
from concurso_prep.database import make_engine
from concurso_prep.services import PerformanceService
from concurso_prep.utils.audit import AuditLogger
from concurso_prep.utils.cache import SnapshotCache, discipline_stats_key, performance_key

from conftest import NOW


def _add(engine, *rows):
    with Session(engine) as session:
        for r in rows:
            session.add(r)
        session.commit()


def _simulado(user_id, score, minutes, days_ago, deleted=False):
    return models.UserSimuladoProgress(
        user_id=user_id,
        simulado_id="sim-1",
        score=score,
        time_taken_minutes=minutes,
        completed_at=NOW - timedelta(days=days_ago),
        deleted_at=NOW if deleted else None,
    )


def _questoes(user_id, answers, days_ago=1):
    return models.UserQuestoesSemanaisProgress(
        user_id=user_id,
        questoes_semanais_id="qs-1",
        score=0,
        answers=answers,
        completed_at=NOW - timedelta(days=days_ago),
    )


def test_snapshot_for_user_without_history_is_all_zero(perf, user_id):
    snap = asyncio.run(perf.get_snapshot(user_id))
    assert snap.total_simulados == 0
    assert snap.total_questoes == 0
    assert snap.total_study_time == 0
    assert snap.average_score == 0
    assert snap.accuracy_rate == 0
    assert snap.weekly_progress.score_improvement == 0
    assert snap.discipline_stats == []


def test_snapshot_combines_simulados_and_questoes(perf, engine, user_id):
    _add(
        engine,
        _simulado(user_id, 80, 60, days_ago=1),
        _simulado(user_id, 60, 30, days_ago=20),
        _simulado(user_id, 10, 99, days_ago=2, deleted=True),
        _questoes(user_id, [{"correct": True}, {"correct": False}, {"correct": True}]),
        _questoes(user_id, [{"correct": True}], days_ago=30),
    )
    snap = asyncio.run(perf.get_snapshot(user_id))
    assert snap.total_simulados == 2
    assert snap.average_score == pytest.approx(70)
    assert snap.total_questoes == 2
    assert snap.accuracy_rate == pytest.approx(75)
    # 90 simulado minutes + 2 question sets at 2 minutes each
    assert snap.total_study_time == 94


def test_accuracy_is_zero_when_sets_have_no_answers(perf, engine, user_id):
    _add(engine, _questoes(user_id, []))
    stats = asyncio.run(perf.questoes_stats(user_id))
    assert stats.total == 1
    assert stats.accuracy_rate == 0


def test_weekly_progress_compares_with_previous_week(perf, engine, user_id):
    _add(
        engine,
        _simulado(user_id, 90, 40, days_ago=1),
        _simulado(user_id, 70, 20, days_ago=3),
        _simulado(user_id, 50, 15, days_ago=9),
        _simulado(user_id, 30, 15, days_ago=16),
        _questoes(user_id, [{"correct": True}], days_ago=2),
        _questoes(user_id, [{"correct": True}], days_ago=8),
    )
    weekly = asyncio.run(perf.weekly_progress(user_id))
    assert weekly.simulados == 2
    assert weekly.questoes == 1
    assert weekly.study_time == 60
    # current mean 80 vs previous mean 50
    assert weekly.score_improvement == pytest.approx(60)


def test_weekly_improvement_is_zero_without_previous_week(perf, engine, user_id):
    _add(engine, _simulado(user_id, 90, 40, days_ago=1))
    weekly = asyncio.run(perf.weekly_progress(user_id))
    assert weekly.simulados == 1
    assert weekly.score_improvement == 0


def test_discipline_rows_are_ordered_by_recent_activity(perf, engine, user_id):
    _add(
        engine,
        models.UserDisciplineStats(user_id=user_id, disciplina="Português", total_questions=10,
                                   correct_answers=4, average_score=40, study_time_minutes=20,
                                   last_activity=NOW - timedelta(days=5)),
        models.UserDisciplineStats(user_id=user_id, disciplina="Direito", total_questions=0,
                                   correct_answers=0, average_score=0, study_time_minutes=0,
                                   last_activity=NOW - timedelta(days=1)),
    )
    rows = asyncio.run(perf.discipline_stats(user_id))
    assert [r.disciplina for r in rows] == ["Direito", "Português"]
    assert rows[0].progress_percentage == 0
    assert rows[1].progress_percentage == pytest.approx(40)


def test_snapshot_is_served_from_cache_until_invalidated(perf, engine, user_id):
    first = asyncio.run(perf.get_snapshot(user_id))
    _add(engine, _simulado(user_id, 80, 60, days_ago=1))
    assert asyncio.run(perf.get_snapshot(user_id)) == first
    perf.cache.delete(user_id, performance_key(user_id, "complete"))
    assert asyncio.run(perf.get_snapshot(user_id)).total_simulados == 1


def test_failed_queries_degrade_to_zero(tmp_path):
    # no tables: every query fails with "no such table"
    engine = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    svc = PerformanceService(engine, SnapshotCache(), AuditLogger(tmp_path / "audit"), clock=lambda: NOW)
    snap = asyncio.run(svc.get_snapshot(1))
    assert snap.total_simulados == 0
    assert snap.accuracy_rate == 0
    assert snap.weekly_progress.simulados == 0
    assert snap.discipline_stats == []


def test_unreadable_answers_degrade_to_zero(perf, engine, user_id):
    _add(engine, _simulado(user_id, 80, 60, days_ago=1), _questoes(user_id, [{"correct": True}]))
    with engine.begin() as conn:
        conn.execute(text("UPDATE user_questoes_semanais_progress SET answers = '{not json'"))
    snap = asyncio.run(perf.get_snapshot(user_id))
    assert snap.total_questoes == 0
    assert snap.accuracy_rate == 0
    assert snap.weekly_progress.questoes == 0
    assert snap.total_simulados == 1
    assert snap.weekly_progress.simulados == 1


def test_single_discipline_is_cached_by_exact_name(perf, engine, user_id):
    asyncio.run(perf.update_discipline_stats(user_id, "Direito", 10, 6, 30))
    row = asyncio.run(perf.get_discipline(user_id, "Direito"))
    assert row.total_questions == 10
    assert row.progress_percentage == pytest.approx(60)
    assert perf.cache.get(user_id, discipline_stats_key(user_id, "Direito"))["total_questions"] == 10
    assert asyncio.run(perf.get_discipline(user_id, "direito")) is None
    assert perf.cache.get(user_id, discipline_stats_key(user_id, "direito")) is None

    asyncio.run(perf.update_discipline_stats(user_id, "Direito", 5, 5, 10))
    assert asyncio.run(perf.get_discipline(user_id, "Direito")).total_questions == 15


def test_write_during_snapshot_keeps_result_out_of_cache(perf, user_id, monkeypatch):
    original = perf.discipline_stats

    async def rows_then_write(uid):
        rows = await original(uid)
        await perf.update_discipline_stats(uid, "Direito", 4, 2, 10)
        return rows

    monkeypatch.setattr(perf, "discipline_stats", rows_then_write)
    snap = asyncio.run(perf.get_snapshot(user_id))
    assert snap.discipline_stats == []
    assert perf.cache.get(user_id, performance_key(user_id, "complete")) is None

    monkeypatch.setattr(perf, "discipline_stats", original)
    assert [d.disciplina for d in asyncio.run(perf.get_snapshot(user_id)).discipline_stats] == ["Direito"]
