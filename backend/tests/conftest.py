from datetime import datetime, timezone
from pathlib import Path
import os
import tempfile
import pytest

# Point the application at throwaway storage before `concurso_prep.main` is imported.
_TMP = Path(tempfile.mkdtemp(prefix="concurso_prep_tests_"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'app.db'}"
os.environ["AUDIT_LOG_DIR"] = str(_TMP / "audit")

from sqlmodel import Session  # noqa: E402

from concurso_prep import models  # noqa: E402
from concurso_prep.database import create_db_and_tables, make_engine  # noqa: E402
from concurso_prep.services import PerformanceService  # noqa: E402
from concurso_prep.utils.audit import AuditLogger  # noqa: E402
from concurso_prep.utils.cache import SnapshotCache  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite database with all tables."""
    eng = make_engine(f"sqlite:///{tmp_path / 'perf.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def user_id(engine):
    with Session(engine) as session:
        user = models.User(username="aluno", password_hash="x")
        session.add(user)
        session.commit()
        session.refresh(user)
        return user.id


@pytest.fixture
def perf(engine, tmp_path):
    """PerformanceService wired to the test database with a fixed clock."""
    return PerformanceService(
        engine,
        SnapshotCache(),
        AuditLogger(tmp_path / "audit"),
        ttl_minutes=15,
        passing_score=50,
        minutes_per_question=2,
        clock=lambda: NOW,
    )
