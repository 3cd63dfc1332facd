"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
contests, study material, progress rows, discipline stats). Repositories
return SQLModel objects and perform commits/refreshes where appropriate.
Progress queries always exclude soft-deleted rows.
"""

from datetime import datetime
from typing import Iterable, List, Optional
from sqlmodel import Session, select, col
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user


class ConcursoRepository:
    """Read helpers for `Concurso` rows (plus create for seeding)."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, concurso: models.Concurso) -> models.Concurso:
        self.session.add(concurso)
        self.session.commit()
        self.session.refresh(concurso)
        return concurso

    def list_by_ids(self, ids: Iterable[int]) -> List[models.Concurso]:
        """Batch lookup of contests by id; unknown ids are ignored."""
        ids = list(set(ids))
        if not ids:
            return []
        stmt = select(models.Concurso).where(col(models.Concurso.id).in_(ids))
        return self.session.exec(stmt).all()


class ApostilaRepository:
    """CRUD operations for `Apostila` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, apostila: models.Apostila) -> models.Apostila:
        """Persist a study material record and return it with its id."""
        self.session.add(apostila)
        self.session.commit()
        self.session.refresh(apostila)
        return apostila

    def list(self, concurso_id: Optional[int] = None) -> List[models.Apostila]:
        """Return all apostilas, or only those of `concurso_id` when given."""
        stmt = select(models.Apostila)
        if concurso_id is not None:
            stmt = stmt.where(models.Apostila.concurso_id == concurso_id)
        return self.session.exec(stmt.order_by(models.Apostila.id)).all()


class _ProgressRepository:
    """Shared queries for the append-only progress tables."""
    model = None

    def __init__(self, session: Session):
        self.session = session

    def create(self, row):
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def list_for_user(self, user_id: int, since: Optional[datetime] = None, until: Optional[datetime] = None) -> list:
        """Non-deleted rows for `user_id`, optionally restricted to `[since, until)`."""
        m = self.model
        stmt = select(m).where(m.user_id == user_id, col(m.deleted_at).is_(None))
        if since is not None:
            stmt = stmt.where(m.completed_at >= since)
        if until is not None:
            stmt = stmt.where(m.completed_at < until)
        return self.session.exec(stmt).all()


class SimuladoProgressRepository(_ProgressRepository):
    model = models.UserSimuladoProgress


class QuestoesProgressRepository(_ProgressRepository):
    model = models.UserQuestoesSemanaisProgress


class DisciplineStatsRepository:
    """Per-subject running totals."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int, disciplina: str) -> Optional[models.UserDisciplineStats]:
        stmt = select(models.UserDisciplineStats).where(
            models.UserDisciplineStats.user_id == user_id,
            models.UserDisciplineStats.disciplina == disciplina,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: int) -> List[models.UserDisciplineStats]:
        """Return the user's subjects, most recently studied first."""
        stmt = (
            select(models.UserDisciplineStats)
            .where(models.UserDisciplineStats.user_id == user_id)
            .order_by(col(models.UserDisciplineStats.last_activity).desc())
        )
        return self.session.exec(stmt).all()

    def save(self, stats: models.UserDisciplineStats) -> models.UserDisciplineStats:
        self.session.add(stats)
        self.session.commit()
        self.session.refresh(stats)
        return stats
