"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Table names follow the shared schema (`apostilas`, `concursos`,
`user_simulado_progress`, ...) so the service can point at an existing
database. Progress rows are append-only and soft-deleted through
`deleted_at`; statistics rows are running totals updated in place.
"""

from typing import Any, Dict, List, Optional
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered user and its account-level running totals.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `total_questions_answered` / `total_correct_answers`: summed over every completion
    - `study_time_minutes`: cumulative study time
    - `average_score`: correct / answered * 100
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    total_questions_answered: int = 0
    total_correct_answers: int = 0
    study_time_minutes: int = 0
    average_score: float = 0.0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None


class Concurso(SQLModel, table=True):
    """A contest (public exam) that study material and attempts refer to."""
    __tablename__ = "concursos"

    id: Optional[int] = Field(default=None, primary_key=True)
    nome: str
    categoria: Optional[str] = None
    ano: Optional[int] = None
    banca: Optional[str] = None


class Apostila(SQLModel, table=True):
    """A study material resource, optionally tied to a `Concurso`."""
    __tablename__ = "apostilas"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    url: str
    concurso_id: Optional[int] = Field(default=None, foreign_key="concursos.id", index=True)
    created_at: datetime = Field(default_factory=_utcnow)


class UserSimuladoProgress(SQLModel, table=True):
    """One completed practice exam attempt."""
    __tablename__ = "user_simulado_progress"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    simulado_id: str
    score: float = 0.0
    time_taken_minutes: int = 0
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    completed_at: datetime = Field(default_factory=_utcnow, index=True)
    deleted_at: Optional[datetime] = None


class UserQuestoesSemanaisProgress(SQLModel, table=True):
    """One completed weekly question set; each answer may carry `correct: true`."""
    __tablename__ = "user_questoes_semanais_progress"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    questoes_semanais_id: str
    score: float = 0.0
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    completed_at: datetime = Field(default_factory=_utcnow, index=True)
    deleted_at: Optional[datetime] = None


class UserDisciplineStats(SQLModel, table=True):
    """Running totals for one (user, disciplina) pair."""
    __tablename__ = "user_discipline_stats"
    __table_args__ = (UniqueConstraint("user_id", "disciplina"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    disciplina: str
    total_questions: int = 0
    correct_answers: int = 0
    average_score: float = 0.0
    study_time_minutes: int = 0
    last_activity: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
