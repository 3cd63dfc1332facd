"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class ApostilaIn(BaseModel):
    """Request body for creating study material.

    `title` and `url` are checked by the service so a missing value is
    reported as a 400 validation error rather than a schema error.
    """
    title: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    concurso_id: Optional[int] = None


class SimuladoCompletionIn(BaseModel):
    """A finished practice exam."""
    score: float = Field(ge=0, le=100)
    time_taken_minutes: int = Field(ge=0)
    answers: List[Dict[str, Any]] = Field(default_factory=list)


class QuestaoCompletionIn(BaseModel):
    """A finished weekly question set."""
    score: float = Field(ge=0, le=100)
    answers: List[Dict[str, Any]] = Field(default_factory=list)


class DisciplineActivityIn(BaseModel):
    """Study activity to add to a subject's running totals."""
    disciplina: str = Field(min_length=1)
    questions_answered: int = Field(ge=0)
    correct_answers: int = Field(ge=0)
    study_time_minutes: int = Field(default=0, ge=0)


class SimuladosSummary(BaseModel):
    total: int = 0
    average_score: float = 0.0
    total_time: int = 0


class QuestoesSummary(BaseModel):
    total: int = 0
    accuracy_rate: float = 0.0
    total_time: int = 0


class WeeklyProgress(BaseModel):
    """Activity in the trailing seven days compared with the week before."""
    simulados: int = 0
    questoes: int = 0
    study_time: int = 0
    score_improvement: float = 0.0


class DisciplinePerformance(BaseModel):
    disciplina: str
    total_questions: int
    correct_answers: int
    average_score: float
    study_time: int
    last_activity: Optional[str] = None
    progress_percentage: float


class PerformanceSnapshot(BaseModel):
    """Dashboard aggregate for one user; derived from stored rows, cache only."""
    total_simulados: int = 0
    total_questoes: int = 0
    total_study_time: int = 0
    average_score: float = 0.0
    accuracy_rate: float = 0.0
    weekly_progress: WeeklyProgress = Field(default_factory=WeeklyProgress)
    discipline_stats: List[DisciplinePerformance] = Field(default_factory=list)


class WriteOutcomeOut(BaseModel):
    """Result of a best-effort write hook."""
    status: str
    errors: List[str] = Field(default_factory=list)
