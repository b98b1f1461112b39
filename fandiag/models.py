from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _as_identifier(value: Any) -> Any:
    # Catalogue ids arrive as ints from older clients.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# Catalogue


class Symptom(BaseModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Damage(BaseModel):
    id: str
    name: str
    remedy: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DiagnosisRule(BaseModel):
    id: int | None = None
    damage_id: str
    symptom_id: str
    probability: float
    symptom_name: str | None = None
    damage_name: str | None = None


# Scoring


class ScoredCause(BaseModel):
    id: str
    name: str
    remedy: str = ""
    likelihood: float = Field(ge=0.0)
    posterior: float = Field(ge=0.0, le=1.0)
    percentage: float = Field(ge=0.0, le=100.0)


class CalculationStep(BaseModel):
    step: int
    title: str
    lines: list[str] = Field(default_factory=list)


class DiagnosisCalculation(BaseModel):
    selected_symptoms: list[str]
    prior_probability: float
    total_evidence: float
    steps: list[CalculationStep] = Field(default_factory=list)


class DiagnoseRequest(BaseModel):
    symptoms: list[str] = Field(default_factory=list)

    @field_validator("symptoms", mode="before")
    @classmethod
    def _coerce_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_as_identifier(item) for item in value]
        return value


class DiagnosisResponse(BaseModel):
    results: list[ScoredCause]
    calculation: DiagnosisCalculation
    history_id: int | None = None


# Identity


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    email: str = Field(pattern=EMAIL_PATTERN)
    full_name: str = Field(min_length=1)

    # stripped before the length and pattern checks run
    @field_validator("username", "email", "full_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserProfile(BaseModel):
    id: int
    username: str
    email: str
    full_name: str | None = None
    role: Literal["admin", "user"] = "user"


class LoginResponse(BaseModel):
    token: str
    user: UserProfile


class MessageResponse(BaseModel):
    message: str


# History


class HistoryOwner(BaseModel):
    id: int | None = None
    username: str | None = None
    email: str | None = None
    full_name: str | None = None


class HistoryRecord(BaseModel):
    id: int
    user: HistoryOwner
    symptoms: list[str] = Field(default_factory=list)
    # Stored payloads are kept as written; older rows may predate ScoredCause.
    results: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    notes: str | None = None


class BulkDeleteRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class DashboardStats(BaseModel):
    total_reports: int
    average_confidence: float
    max_confidence: float = 0.0
    min_confidence: float = 0.0
    damage_distribution: dict[str, int] = Field(default_factory=dict)
    filtered_count: int
    reports: list[HistoryRecord] = Field(default_factory=list)
