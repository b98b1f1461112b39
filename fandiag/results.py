# fandiag/results.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from fandiag.models import ScoredCause


@dataclass
class ScoringOutcome:
    results: List[ScoredCause]
    prior_probability: float
    total_evidence: float
    selected_symptoms: List[str] = field(default_factory=list)


@dataclass
class CurrentUser:
    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
