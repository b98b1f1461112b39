from __future__ import annotations

from typing import Sequence

from fandiag.logging_config import get_logger
from fandiag.models import DiagnosisCalculation, DiagnosisResponse
from fandiag.narrative import build_narrative
from fandiag.results import CurrentUser, ScoringOutcome
from fandiag.scoring import score_with_calculation
from fandiag.store import Store, StoreUnavailableError

logger = get_logger(__name__)


class InvalidSelectionError(ValueError):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class DiagnosisService:
    def __init__(self, store: Store, max_selected_symptoms: int = 0) -> None:
        self.store = store
        self.max_selected_symptoms = max_selected_symptoms

    def validate_selection(self, symptoms: Sequence[str]) -> list[str]:
        selected = list(dict.fromkeys(s for s in symptoms if s))
        if not selected:
            raise InvalidSelectionError("no_symptoms_selected")
        if self.max_selected_symptoms > 0 and len(selected) > self.max_selected_symptoms:
            raise InvalidSelectionError("too_many_symptoms")
        return selected

    async def diagnose(
        self,
        user: CurrentUser,
        symptoms: Sequence[str],
        correlation_id: str,
    ) -> DiagnosisResponse:
        selected = self.validate_selection(symptoms)

        damages = await self.store.list_damages()
        rules = await self.store.list_rules(symptom_ids=selected)
        outcome = score_with_calculation(selected, damages, rules)

        symptom_names = {s.id: s.name for s in await self.store.list_symptoms()}
        calculation = DiagnosisCalculation(
            selected_symptoms=outcome.selected_symptoms,
            prior_probability=outcome.prior_probability,
            total_evidence=outcome.total_evidence,
            steps=build_narrative(outcome, symptom_names),
        )

        history_id = await self._save_history(user, outcome, correlation_id)

        top = outcome.results[0] if outcome.results else None
        logger.info(
            "diagnosis_complete",
            extra={
                "correlation_id": correlation_id,
                "user_id": user.id,
                "symptoms": outcome.selected_symptoms,
                "top_damage": top.id if top and top.percentage > 0 else None,
                "total_evidence": outcome.total_evidence,
            },
        )
        return DiagnosisResponse(results=outcome.results, calculation=calculation, history_id=history_id)

    async def _save_history(self, user: CurrentUser, outcome: ScoringOutcome, correlation_id: str) -> int | None:
        try:
            return await self.store.save_history(user.id, outcome.selected_symptoms, outcome.results)
        except StoreUnavailableError as exc:
            logger.exception(
                "history_save_failed",
                extra={"correlation_id": correlation_id, "user_id": user.id, "error": str(exc)},
            )
            return None
