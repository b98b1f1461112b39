from __future__ import annotations

from typing import Mapping

from fandiag.models import CalculationStep
from fandiag.results import ScoringOutcome


def build_narrative(outcome: ScoringOutcome, symptom_names: Mapping[str, str]) -> list[CalculationStep]:
    """Render the scorer's intermediate values as the steps shown to the user.

    Numbers are taken straight from ``outcome`` so the text always matches the
    ranked results it accompanies.
    """
    selected = [
        f"{symptom_id} ({symptom_names.get(symptom_id, 'Unknown')})"
        for symptom_id in outcome.selected_symptoms
    ]
    steps = [
        CalculationStep(step=0, title="Selected symptoms", lines=[", ".join(selected) or "-"]),
        CalculationStep(
            step=1,
            title="Prior probability",
            lines=[f"P(damage) = {outcome.prior_probability:.3f} for every damage"],
        ),
        CalculationStep(
            step=2,
            title="Likelihood",
            lines=[
                f"{result.id}: {result.likelihood:.6f} (prior x symptom indicators)"
                for result in outcome.results
            ],
        ),
        CalculationStep(
            step=3,
            title="Total evidence",
            lines=[f"Total = {outcome.total_evidence:.6f}"],
        ),
    ]

    posterior_lines = [
        f"{result.id}: {result.likelihood:.6f} / {outcome.total_evidence:.6f} = {result.percentage:.1f}%"
        for result in outcome.results
    ]
    if outcome.total_evidence > 0 and outcome.results:
        top = outcome.results[0]
        posterior_lines.append(f"Most likely: {top.name} ({top.percentage:.1f}%)")
    else:
        posterior_lines.append("No damage matches every selected symptom")
    steps.append(CalculationStep(step=4, title="Posterior probability", lines=posterior_lines))
    return steps
