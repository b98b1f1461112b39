"""Diagnosis scoring.

Every cause starts from a uniform prior ``1 / N``. Its likelihood is the prior
multiplied by the 0/1 rule indicator of each selected symptom, so a cause keeps
its prior only when every selected symptom has an indicator of 1 for it and
drops to 0 otherwise. Likelihoods are normalised by the total evidence into
posteriors and percentages, then ranked.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from fandiag.models import Damage, DiagnosisRule, ScoredCause
from fandiag.results import ScoringOutcome


def indicator(raw_probability: float) -> int:
    return 1 if raw_probability >= 1 else 0


def build_indicator_lookup(rules: Iterable[DiagnosisRule]) -> dict[tuple[str, str], int]:
    lookup: dict[tuple[str, str], int] = {}
    for rule in rules:
        lookup[(rule.damage_id, rule.symptom_id)] = indicator(rule.probability)
    return lookup


def score_with_calculation(
    selected_symptoms: Iterable[str],
    all_causes: Sequence[Damage],
    rules: Iterable[DiagnosisRule],
) -> ScoringOutcome:
    selected = list(dict.fromkeys(selected_symptoms))
    prior = 1 / max(len(all_causes), 1)
    lookup = build_indicator_lookup(rules)

    likelihoods: list[float] = []
    for cause in all_causes:
        likelihood = prior
        for symptom_id in selected:
            likelihood *= lookup.get((cause.id, symptom_id), 0)
        likelihoods.append(likelihood)

    total_evidence = sum(likelihoods)
    results: list[ScoredCause] = []
    for cause, likelihood in zip(all_causes, likelihoods):
        posterior = likelihood / total_evidence if total_evidence > 0 else 0.0
        results.append(
            ScoredCause(
                id=cause.id,
                name=cause.name,
                remedy=cause.remedy,
                likelihood=likelihood,
                posterior=posterior,
                percentage=posterior * 100,
            )
        )

    # sorted() is stable, equal percentages keep catalogue order
    results = sorted(results, key=lambda item: item.percentage, reverse=True)
    return ScoringOutcome(
        results=results,
        prior_probability=prior,
        total_evidence=total_evidence,
        selected_symptoms=selected,
    )


def score(
    selected_symptoms: Iterable[str],
    all_causes: Sequence[Damage],
    rules: Iterable[DiagnosisRule],
) -> list[ScoredCause]:
    return score_with_calculation(selected_symptoms, all_causes, rules).results
