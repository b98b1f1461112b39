from fandiag.models import Damage, DiagnosisRule
from fandiag.narrative import build_narrative
from fandiag.scoring import score_with_calculation

CAUSES = [Damage(id="K1", name="Bearing worn"), Damage(id="K2", name="Capacitor bad")]
NAMES = {"G1": "Grinding noise", "G2": "Hot housing"}


def _steps(rules, selected):
    outcome = score_with_calculation(selected, CAUSES, rules)
    return {step.step: step for step in build_narrative(outcome, NAMES)}


def test_narrative_reports_scorer_values():
    rules = [
        DiagnosisRule(damage_id="K1", symptom_id="G1", probability=1),
        DiagnosisRule(damage_id="K1", symptom_id="G2", probability=1),
        DiagnosisRule(damage_id="K2", symptom_id="G1", probability=1),
    ]
    steps = _steps(rules, ["G1", "G2"])

    assert steps[0].lines == ["G1 (Grinding noise), G2 (Hot housing)"]
    assert steps[1].lines == ["P(damage) = 0.500 for every damage"]
    assert steps[2].lines[0].startswith("K1: 0.500000")
    assert steps[2].lines[1].startswith("K2: 0.000000")
    assert steps[3].lines == ["Total = 0.500000"]
    assert steps[4].lines[-1] == "Most likely: Bearing worn (100.0%)"


def test_narrative_without_evidence():
    steps = _steps([], ["G3"])
    assert steps[0].lines == ["G3 (Unknown)"]
    assert steps[3].lines == ["Total = 0.000000"]
    assert steps[4].lines[-1] == "No damage matches every selected symptom"
