import pytest

from fandiag.diagnosis import DiagnosisService, InvalidSelectionError
from fandiag.models import Damage, DiagnosisRule, Symptom
from fandiag.results import CurrentUser
from fandiag.store import Store, StoreUnavailableError

from conftest import UNREACHABLE_REDIS

USER = CurrentUser(id=1, username="budi", email="budi@example.com", role="user")


async def _store(sqlite_path):
    store = Store(redis_url=UNREACHABLE_REDIS, sqlite_path=sqlite_path)
    await store.connect()
    await store.replace_catalog(
        symptoms=[Symptom(id="G1", name="Grinding noise"), Symptom(id="G2", name="Hot housing")],
        damages=[Damage(id="K1", name="Bearing worn"), Damage(id="K2", name="Capacitor bad")],
        rules=[
            DiagnosisRule(damage_id="K1", symptom_id="G1", probability=1),
            DiagnosisRule(damage_id="K1", symptom_id="G2", probability=1),
            DiagnosisRule(damage_id="K2", symptom_id="G1", probability=1),
            DiagnosisRule(damage_id="K2", symptom_id="G2", probability=0),
        ],
    )
    return store


@pytest.mark.asyncio
async def test_diagnose_scores_and_records_history(sqlite_path):
    store = await _store(sqlite_path)
    service = DiagnosisService(store=store)

    response = await service.diagnose(USER, ["G1", "G2"], correlation_id="corr-1")

    assert [(r.id, r.percentage) for r in response.results] == [("K1", 100.0), ("K2", 0.0)]
    assert response.calculation.prior_probability == 0.5
    assert response.calculation.total_evidence == 0.5
    assert response.calculation.steps[0].lines == ["G1 (Grinding noise), G2 (Hot housing)"]

    history = await store.list_history(user_id=USER.id)
    assert [h.id for h in history] == [response.history_id]
    assert history[0].results[0]["id"] == "K1"
    await store.close()


@pytest.mark.asyncio
async def test_selection_limits(sqlite_path):
    store = await _store(sqlite_path)
    service = DiagnosisService(store=store, max_selected_symptoms=1)

    with pytest.raises(InvalidSelectionError) as empty:
        await service.diagnose(USER, [], correlation_id="corr-2")
    assert empty.value.code == "no_symptoms_selected"

    with pytest.raises(InvalidSelectionError) as too_many:
        await service.diagnose(USER, ["G1", "G2"], correlation_id="corr-3")
    assert too_many.value.code == "too_many_symptoms"

    # repeated ids count once
    assert service.validate_selection(["G1", "G1"]) == ["G1"]
    await store.close()


@pytest.mark.asyncio
async def test_history_failure_does_not_fail_diagnosis(sqlite_path, monkeypatch):
    store = await _store(sqlite_path)
    service = DiagnosisService(store=store)

    async def _broken_save(*args, **kwargs):
        raise StoreUnavailableError("disk full")

    monkeypatch.setattr(store, "save_history", _broken_save)
    response = await service.diagnose(USER, ["G1"], correlation_id="corr-4")

    assert response.history_id is None
    assert [(r.id, r.percentage) for r in response.results] == [("K1", 50.0), ("K2", 50.0)]
    await store.close()
