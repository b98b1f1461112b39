from datetime import datetime, timedelta, timezone

from fandiag.dashboard import summarize
from fandiag.models import HistoryOwner, HistoryRecord

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _record(record_id, created_at, results, username="budi", email="budi@example.com", full_name="Budi Santoso"):
    return HistoryRecord(
        id=record_id,
        user=HistoryOwner(id=record_id, username=username, email=email, full_name=full_name),
        symptoms=["G01"],
        results=results,
        created_at=created_at,
    )


def _top(name, percentage):
    return [{"id": "K01", "name": name, "remedy": "", "likelihood": 0.1, "posterior": percentage / 100, "percentage": percentage}]


RECORDS = [
    _record(1, NOW - timedelta(hours=1), _top("Worn or dry bearings", 100.0)),
    _record(2, NOW - timedelta(days=1), _top("Worn or dry bearings", 50.0), username="sari", email="sari@example.com", full_name="Sari"),
    _record(3, NOW - timedelta(days=10), _top("Failed start capacitor", 0.0)),
    # stored before percentages were recorded
    _record(4, NOW - timedelta(days=30), [{"id": "K02", "name": "Failed start capacitor", "probability": 0.7}]),
    _record(5, NOW - timedelta(days=2), []),
]


def test_summary_totals_cover_every_record():
    stats = summarize(RECORDS, now=NOW)

    assert stats.total_reports == 5
    assert stats.filtered_count == 5
    # record 5 has no results and counts as 0, record 4 has no percentage
    assert stats.average_confidence == 37.5
    assert stats.max_confidence == 100.0
    assert stats.min_confidence == 0.0
    assert stats.damage_distribution == {"Worn or dry bearings": 2, "Failed start capacitor": 2}


def test_date_filters():
    assert [r.id for r in summarize(RECORDS, date_filter="today", now=NOW).reports] == [1]
    assert [r.id for r in summarize(RECORDS, date_filter="yesterday", now=NOW).reports] == [2]
    assert [r.id for r in summarize(RECORDS, date_filter="week", now=NOW).reports] == [1, 2, 5]


def test_search_matches_owner_fields_and_id():
    assert [r.id for r in summarize(RECORDS, search="SARI", now=NOW).reports] == [2]
    assert [r.id for r in summarize(RECORDS, search="budi@", now=NOW).reports] == [1, 3, 4, 5]
    assert [r.id for r in summarize(RECORDS, search="4", now=NOW).reports] == [4]


def test_empty_history():
    stats = summarize([], now=NOW)
    assert stats.total_reports == 0
    assert stats.average_confidence == 0.0
    assert stats.reports == []


def test_record_without_results_counts_as_zero_confidence():
    records = [
        _record(1, NOW, _top("Worn or dry bearings", 100.0)),
        _record(2, NOW, []),
    ]
    stats = summarize(records, now=NOW)
    assert stats.average_confidence == 50.0
    assert stats.max_confidence == 100.0
    assert stats.min_confidence == 0.0
