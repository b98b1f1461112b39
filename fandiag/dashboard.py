from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Literal

from fandiag.models import DashboardStats, HistoryRecord

DateFilter = Literal["all", "today", "yesterday", "week"]


def _top_result(record: HistoryRecord) -> dict[str, Any] | None:
    return record.results[0] if record.results else None


def matches_search(record: HistoryRecord, term: str) -> bool:
    term = term.strip().lower()
    if not term:
        return True
    owner = record.user
    haystack = [owner.full_name or "", owner.email or "", owner.username or ""]
    return any(term in value.lower() for value in haystack) or term in str(record.id)


def matches_date(record: HistoryRecord, date_filter: DateFilter, now: datetime) -> bool:
    if date_filter == "all":
        return True
    created = record.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    created = created.astimezone(now.tzinfo)
    today = now.date()
    if date_filter == "today":
        return created.date() == today
    if date_filter == "yesterday":
        return created.date() == today - timedelta(days=1)
    if date_filter == "week":
        return created >= now - timedelta(days=7)
    return True


def summarize(
    records: Iterable[HistoryRecord],
    search: str = "",
    date_filter: DateFilter = "all",
    now: datetime | None = None,
) -> DashboardStats:
    """Build the admin dashboard view over stored diagnoses.

    Totals, average confidence and the damage distribution cover every record;
    ``search`` and ``date_filter`` only narrow the returned report list.
    Confidence is the ``percentage`` of each record's top-ranked damage; a
    record with no results counts as 0, a stored top result without a
    ``percentage`` is left out of the confidence figures.
    """
    now = now or datetime.now(timezone.utc)
    records = list(records)

    confidences: list[float] = []
    distribution: Counter[str] = Counter()
    for record in records:
        top = _top_result(record)
        if top is None:
            confidences.append(0.0)
            continue
        if top.get("name"):
            distribution[top["name"]] += 1
        if isinstance(top.get("percentage"), (int, float)):
            confidences.append(float(top["percentage"]))

    filtered = [r for r in records if matches_search(r, search) and matches_date(r, date_filter, now)]
    return DashboardStats(
        total_reports=len(records),
        average_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        max_confidence=max(confidences, default=0.0),
        min_confidence=min(confidences, default=0.0),
        damage_distribution=dict(distribution.most_common()),
        filtered_count=len(filtered),
        reports=filtered,
    )
