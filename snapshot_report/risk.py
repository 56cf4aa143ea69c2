"""Age-based risk classification and run statistics.

All functions are pure: they take records collected from the inventory and
return new values, so they can be exercised without a vCenter connection.
"""

from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .domain_types import (
    ClassifiedSnapshot,
    ReportStatistics,
    RiskThresholds,
    RiskTier,
    SnapshotRecord,
    VMSummary,
)

_TIER_RANK = {RiskTier.LOW: 0, RiskTier.MEDIUM: 1, RiskTier.HIGH: 2}


def age_in_days(created_at: datetime.datetime, now: datetime.datetime) -> int:
    """Whole days between ``created_at`` and ``now``, never negative.

    Naive timestamps on either side are taken to be UTC.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=datetime.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    # timedelta.days floors, so a snapshot 23h old is 0 days
    return max(0, (now - created_at).days)


def sort_snapshots(
    classified: Iterable[ClassifiedSnapshot], sort_by: str = "size"
) -> List[ClassifiedSnapshot]:
    """Stable descending sort by size (default) or age."""
    if sort_by == "age":
        return sorted(classified, key=lambda c: c.age_days, reverse=True)
    if sort_by == "size":
        return sorted(classified, key=lambda c: c.record.size_gib, reverse=True)
    raise ValueError(f"unknown sort key {sort_by!r}")


def classify(
    records: Sequence[SnapshotRecord],
    thresholds: RiskThresholds,
    now: Optional[datetime.datetime] = None,
    sort_by: str = "size",
) -> List[ClassifiedSnapshot]:
    """Attach age and risk tier to each record and return them sorted.

    ``now`` is captured once for the whole batch so records created at the
    same instant always land in the same tier.
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    classified = []
    for record in records:
        age = age_in_days(record.created_at, now)
        classified.append(ClassifiedSnapshot(record, age, thresholds.classify(age)))
    return sort_snapshots(classified, sort_by)


def aggregate(classified: Sequence[ClassifiedSnapshot]) -> ReportStatistics:
    """Single pass over the classified records."""
    if not classified:
        return ReportStatistics()

    total_size = 0.0
    total_age = 0
    oldest = 0
    tiers = {tier: 0 for tier in RiskTier}
    for c in classified:
        total_size += c.record.size_gib
        total_age += c.age_days
        oldest = max(oldest, c.age_days)
        tiers[c.risk_tier] += 1

    count = len(classified)
    return ReportStatistics(
        total_count=count,
        total_size_gib=round(total_size, 2),
        average_size_gib=round(total_size / count, 2),
        average_age_days=round(total_age / count, 1),
        oldest_age_days=oldest,
        high_risk_count=tiers[RiskTier.HIGH],
        medium_risk_count=tiers[RiskTier.MEDIUM],
        low_risk_count=tiers[RiskTier.LOW],
    )


def summarize_by_vm(classified: Iterable[ClassifiedSnapshot]) -> List[VMSummary]:
    """Per-VM totals, largest consumers first (ties keep first-seen order)."""
    counts: Dict[str, int] = {}
    sizes: Dict[str, float] = {}
    worst: Dict[str, RiskTier] = {}
    for c in classified:
        name = c.record.vm_name
        counts[name] = counts.get(name, 0) + 1
        sizes[name] = sizes.get(name, 0.0) + c.record.size_gib
        if name not in worst or _TIER_RANK[c.risk_tier] > _TIER_RANK[worst[name]]:
            worst[name] = c.risk_tier
    summaries = [
        VMSummary(name, counts[name], round(sizes[name], 2), worst[name]) for name in counts
    ]
    return sorted(summaries, key=lambda s: s.total_size_gib, reverse=True)
