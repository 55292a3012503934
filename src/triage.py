"""
Priority derivation for persisted feedback records.

Pure functions of (category, sentiment). Tiers are computed on read for
presentation and never written back to the store.
"""

from typing import Iterable

from settings import (
    CRITICAL_TIER_THRESHOLD,
    FEATURE_REQUEST_MEDIUM_THRESHOLD,
    SUMMARY_CRITICAL_THRESHOLD,
)
from src.models import FeedbackRecord, OPERATIONAL_CATEGORIES, PRIORITY_TIERS, Summary, TriageResult

# Lower rank sorts first
TIER_RANK = {tier: rank for rank, tier in enumerate(PRIORITY_TIERS)}


def derive_tier(
    category: str,
    sentiment: float,
    critical_threshold: float = CRITICAL_TIER_THRESHOLD,
    feature_threshold: float = FEATURE_REQUEST_MEDIUM_THRESHOLD,
) -> str:
    """
    Decision table, first match wins:

        Bugs/Billing    and sentiment <  critical_threshold  -> CRITICAL
        Bugs/Billing    and sentiment >= critical_threshold  -> HIGH
        FeatureRequests and sentiment <  feature_threshold   -> MEDIUM
        otherwise                                            -> LOW
    """
    if category in OPERATIONAL_CATEGORIES:
        return "CRITICAL" if sentiment < critical_threshold else "HIGH"
    if category == "FeatureRequests" and sentiment < feature_threshold:
        return "MEDIUM"
    return "LOW"


def triage(
    record: FeedbackRecord,
    critical_threshold: float = CRITICAL_TIER_THRESHOLD,
    feature_threshold: float = FEATURE_REQUEST_MEDIUM_THRESHOLD,
    summary_threshold: float = SUMMARY_CRITICAL_THRESHOLD,
) -> TriageResult:
    tier = derive_tier(record.category, record.sentiment, critical_threshold, feature_threshold)

    # Create derivation string for transparency
    derivation = f"(category: {record.category}, sentiment: {record.sentiment:.2f}) = {tier}"

    return TriageResult(
        tier=tier,
        derivation=derivation,
        urgent=record.sentiment < summary_threshold,
        operational=record.category in OPERATIONAL_CATEGORIES,
    )


def summarize(
    records: Iterable[FeedbackRecord],
    summary_threshold: float = SUMMARY_CRITICAL_THRESHOLD,
) -> Summary:
    """Counters for the summary tiles. The critical count ignores category."""
    records = list(records)
    return Summary(
        total=len(records),
        critical_count=sum(1 for r in records if r.sentiment < summary_threshold),
        bug_count=sum(1 for r in records if r.category == "Bugs"),
    )


def rank(records: Iterable[FeedbackRecord], **thresholds) -> list[FeedbackRecord]:
    """Most urgent first: tier, then lower sentiment, then newer id."""
    def key(record: FeedbackRecord):
        tier = triage(record, **thresholds).tier
        return (TIER_RANK[tier], record.sentiment, -record.id)

    return sorted(records, key=key)
