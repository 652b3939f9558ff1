"""
CarePath Triage – Triage Metrics
=================================
Evaluates urgency tiers and safety-rule coverage against expected labels.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from core.validation import coerce_tier
from models.schema_definition import UrgencyTier

TierLike = Union[UrgencyTier, str]


def _tier(value: TierLike) -> UrgencyTier:
    tier = coerce_tier(value)
    if tier is None:
        raise ValueError(f"Unknown urgency tier: {value!r}")
    return tier


def urgency_accuracy(predicted: TierLike, expected: TierLike) -> bool:
    """Exact match on urgency tier."""
    return _tier(predicted) == _tier(expected)


def urgency_within_one(predicted: TierLike, expected: TierLike) -> bool:
    """Is the predicted tier within one step of the expected tier?"""
    return abs(_tier(predicted).rank - _tier(expected).rank) <= 1


def red_flag_recall(detected: List[str], expected: List[str]) -> float:
    """What fraction of expected red-flag keywords were detected?"""
    if not expected:
        return 1.0

    found = {d.lower().strip() for d in detected}
    hits = sum(1 for e in expected if e.lower().strip() in found)
    return hits / len(expected)


def safety_score(predicted: TierLike, expected: TierLike) -> float:
    """
    Safety-weighted score that penalizes under-triage more than over-triage.

    - Under-triage (predicted < expected): 0.3 per tier
    - Over-triage (predicted > expected): 0.1 per tier
    - Exact match: 1.0
    """
    diff = _tier(predicted).rank - _tier(expected).rank

    if diff == 0:
        return 1.0
    elif diff > 0:
        return max(0.0, 1.0 - diff * 0.1)
    else:
        return max(0.0, 1.0 + diff * 0.3)


def under_triage(predicted: TierLike, expected: TierLike) -> bool:
    return _tier(predicted).rank < _tier(expected).rank


def triage_report(
    predicted: TierLike,
    expected_urgency: Optional[TierLike] = None,
    detected_red_flags: Optional[List[str]] = None,
    expected_red_flags: Optional[List[str]] = None,
    overrides: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Generate a triage quality report for one case."""
    report: Dict[str, Any] = {
        "predicted_urgency": _tier(predicted).value,
        "num_red_flags": len(detected_red_flags or []),
        "num_overrides": len(overrides or []),
    }

    if expected_urgency is not None:
        report["expected_urgency"] = _tier(expected_urgency).value
        report["urgency_exact_match"] = urgency_accuracy(predicted, expected_urgency)
        report["urgency_within_one"] = urgency_within_one(predicted, expected_urgency)
        report["under_triage"] = under_triage(predicted, expected_urgency)
        report["safety_score"] = safety_score(predicted, expected_urgency)

    if expected_red_flags is not None:
        report["red_flag_recall"] = red_flag_recall(detected_red_flags or [], expected_red_flags)

    return report
