"""
CarePath Triage – Recommendation Matcher
=========================================
Selects medicines, home-care measures and natural remedies whose trigger
symptoms overlap the reported symptoms.

Ordering per list: number of matched symptoms (desc), catalog priority (asc),
id (asc). The matcher is pure: identical input gives identical output.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from models.catalog.symptom_catalog import SymptomCatalog
from models.schema_definition import MatchResult, RecommendationItem, UrgencyWeight


def _dedupe(symptom_ids: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for s in symptom_ids:
        if s not in seen:
            seen.add(s)
            ordered.append(s)
    return ordered


def _rank(
    items: Sequence[RecommendationItem],
    symptoms: List[str],
    matched_by: Dict[str, List[str]],
) -> list:
    hits = []
    overlaps: Dict[str, List[str]] = {}
    for item in items:
        triggers = set(item.treats)
        overlap = [s for s in symptoms if s in triggers]
        if overlap:
            overlaps[item.id] = overlap
            hits.append(item)
    hits.sort(key=lambda i: (-len(overlaps[i.id]), i.priority, i.id))
    matched_by.update(overlaps)
    return hits


class RecommendationMatcher:
    """Matches symptom ids against the recommendation catalog."""

    def __init__(self, catalog: SymptomCatalog):
        self.catalog = catalog

    def match(self, symptom_ids: Iterable[str]) -> MatchResult:
        symptoms = _dedupe(symptom_ids)
        matched_by: Dict[str, List[str]] = {}

        medicines = _rank(self.catalog.medicines, symptoms, matched_by)
        home_care = _rank(self.catalog.home_remedies, symptoms, matched_by)
        natural = _rank(self.catalog.natural_remedies, symptoms, matched_by)

        emergency_symptoms = [
            s for s in symptoms
            if (entry := self.catalog.get(s)) is not None
            and entry.urgency == UrgencyWeight.EMERGENCY
        ]

        return MatchResult(
            medicines=medicines,
            home_care=home_care,
            natural=natural,
            has_emergency=bool(emergency_symptoms),
            emergency_symptoms=emergency_symptoms,
            matched_by=matched_by,
        )
