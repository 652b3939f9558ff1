"""
CarePath Triage – Urgency Classifier
=====================================
Deterministic urgency tier from symptom weights, severity, duration and age.

Rules (each can only raise the tier):
  moderate  : severity >= 5, or duration of 4-7 days or longer
  urgent    : severity >= 8, any symptom weighted "high",
              or 2+ weeks / chronic duration with severity >= 4
  emergency : any symptom weighted "emergency", or an infant band with any
              symptom whose band-specific weight is "high" or above
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from models.catalog.symptom_catalog import SymptomCatalog
from models.schema_definition import (
    INFANT_BANDS,
    DurationBucket,
    TriageInput,
    UrgencyTier,
    UrgencyVerdict,
    UrgencyWeight,
)

logger = logging.getLogger(__name__)

_LONG_DURATIONS = {DurationBucket.WEEKS_2_PLUS, DurationBucket.CHRONIC}

# (tier, reason, symptom id or None)
Trigger = Tuple[UrgencyTier, str, Optional[str]]


class UrgencyClassifier:
    """Maps a validated TriageInput to an UrgencyVerdict."""

    def __init__(self, catalog: SymptomCatalog):
        self.catalog = catalog

    def classify(self, triage_input: TriageInput) -> UrgencyVerdict:
        triggers = self._collect_triggers(triage_input)

        if not triggers:
            return UrgencyVerdict(
                tier=UrgencyTier.ROUTINE,
                rationale="No escalation criteria met; symptoms suitable for self-care with monitoring.",
            )

        tier = max((t for t, _, _ in triggers), key=lambda t: t.rank)
        at_tier = [(reason, sym) for t, reason, sym in triggers if t == tier]

        triggering: List[str] = []
        for _, sym in at_tier:
            if sym and sym not in triggering:
                triggering.append(sym)

        rationale = f"Escalated to {tier.value}: " + "; ".join(reason for reason, _ in at_tier)
        logger.debug("Classified tier=%s triggers=%s", tier.value, triggering)

        return UrgencyVerdict(
            tier=tier,
            rationale=rationale,
            triggering_symptoms=triggering,
            emergency=tier == UrgencyTier.EMERGENCY,
        )

    def _collect_triggers(self, ti: TriageInput) -> List[Trigger]:
        triggers: List[Trigger] = []
        infant = ti.age_band in INFANT_BANDS

        for sid in ti.symptoms:
            entry = self.catalog.get(sid)
            if entry is None:
                continue
            if entry.urgency == UrgencyWeight.EMERGENCY:
                triggers.append((
                    UrgencyTier.EMERGENCY,
                    f"symptom '{sid}' has emergency urgency weight",
                    sid,
                ))
                continue
            band_weight = entry.urgency_for(ti.age_band)
            if band_weight == UrgencyWeight.EMERGENCY or (
                infant and band_weight == UrgencyWeight.HIGH
            ):
                triggers.append((
                    UrgencyTier.EMERGENCY,
                    f"symptom '{sid}' is {band_weight.value} urgency for age band {ti.age_band.value}",
                    sid,
                ))
            elif band_weight == UrgencyWeight.HIGH:
                triggers.append((
                    UrgencyTier.URGENT,
                    f"symptom '{sid}' has high urgency weight",
                    sid,
                ))

        if ti.severity >= 8:
            triggers.append((UrgencyTier.URGENT, f"reported severity {ti.severity}/10", None))
        elif ti.severity >= 5:
            triggers.append((UrgencyTier.MODERATE, f"reported severity {ti.severity}/10", None))

        if ti.duration in _LONG_DURATIONS and ti.severity >= 4:
            triggers.append((
                UrgencyTier.URGENT,
                f"duration {ti.duration.value} with severity {ti.severity}/10",
                None,
            ))
        elif ti.duration.rank >= DurationBucket.DAYS_4_7.rank:
            triggers.append((UrgencyTier.MODERATE, f"duration {ti.duration.value}", None))

        return triggers
