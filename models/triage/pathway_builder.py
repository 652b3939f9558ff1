"""
CarePath Triage – Pathway Builder
==================================
Deterministic pieces of a care pathway, driven by escalation_policy.yaml:

  * care-pathway steps per tier and symptom group, with a closing monitoring step
  * personalised medicine recommendations (age, gender, safety class)
  * contraindication summary and emergency warnings
  * rule-based fallback narrative used when no generated narrative is available
  * catalog context for the generation provider
  * the quick green / amber / red assessment
  * final assembly of a CarePathway from verdict, match and narrative
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from core.validation import tier_to_traffic_light
from models.catalog.symptom_catalog import SymptomCatalog, load_yaml
from models.schema_definition import (
    DEGRADED_NOTICE,
    ELDERLY_BANDS,
    PEDIATRIC_BANDS,
    ApprovedMedicine,
    CarePathway,
    CarePathwayStep,
    CatalogSummary,
    GeneratedPathway,
    MatchResult,
    MedicineRecommendation,
    QuickAssessment,
    SafetyClass,
    TriageInput,
    UrgencyTier,
    UrgencyVerdict,
)

logger = logging.getLogger(__name__)

_DEFAULT_POLICY_PATH = Path(__file__).resolve().parents[2] / "configs" / "escalation_policy.yaml"

_PREGNANCY_RISK = {"D", "X"}
_REYE_WARNING = "Aspirin should not be given to children due to risk of Reye's syndrome"


def renumber(steps: Iterable[CarePathwayStep]) -> List[CarePathwayStep]:
    """Re-issue step orders as 1..n in the given sequence."""
    return [s.model_copy(update={"order": i}) for i, s in enumerate(steps, start=1)]


def _step(raw: dict, order: int = 1) -> CarePathwayStep:
    return CarePathwayStep(
        order=order,
        title=raw["title"],
        timeframe=raw.get("timeframe", ""),
        description=raw.get("description", ""),
        actions=list(raw.get("actions", [])),
        warnings=list(raw["warnings"]) if raw.get("warnings") else None,
    )


class PathwayBuilder:
    """Builds the deterministic parts of a care pathway."""

    def __init__(self, catalog: SymptomCatalog, policy_path: Optional[str] = None):
        self.catalog = catalog
        path = Path(policy_path) if policy_path else _DEFAULT_POLICY_PATH
        self.policy = load_yaml(path)
        self.tiers: dict = self.policy.get("tiers", {})
        self.fallback: dict = self.policy.get("fallback", {})

    # ── Steps ───────────────────────────────────────────────────────────

    def emergency_steps(self, escalations: Sequence[str] = ()) -> List[CarePathwayStep]:
        """Single emergency step; safety-rule escalation text is appended to its actions."""
        step = _step(self.policy["emergency_step"])
        extra = [e for e in escalations if e not in step.actions]
        if extra:
            step = step.model_copy(update={"actions": [*step.actions, *extra]})
        return [step]

    def build_steps(
        self,
        triage_input: TriageInput,
        verdict: UrgencyVerdict,
        escalations: Sequence[str] = (),
    ) -> List[CarePathwayStep]:
        if verdict.emergency:
            return self.emergency_steps(escalations)

        steps: List[CarePathwayStep] = []
        if verdict.tier == UrgencyTier.URGENT:
            steps.append(_step(self.policy["urgent_step"]))

        symptoms = set(triage_input.symptoms)
        for group in self.policy.get("symptom_steps", []):
            if symptoms.intersection(group.get("when_any", [])):
                steps.append(_step(group))

        steps.append(_step(self.policy["monitoring_step"]))
        return renumber(steps)

    # ── Medicines ───────────────────────────────────────────────────────

    def recommend_medicines(
        self, triage_input: TriageInput, match: MatchResult
    ) -> List[MedicineRecommendation]:
        """
        Personalise matched medicines for the user.

        Prescription-only medicines are never recommended; aspirin and any
        medicine excluded for the user's age band are skipped. Generally-safe
        medicines are ``primary``, the rest ``alternative``; primary first,
        matcher order preserved within each group.
        """
        band = triage_input.age_band
        primary: List[MedicineRecommendation] = []
        alternative: List[MedicineRecommendation] = []

        for medicine in match.medicines:
            if medicine.safety_class == SafetyClass.PRESCRIPTION_ONLY:
                continue
            if not medicine.suitable_for(band):
                continue
            if band in PEDIATRIC_BANDS and medicine.id == "aspirin":
                continue

            precautions: List[str] = []
            if band in PEDIATRIC_BANDS:
                precautions.append(
                    "Use pediatric formulation if available. Consult pediatrician for correct dosage."
                )
            if band in ELDERLY_BANDS:
                precautions.append("Start with lower dose. Monitor for side effects more closely.")
                if medicine.category == "NSAID":
                    precautions.append(
                        "Elderly are at higher risk for NSAID-related side effects. Consider paracetamol first."
                    )
            if triage_input.gender == "Female" and medicine.pregnancy_category in _PREGNANCY_RISK:
                precautions.append(
                    "Not recommended during pregnancy. If pregnant or planning pregnancy, consult doctor."
                )
            precautions.extend(medicine.precautions[:2])

            treated = match.matched_by.get(medicine.id, [])
            names = [self._name(s, triage_input.language) for s in treated]
            is_primary = medicine.safety_class == SafetyClass.GENERALLY_SAFE
            rec = MedicineRecommendation(
                medicine=medicine,
                priority="primary" if is_primary else "alternative",
                reason=f"Helps with: {', '.join(names)}",
                precautions_for_user=precautions,
            )
            (primary if is_primary else alternative).append(rec)

        return primary + alternative

    @staticmethod
    def contraindications(
        triage_input: TriageInput,
        match: MatchResult,
        recommendations: Sequence[MedicineRecommendation],
    ) -> List[str]:
        """First two contraindications per recommended medicine, plus the Reye warning
        for children whose symptoms would otherwise match aspirin."""
        found: List[str] = []
        if triage_input.age_band in PEDIATRIC_BANDS and any(m.id == "aspirin" for m in match.medicines):
            found.append(_REYE_WARNING)
        for rec in recommendations:
            found.extend(rec.medicine.contraindications[:2])
        return list(dict.fromkeys(found))

    # ── Narrative ───────────────────────────────────────────────────────

    def fallback_narrative(self, triage_input: TriageInput, verdict: UrgencyVerdict) -> GeneratedPathway:
        """Standard narrative for when personalised guidance is unavailable."""
        fb = self.fallback
        symptoms = set(triage_input.symptoms)

        if verdict.emergency:
            explanation = fb.get("emergency_explanation", "")
        else:
            explanation = fb.get("default_explanation", "")
            for rule in fb.get("explanations", []):
                if "when_all" in rule and symptoms.issuperset(rule["when_all"]):
                    explanation = rule["text"]
                    break
                if "when_any" in rule and symptoms.intersection(rule["when_any"]):
                    explanation = rule["text"]
                    break

        advice = fb.get("advice", {})
        if triage_input.age_band in PEDIATRIC_BANDS:
            personalized = advice.get("pediatric", "")
        elif triage_input.age_band in ELDERLY_BANDS:
            personalized = advice.get("elderly", "")
        else:
            personalized = advice.get("default", "")

        tier = self.tiers.get(verdict.tier.value, {})
        return GeneratedPathway(
            symptom_explanation=explanation,
            personalized_advice=personalized,
            recovery_timeline=tier.get("recovery_timeline", ""),
            seek_help_if=list(fb.get("seek_help_if", [])),
        )

    # ── Generation context ──────────────────────────────────────────────

    def catalog_summary(
        self, triage_input: TriageInput, match: MatchResult, verdict: UrgencyVerdict
    ) -> CatalogSummary:
        band = triage_input.age_band
        entries = [e for e in (self.catalog.get(s) for s in triage_input.symptoms) if e]
        approved = [
            ApprovedMedicine(
                name=m.name,
                dosage=m.dosage.for_band(band),
                frequency=m.dosage.frequency,
                max_duration=m.max_duration,
            )
            for m in match.medicines
            if m.safety_class != SafetyClass.PRESCRIPTION_ONLY and m.suitable_for(band)
        ]
        return CatalogSummary(
            symptom_names=[e.name for e in entries],
            body_systems=list(dict.fromkeys(e.body_system for e in entries)),
            approved_medicines=[] if verdict.emergency else approved,
            rule_tier=verdict.tier,
            rule_rationale=verdict.rationale,
            emergency_symptoms=list(match.emergency_symptoms),
        )

    # ── Assembly ────────────────────────────────────────────────────────

    def assemble(
        self,
        triage_input: TriageInput,
        verdict: UrgencyVerdict,
        match: MatchResult,
        narrative: Optional[GeneratedPathway] = None,
        escalations: Sequence[str] = (),
    ) -> CarePathway:
        """
        Combine the deterministic parts with a narrative.

        ``narrative=None`` means the generative branch did not contribute; the
        fallback narrative and the degraded notice are used instead. Emergency
        pathways always use the deterministic emergency step and carry no
        medicine or remedy recommendations.
        """
        degraded = narrative is None
        if degraded:
            narrative = self.fallback_narrative(triage_input, verdict)

        if verdict.emergency:
            steps = self.emergency_steps(escalations)
        elif not degraded and narrative.immediate_actions:
            steps = renumber(narrative.immediate_actions)
        else:
            steps = self.build_steps(triage_input, verdict)

        if verdict.emergency:
            medicines: List[MedicineRecommendation] = []
            home_care, natural = [], []
            contraindications: List[str] = []
            warnings = list(self.policy.get("emergency_warnings", []))
            warnings.extend(e for e in escalations if e not in warnings)
        else:
            medicines = self.recommend_medicines(triage_input, match)
            home_care = [h for h in match.home_care if h.suitable_for(triage_input.age_band)]
            natural = [n for n in match.natural if n.suitable_for(triage_input.age_band)]
            contraindications = self.contraindications(triage_input, match, medicines)
            warnings = []

        advice = narrative.personalized_advice or None
        if degraded:
            advice = f"{DEGRADED_NOTICE} {advice}" if advice else DEGRADED_NOTICE

        fallback = self.fallback_narrative(triage_input, verdict) if not degraded else narrative
        return CarePathway(
            verdict=verdict,
            symptom_explanation=narrative.symptom_explanation or fallback.symptom_explanation,
            steps=steps,
            personalized_advice=advice,
            recovery_timeline=narrative.recovery_timeline or fallback.recovery_timeline,
            when_to_seek_help=list(narrative.seek_help_if or fallback.seek_help_if),
            medicine_recommendations=medicines,
            home_care=home_care,
            natural_remedies=natural,
            contraindications=contraindications,
            emergency_warnings=warnings,
        )

    # ── Quick assessment ────────────────────────────────────────────────

    def quick_assessment(
        self,
        triage_input: TriageInput,
        verdict: UrgencyVerdict,
        match: MatchResult,
        overrides: Sequence[str] = (),
    ) -> QuickAssessment:
        tier = self.tiers.get(verdict.tier.value, {})
        return QuickAssessment(
            urgency=tier_to_traffic_light(verdict.tier),
            tier=verdict.tier,
            title=tier.get("title", verdict.tier.value.title()),
            explanation=f"{tier.get('explanation', '')} {verdict.rationale.rstrip('.')}.".strip(),
            actions=list(tier.get("actions", [])),
            antibiotic_note=self.policy.get("antibiotic_note", ""),
            possible_causes=self.possible_causes(triage_input.symptoms),
            emergency_symptoms=list(match.emergency_symptoms),
            safety_overrides_applied=list(overrides),
        )

    def possible_causes(self, symptom_ids: Iterable[str]) -> List[str]:
        """Cause groups by body system; never disease names."""
        causes = self.policy.get("possible_causes", {})
        out: List[str] = []
        for sid in symptom_ids:
            entry = self.catalog.get(sid)
            text = causes.get(entry.body_system) if entry else None
            text = text or causes.get("default", "")
            if text and text not in out:
                out.append(text)
        return out[:3]

    def _name(self, symptom_id: str, language: str) -> str:
        entry = self.catalog.get(symptom_id)
        return entry.display_name(language) if entry else symptom_id
