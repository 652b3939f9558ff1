"""
CarePath Triage – Schema Definitions
=====================================
Pydantic models shared by every stage of the engine:
  Reference data : SymptomEntry, RecommendationItem (Medicine / HomeRemedy / NaturalRemedy)
  Request        : TriageInput
  Rule branch    : MatchResult, UrgencyVerdict
  Generative     : CatalogSummary, GeneratedPathway
  Result         : CarePathway, CarePathwayResult, QuickAssessment

Request-scoped models are frozen; later stages rebuild them with
``model_copy(update=...)`` instead of editing in place.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


DISCLAIMER = (
    "This information is for general educational purposes only. It is NOT a "
    "diagnosis and does not replace professional medical advice. If you think "
    "you may have a medical emergency, call your local emergency services immediately."
)

DEGRADED_NOTICE = "Personalized guidance unavailable, showing standard guidance."


# ── Enums ─────────────────────────────────────────────────────────────────


class UrgencyWeight(str, Enum):
    """Catalog urgency weight of a single symptom."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _WEIGHT_RANK[self]


class UrgencyTier(str, Enum):
    """Canonical four-tier urgency scale."""
    ROUTINE = "routine"
    MODERATE = "moderate"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


class TrafficLight(str, Enum):
    """Three-tier scale used by the quick assessment call."""
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


class AgeBand(str, Enum):
    NEWBORN = "newborn"
    INFANT = "infant"
    TODDLER = "toddler"
    PRESCHOOL = "preschool"
    UNDER_18 = "under-18"
    AGE_18_30 = "18-30"
    AGE_31_45 = "31-45"
    AGE_46_60 = "46-60"
    AGE_61_75 = "61-75"
    OVER_75 = "over-75"


class DurationBucket(str, Enum):
    LESS_THAN_24H = "<24h"
    DAYS_1_3 = "1-3 days"
    DAYS_4_7 = "4-7 days"
    WEEKS_1_2 = "1-2 weeks"
    WEEKS_2_PLUS = "2+ weeks"
    CHRONIC = "chronic"

    @property
    def rank(self) -> int:
        return _DURATION_RANK[self]


class SafetyClass(str, Enum):
    GENERALLY_SAFE = "generally-safe"
    USE_CAUTION = "use-caution"
    PRESCRIPTION_ONLY = "prescription-only"


class RecommendationKind(str, Enum):
    MEDICINE = "medicine"
    HOME_REMEDY = "home_remedy"
    NATURAL_REMEDY = "natural_remedy"


_WEIGHT_RANK = {w: i for i, w in enumerate(UrgencyWeight)}
_TIER_RANK = {t: i for i, t in enumerate(UrgencyTier)}
_DURATION_RANK = {d: i for i, d in enumerate(DurationBucket)}

INFANT_BANDS = frozenset({AgeBand.NEWBORN, AgeBand.INFANT})
PEDIATRIC_BANDS = frozenset({
    AgeBand.NEWBORN, AgeBand.INFANT, AgeBand.TODDLER, AgeBand.PRESCHOOL, AgeBand.UNDER_18,
})
ELDERLY_BANDS = frozenset({AgeBand.AGE_61_75, AgeBand.OVER_75})


def max_tier(*tiers: UrgencyTier) -> UrgencyTier:
    """Return the most severe of the given tiers."""
    return max(tiers, key=lambda t: t.rank)


# ── Reference data ─────────────────────────────────────────────────────────


class SymptomEntry(BaseModel):
    """A symptom the catalog knows about."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    localized_names: Dict[str, str] = Field(default_factory=dict)
    urgency: UrgencyWeight
    body_system: str
    age_bands: List[AgeBand] = Field(default_factory=list)   # empty = all ages
    age_urgency: Dict[AgeBand, UrgencyWeight] = Field(default_factory=dict)
    description: str = ""
    follow_up_questions: List[str] = Field(default_factory=list)

    def urgency_for(self, age_band: AgeBand) -> UrgencyWeight:
        """Urgency of this symptom for a given age band (band override, else base weight)."""
        return self.age_urgency.get(age_band, self.urgency)

    def display_name(self, language: str = "en") -> str:
        return self.localized_names.get(language, self.name)


class RecommendationItem(BaseModel):
    """Common shape of every medicine / remedy recommendation."""
    model_config = ConfigDict(frozen=True)

    id: str
    kind: RecommendationKind
    name: str
    rationale: str
    safety_class: SafetyClass = SafetyClass.GENERALLY_SAFE
    priority: int = 100
    treats: List[str]
    contraindications: List[str] = Field(default_factory=list)
    precautions: List[str] = Field(default_factory=list)
    excluded_age_bands: List[AgeBand] = Field(default_factory=list)

    def suitable_for(self, age_band: AgeBand) -> bool:
        return age_band not in self.excluded_age_bands

    @model_validator(mode="after")
    def _check_safety_info(self):
        if not self.treats:
            raise ValueError(f"recommendation '{self.id}' declares no trigger symptoms")
        if not (self.contraindications or self.precautions):
            raise ValueError(
                f"recommendation '{self.id}' needs at least one contraindication or precaution"
            )
        return self


class DosageGuidance(BaseModel):
    model_config = ConfigDict(frozen=True)

    adults: str
    children: Optional[str] = None
    elderly: Optional[str] = None
    frequency: str

    def for_band(self, age_band: AgeBand) -> str:
        if age_band in PEDIATRIC_BANDS:
            return self.children or "Consult a pediatrician for dosing."
        if age_band in ELDERLY_BANDS:
            return self.elderly or self.adults
        return self.adults


class SideEffects(BaseModel):
    model_config = ConfigDict(frozen=True)

    common: List[str] = Field(default_factory=list)
    serious: List[str] = Field(default_factory=list)


class Medicine(RecommendationItem):
    kind: Literal[RecommendationKind.MEDICINE] = RecommendationKind.MEDICINE
    category: str = ""
    dosage: DosageGuidance
    max_duration: str
    side_effects: SideEffects = Field(default_factory=SideEffects)
    pregnancy_category: str = "Not Classified"


class HomeRemedy(RecommendationItem):
    kind: Literal[RecommendationKind.HOME_REMEDY] = RecommendationKind.HOME_REMEDY
    instructions: List[str] = Field(default_factory=list)


class NaturalRemedy(RecommendationItem):
    kind: Literal[RecommendationKind.NATURAL_REMEDY] = RecommendationKind.NATURAL_REMEDY
    how_to_use: List[str] = Field(default_factory=list)


# ── Request ────────────────────────────────────────────────────────────────


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class TriageInput(BaseModel):
    """One validated triage request."""
    model_config = ConfigDict(frozen=True)

    age_band: AgeBand
    age_years: Optional[int] = None
    gender: Optional[str] = None
    symptoms: List[str] = Field(min_length=1)      # catalog ids, de-duplicated, input order
    raw_symptoms: List[str] = Field(default_factory=list)   # as typed, for the safety scan
    duration: DurationBucket
    severity: int = Field(ge=1, le=10)
    relationship: Optional[str] = None
    language: str = "en"
    history: List[ConversationTurn] = Field(default_factory=list)


# ── Rule-based branch ──────────────────────────────────────────────────────


class MatchResult(BaseModel):
    """Output of the recommendation matcher."""
    model_config = ConfigDict(frozen=True)

    medicines: List[Medicine] = Field(default_factory=list)
    home_care: List[HomeRemedy] = Field(default_factory=list)
    natural: List[NaturalRemedy] = Field(default_factory=list)
    has_emergency: bool = False
    emergency_symptoms: List[str] = Field(default_factory=list)
    matched_by: Dict[str, List[str]] = Field(default_factory=dict)


class UrgencyVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    rationale: str
    triggering_symptoms: List[str] = Field(default_factory=list)
    emergency: bool = False

    @model_validator(mode="after")
    def _check_emergency_flag(self):
        if self.emergency != (self.tier == UrgencyTier.EMERGENCY):
            raise ValueError("emergency flag must be set exactly when tier is 'emergency'")
        return self


# ── Generative branch ──────────────────────────────────────────────────────


class ApprovedMedicine(BaseModel):
    """Catalog-approved dosing the provider may repeat but never exceed."""
    model_config = ConfigDict(frozen=True)

    name: str
    dosage: str
    frequency: str
    max_duration: str


class CatalogSummary(BaseModel):
    """Catalog context handed to the generation provider."""
    model_config = ConfigDict(frozen=True)

    symptom_names: List[str]
    body_systems: List[str] = Field(default_factory=list)
    approved_medicines: List[ApprovedMedicine] = Field(default_factory=list)
    rule_tier: UrgencyTier
    rule_rationale: str
    emergency_symptoms: List[str] = Field(default_factory=list)


class CarePathwayStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: int = Field(ge=1)
    title: str
    timeframe: str = ""
    description: str = ""
    actions: List[str] = Field(default_factory=list)
    warnings: Optional[List[str]] = None


class GeneratedPathway(BaseModel):
    """Narrative returned by the generation provider (camelCase on the wire)."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    urgency_level: Optional[str] = None
    symptom_explanation: str = ""
    immediate_actions: List[CarePathwayStep] = Field(default_factory=list)
    personalized_advice: str = ""
    recovery_timeline: str = ""
    seek_help_if: List[str] = Field(default_factory=list)


# ── Result ─────────────────────────────────────────────────────────────────


class MedicineRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    medicine: Medicine
    priority: Literal["primary", "alternative"]
    reason: str
    precautions_for_user: List[str] = Field(default_factory=list)


class CarePathway(BaseModel):
    model_config = ConfigDict(frozen=True)

    verdict: UrgencyVerdict
    symptom_explanation: str = ""
    steps: List[CarePathwayStep] = Field(default_factory=list)
    personalized_advice: Optional[str] = None
    recovery_timeline: str = ""
    when_to_seek_help: List[str] = Field(default_factory=list)
    medicine_recommendations: List[MedicineRecommendation] = Field(default_factory=list)
    home_care: List[HomeRemedy] = Field(default_factory=list)
    natural_remedies: List[NaturalRemedy] = Field(default_factory=list)
    contraindications: List[str] = Field(default_factory=list)
    emergency_warnings: List[str] = Field(default_factory=list)
    disclaimer: str = DISCLAIMER

    @model_validator(mode="after")
    def _check_invariants(self):
        orders = [s.order for s in self.steps]
        if orders != list(range(1, len(orders) + 1)):
            raise ValueError(f"step orders must be 1..n without gaps, got {orders}")
        if self.verdict.emergency:
            if self.medicine_recommendations:
                raise ValueError("emergency pathways must not recommend medicines")
            for step in self.steps:
                if not step.actions or "emergency services" not in step.actions[0].lower():
                    raise ValueError(
                        f"step {step.order} of an emergency pathway must lead with emergency services"
                    )
        return self


class PathwayWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str            # serviceUnavailable / rateLimited / timeout / upstreamError
    message: str
    retry_after_s: Optional[int] = None


class CarePathwayResult(BaseModel):
    """End-to-end result of one care-pathway synthesis."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    mode: Literal["merged", "rule_only"]
    verdict: UrgencyVerdict
    match: MatchResult
    pathway: CarePathway
    warnings: List[PathwayWarning] = Field(default_factory=list)
    safety_overrides_applied: List[str] = Field(default_factory=list)
    states: List[str] = Field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.mode == "rule_only"


class QuickAssessment(BaseModel):
    """Rule-based green / amber / red classification."""
    model_config = ConfigDict(frozen=True)

    urgency: TrafficLight
    tier: UrgencyTier
    title: str
    explanation: str
    actions: List[str] = Field(default_factory=list)
    antibiotic_note: str = ""
    possible_causes: List[str] = Field(default_factory=list)
    emergency_symptoms: List[str] = Field(default_factory=list)
    safety_overrides_applied: List[str] = Field(default_factory=list)
