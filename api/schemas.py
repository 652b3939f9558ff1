"""
CarePath Triage – API Schemas
==============================
Pydantic models for the REST API request/response contracts.
Responses are camelCase on the wire.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Request Models ──────────────────────────────────────────────────────────


class TriageRequest(BaseModel):
    """
    Request body shared by /triage/assess and /triage/care-pathway.

    Fields are deliberately loose; full validation happens in
    ``core.validation.build_triage_input`` so every problem is reported at once.
    """
    age: Union[int, str, None] = Field(None, description="Age in years or an age group such as '31-45'")
    gender: Optional[Any] = None
    symptoms: Optional[List[Any]] = Field(None, description="Symptom ids or labels")
    duration: Optional[Any] = Field(None, description="e.g. '<24h', '1-3 days', '2+ weeks'")
    severity: Optional[Any] = Field(None, description="1-10")
    relationship: Optional[Any] = None
    language: Optional[Any] = None
    history: Optional[List[Any]] = None


# ── Response Models ─────────────────────────────────────────────────────────


class StepResponse(_CamelModel):
    order: int
    title: str
    timeframe: str = ""
    description: str = ""
    actions: List[str] = Field(default_factory=list)
    warnings: Optional[List[str]] = None


class DosageResponse(_CamelModel):
    adults: str
    children: Optional[str] = None
    elderly: Optional[str] = None
    frequency: str


class MedicineResponse(_CamelModel):
    id: str
    name: str
    category: str
    safety_class: str
    dosage: DosageResponse
    max_duration: str
    common_side_effects: List[str] = Field(default_factory=list)
    serious_side_effects: List[str] = Field(default_factory=list)
    pregnancy_category: str


class MedicineRecommendationResponse(_CamelModel):
    medicine: MedicineResponse
    priority: str
    reason: str
    precautions_for_user: List[str] = Field(default_factory=list)


class RemedyResponse(_CamelModel):
    id: str
    name: str
    rationale: str
    instructions: List[str] = Field(default_factory=list)
    precautions: List[str] = Field(default_factory=list)


class WarningResponse(_CamelModel):
    code: str
    message: str
    retry_after_s: Optional[int] = None


class CarePathwayResponse(_CamelModel):
    """Care pathway returned by /triage/care-pathway."""
    id: str
    timestamp: str
    urgency_level: str
    urgency_explanation: str
    symptom_explanation: str
    immediate_actions: List[StepResponse] = Field(default_factory=list)
    personalized_advice: Optional[str] = None
    recovery_timeline: str = ""
    when_to_seek_help: List[str] = Field(default_factory=list)
    medicine_recommendations: List[MedicineRecommendationResponse] = Field(default_factory=list)
    home_care_recommendations: List[RemedyResponse] = Field(default_factory=list)
    natural_remedies: List[RemedyResponse] = Field(default_factory=list)
    emergency_symptoms: List[str] = Field(default_factory=list)
    triggering_symptoms: List[str] = Field(default_factory=list)
    contraindications: List[str] = Field(default_factory=list)
    emergency_warnings: List[str] = Field(default_factory=list)
    mode: str
    warnings: List[WarningResponse] = Field(default_factory=list)
    safety_overrides_applied: List[str] = Field(default_factory=list)
    disclaimer: str


class AssessmentResponse(_CamelModel):
    """Green / amber / red result returned by /triage/assess."""
    urgency: str
    tier: str
    title: str
    explanation: str
    actions: List[str] = Field(default_factory=list)
    antibiotic_note: str = ""
    possible_causes: List[str] = Field(default_factory=list)
    emergency_symptoms: List[str] = Field(default_factory=list)
    safety_overrides_applied: List[str] = Field(default_factory=list)


class SymptomResponse(_CamelModel):
    id: str
    name: str
    body_system: str
    urgency: str
    description: str = ""
    follow_up_questions: List[str] = Field(default_factory=list)


class SymptomListResponse(_CamelModel):
    language: str
    symptoms: List[SymptomResponse] = Field(default_factory=list)


class ErrorResponse(_CamelModel):
    error: str
    details: List[str] = Field(default_factory=list)


class HealthResponse(_CamelModel):
    status: str = "ok"
    version: str = "0.1.0"
    models: Dict[str, str] = Field(default_factory=dict)
    generation_configured: bool = False
    catalog_size: int = 0
