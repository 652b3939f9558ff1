"""
CarePath Triage – Generation Prompts
=====================================
System instruction and user message for the care-pathway narrative call.
"""

from __future__ import annotations

import json
from typing import Optional

from models.schema_definition import (
    AgeBand,
    CatalogSummary,
    ELDERLY_BANDS,
    INFANT_BANDS,
    TriageInput,
)

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "hi": "Hindi",
    "fr": "French",
}

CARE_PATHWAY_SYSTEM_PROMPT = """You are a health education assistant providing GENERAL INFORMATION ONLY.

CRITICAL SAFETY RULES:
1. You are NOT a doctor. You CANNOT diagnose any condition. Never name a disease as the cause.
2. You CANNOT prescribe any medication.
3. You CANNOT provide any dosage other than the approved ranges listed in the request. If no approved range is listed, give no dosage at all.
4. You MUST always recommend consulting a healthcare professional.
5. You MUST be conservative - when in doubt, recommend seeing a doctor.
6. NEVER minimize potentially serious symptoms.
7. If any symptom could be an emergency (chest pain, difficulty breathing, severe bleeding, stroke signs, loss of consciousness, seizure, self-harm), your FIRST action MUST be to call emergency services (112 / 911 / 108), and you must set "urgencyLevel" to "emergency".

YOUR ROLE:
- Provide general educational information about common symptoms
- Suggest general self-care approaches (rest, hydration, etc.)
- Explain when professional medical help is needed
- Keep language simple, empathetic, and non-alarming

OUTPUT FORMAT:
Respond with a single valid JSON object, no markdown, in this exact shape:
{
  "urgencyLevel": "routine" | "moderate" | "urgent" | "emergency",
  "symptomExplanation": "Brief general explanation of what might cause these symptoms (NOT a diagnosis)",
  "immediateActions": [
    {"order": 1, "title": "...", "timeframe": "...", "description": "...", "actions": ["..."], "warnings": ["..."]}
  ],
  "personalizedAdvice": "Self-care tips appropriate for the user's age and situation",
  "recoveryTimeline": "General timeframe for common non-serious causes",
  "seekHelpIf": ["Warning sign 1", "Warning sign 2", "Warning sign 3"]
}"""

_AGE_GUIDANCE = {
    "infant": (
        "The person is a baby. Be extra cautious: any fever, feeding problem or "
        "breathing change in a baby should be checked by a doctor promptly. Address the parent or caregiver."
    ),
    "child": (
        "The person is a child. Use child-appropriate advice, never suggest aspirin, "
        "and address the parent or caregiver."
    ),
    "adult": "The person is an adult.",
    "elderly": (
        "The person is an older adult. Symptoms may progress differently; suggest "
        "lower thresholds for seeing a doctor and having someone check in on them."
    ),
}

_CHILD_BANDS = {AgeBand.TODDLER, AgeBand.PRESCHOOL, AgeBand.UNDER_18}


def age_group(band: AgeBand) -> str:
    if band in INFANT_BANDS:
        return "infant"
    if band in _CHILD_BANDS:
        return "child"
    if band in ELDERLY_BANDS:
        return "elderly"
    return "adult"


def build_system_instruction(
    age_band: AgeBand,
    language: str = "en",
    relationship: Optional[str] = None,
) -> str:
    """System prompt parameterised by age group, caregiver relationship and language."""
    parts = [CARE_PATHWAY_SYSTEM_PROMPT, "", "AUDIENCE:", _AGE_GUIDANCE[age_group(age_band)]]
    if relationship and relationship.lower() not in {"self", "me"}:
        parts.append(
            f"The request is made by a caregiver on behalf of their {relationship}. "
            "Address the caregiver and refer to the person by that relationship."
        )
    lang = LANGUAGE_NAMES.get(language, language)
    if lang != "English":
        parts.append(
            f"Write every text value in {lang}. Keep the JSON keys and the urgencyLevel value in English."
        )
    return "\n".join(parts)


def build_user_message(triage_input: TriageInput, context: CatalogSummary) -> str:
    """Current request, with the catalog context the provider must stay within."""
    approved = [
        {
            "name": m.name,
            "dosage": m.dosage,
            "frequency": m.frequency,
            "maxDuration": m.max_duration,
        }
        for m in context.approved_medicines
    ]
    lines = [
        "Provide health education information for:",
        f"- Age group: {triage_input.age_band.value}",
        f"- Gender: {triage_input.gender or 'Not specified'}",
        f"- Symptoms: {', '.join(context.symptom_names)}",
        f"- Body systems: {', '.join(context.body_systems) or 'unspecified'}",
        f"- Duration: {triage_input.duration.value}",
        f"- Severity: {triage_input.severity}/10",
        "",
        f"Rule-based urgency assessment: {context.rule_tier.value} ({context.rule_rationale})",
        "Never assess a lower urgency than this.",
    ]
    if context.emergency_symptoms:
        lines.append(
            "Emergency symptoms reported: " + ", ".join(context.emergency_symptoms)
            + ". Lead every step with calling emergency services and give no dosages."
        )
    lines += [
        "",
        "Approved medicine dosing (repeat only these, never exceed them):",
        json.dumps(approved, ensure_ascii=False, indent=2) if approved else "None. Do not mention dosages.",
        "",
        "Return ONLY the JSON object.",
    ]
    return "\n".join(lines)
