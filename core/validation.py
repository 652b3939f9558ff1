"""
CarePath Triage – Validation Utilities
=======================================
Turns a raw request payload into a validated ``TriageInput`` and converts
between the urgency scales.

``build_triage_input`` collects every problem before raising a single
``ValidationError``; no partial input is ever returned.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError
from models.catalog.symptom_catalog import SymptomCatalog
from models.schema_definition import (
    AgeBand,
    ConversationTurn,
    DurationBucket,
    TrafficLight,
    TriageInput,
    UrgencyTier,
)

logger = logging.getLogger(__name__)

MAX_SYMPTOMS = 20
MAX_SYMPTOM_LENGTH = 100
MAX_LABEL_LENGTH = 50
MAX_HISTORY_TURNS = 50
MAX_TURN_LENGTH = 4000
GENDERS = ("Male", "Female", "Other")

_LANGUAGE = re.compile(r"^[a-z]{2}(?:-[a-z]{2})?$")

_AGE_ALIASES = {
    "newborn": AgeBand.NEWBORN,
    "infant": AgeBand.INFANT,
    "baby": AgeBand.INFANT,
    "toddler": AgeBand.TODDLER,
    "preschool": AgeBand.PRESCHOOL,
    "under 18": AgeBand.UNDER_18,
    "under-18": AgeBand.UNDER_18,
    "child": AgeBand.UNDER_18,
    "18-30": AgeBand.AGE_18_30,
    "31-45": AgeBand.AGE_31_45,
    "46-60": AgeBand.AGE_46_60,
    "61-75": AgeBand.AGE_61_75,
    "over 75": AgeBand.OVER_75,
    "over-75": AgeBand.OVER_75,
    "75+": AgeBand.OVER_75,
}

_DURATION_ALIASES = {
    "<24h": DurationBucket.LESS_THAN_24H,
    "less than 24 hours": DurationBucket.LESS_THAN_24H,
    "< 24 hours": DurationBucket.LESS_THAN_24H,
    "today": DurationBucket.LESS_THAN_24H,
    "1-3 days": DurationBucket.DAYS_1_3,
    "4-7 days": DurationBucket.DAYS_4_7,
    "1-2 weeks": DurationBucket.WEEKS_1_2,
    "2+ weeks": DurationBucket.WEEKS_2_PLUS,
    "more than 2 weeks": DurationBucket.WEEKS_2_PLUS,
    "chronic": DurationBucket.CHRONIC,
    "chronic (ongoing)": DurationBucket.CHRONIC,
}

# routine → green, moderate/urgent → amber, emergency → red
_TIER_TO_LIGHT = {
    UrgencyTier.ROUTINE: TrafficLight.GREEN,
    UrgencyTier.MODERATE: TrafficLight.AMBER,
    UrgencyTier.URGENT: TrafficLight.AMBER,
    UrgencyTier.EMERGENCY: TrafficLight.RED,
}

_LABEL_TO_TIER = {
    "routine": UrgencyTier.ROUTINE,
    "moderate": UrgencyTier.MODERATE,
    "urgent": UrgencyTier.URGENT,
    "emergency": UrgencyTier.EMERGENCY,
    "green": UrgencyTier.ROUTINE,
    "amber": UrgencyTier.URGENT,
    "red": UrgencyTier.EMERGENCY,
    "low": UrgencyTier.ROUTINE,
    "medium": UrgencyTier.MODERATE,
    "high": UrgencyTier.URGENT,
}


# ── Urgency scales ──────────────────────────────────────────────────────────


def tier_to_traffic_light(tier: UrgencyTier) -> TrafficLight:
    return _TIER_TO_LIGHT[tier]


def traffic_light_to_tier(light: TrafficLight) -> UrgencyTier:
    """Conservative reverse mapping: amber reads as urgent."""
    return _LABEL_TO_TIER[light.value]


def coerce_tier(value: Any) -> Optional[UrgencyTier]:
    """Map a generated or legacy urgency label to a tier; None if unrecognised."""
    if isinstance(value, UrgencyTier):
        return value
    if isinstance(value, TrafficLight):
        return traffic_light_to_tier(value)
    if not isinstance(value, str):
        return None
    tier = _LABEL_TO_TIER.get(value.strip().lower())
    if tier is None:
        logger.warning("Could not parse urgency '%s' – ignoring", value)
    return tier


# ── Field mapping ───────────────────────────────────────────────────────────


def age_band_for_years(years: int) -> AgeBand:
    if years < 1:
        return AgeBand.INFANT
    if years < 3:
        return AgeBand.TODDLER
    if years < 5:
        return AgeBand.PRESCHOOL
    if years < 18:
        return AgeBand.UNDER_18
    if years <= 30:
        return AgeBand.AGE_18_30
    if years <= 45:
        return AgeBand.AGE_31_45
    if years <= 60:
        return AgeBand.AGE_46_60
    if years <= 75:
        return AgeBand.AGE_61_75
    return AgeBand.OVER_75


def parse_age(value: Any) -> Tuple[Optional[AgeBand], Optional[int], Optional[str]]:
    """Return (band, years, error)."""
    if isinstance(value, bool) or value is None:
        return None, None, "Age is required"
    if isinstance(value, int):
        years = value
    elif isinstance(value, str):
        text = value.strip()
        if not text or len(text) > MAX_LABEL_LENGTH:
            return None, None, "Age must be a non-empty string of at most 50 characters"
        if text.isdigit():
            years = int(text)
        else:
            band = _AGE_ALIASES.get(text.lower())
            if band is None:
                return None, None, f"Unknown age group '{text}'"
            return band, None, None
    else:
        return None, None, "Age must be a number of years or an age group"

    if not 0 <= years <= 130:
        return None, None, "Age must be between 0 and 130"
    return age_band_for_years(years), years, None


def parse_duration(value: Any) -> Tuple[Optional[DurationBucket], Optional[str]]:
    if not isinstance(value, str) or not value.strip():
        return None, "Duration is required"
    if len(value) > MAX_LABEL_LENGTH:
        return None, "Duration must be at most 50 characters"
    bucket = _DURATION_ALIASES.get(value.strip().lower())
    if bucket is None:
        return None, f"Unknown duration '{value.strip()}'"
    return bucket, None


# ── Request → TriageInput ───────────────────────────────────────────────────


def build_triage_input(payload: Any, catalog: SymptomCatalog) -> TriageInput:
    """
    Validate a request payload and build a TriageInput.

    Parameters
    ----------
    payload : dict
        ``{age, gender?, symptoms, duration, severity, relationship?,
        language?, history?}``.
    catalog : SymptomCatalog
        Used to resolve symptom labels to catalog ids.

    Raises
    ------
    ValidationError listing every problem found.
    """
    if not isinstance(payload, dict):
        raise ValidationError(["Request body must be a JSON object"])

    errors: List[str] = []

    band, years, age_error = parse_age(payload.get("age"))
    if age_error:
        errors.append(age_error)

    gender = payload.get("gender")
    if gender is not None:
        if not isinstance(gender, str) or gender.strip().capitalize() not in GENDERS:
            errors.append("Gender must be one of Male, Female, Other")
            gender = None
        else:
            gender = gender.strip().capitalize()

    symptom_ids: List[str] = []
    raw_symptoms: List[str] = []
    symptoms = payload.get("symptoms")
    if not isinstance(symptoms, list) or not symptoms:
        errors.append("At least one symptom is required")
    elif len(symptoms) > MAX_SYMPTOMS:
        errors.append(f"At most {MAX_SYMPTOMS} symptoms are allowed")
    else:
        for label in symptoms:
            if not isinstance(label, str) or not label.strip():
                errors.append("Symptoms must be non-empty strings")
                continue
            if len(label) > MAX_SYMPTOM_LENGTH:
                errors.append(f"Symptom exceeds {MAX_SYMPTOM_LENGTH} characters")
                continue
            raw_symptoms.append(label.strip())
            sid = catalog.normalize_id(label)
            if sid is None:
                errors.append(f"Unknown symptom '{label.strip()}'")
            elif sid not in symptom_ids:
                symptom_ids.append(sid)

    duration, duration_error = parse_duration(payload.get("duration"))
    if duration_error:
        errors.append(duration_error)

    severity = payload.get("severity")
    if isinstance(severity, bool) or not isinstance(severity, int):
        if isinstance(severity, float) and severity.is_integer():
            severity = int(severity)
        else:
            errors.append("Severity must be an integer")
            severity = None
    if severity is not None and not 1 <= severity <= 10:
        errors.append("Severity must be between 1 and 10")

    relationship = payload.get("relationship")
    if relationship is not None and (
        not isinstance(relationship, str) or len(relationship) > MAX_LABEL_LENGTH
    ):
        errors.append("Relationship must be a string of at most 50 characters")

    language = payload.get("language") or "en"
    if not isinstance(language, str) or not _LANGUAGE.match(language.strip().lower()):
        errors.append("Language must be a language code such as 'en' or 'es'")
    else:
        language = language.strip().lower()

    history, history_errors = _parse_history(payload.get("history"))
    errors.extend(history_errors)

    if errors:
        logger.warning("Triage input validation failed: %d errors", len(errors))
        raise ValidationError(errors)

    try:
        return TriageInput(
            age_band=band,
            age_years=years,
            gender=gender,
            symptoms=symptom_ids,
            raw_symptoms=raw_symptoms,
            duration=duration,
            severity=severity,
            relationship=relationship.strip() if relationship else None,
            language=language,
            history=history,
        )
    except PydanticValidationError as e:
        raise ValidationError([
            f"Validation error at '{'.'.join(str(loc) for loc in err['loc'])}': {err['msg']}"
            for err in e.errors()
        ]) from e


def _parse_history(value: Any) -> Tuple[List[ConversationTurn], List[str]]:
    if value is None:
        return [], []
    if not isinstance(value, list):
        return [], ["History must be a list of {role, content} turns"]
    if len(value) > MAX_HISTORY_TURNS:
        return [], [f"History may hold at most {MAX_HISTORY_TURNS} turns"]

    turns: List[ConversationTurn] = []
    errors: List[str] = []
    for i, raw in enumerate(value):
        if not isinstance(raw, dict):
            errors.append(f"History turn {i} must be an object")
            continue
        content = raw.get("content")
        if isinstance(content, str) and len(content) > MAX_TURN_LENGTH:
            errors.append(f"History turn {i} exceeds {MAX_TURN_LENGTH} characters")
            continue
        try:
            turns.append(ConversationTurn(role=raw.get("role"), content=content))
        except PydanticValidationError as e:
            for err in e.errors():
                field = ".".join(str(loc) for loc in err["loc"])
                errors.append(f"History turn {i}: '{field}' {err['msg']}")
    return turns, errors
