# tests/test_safety_gate.py
import logging

import pytest

from core.errors import CatalogIntegrityError
from models.schema_definition import (
    CarePathwayStep,
    ConversationTurn,
    GeneratedPathway,
    UrgencyTier,
    UrgencyVerdict,
)
from models.triage.safety_gate import SafetyGate, normalize_text, strip_dosage


def _verdict(tier=UrgencyTier.ROUTINE, triggering=()):
    return UrgencyVerdict(
        tier=tier,
        rationale="rule rationale",
        triggering_symptoms=list(triggering),
        emergency=tier == UrgencyTier.EMERGENCY,
    )


def _generated():
    return GeneratedPathway(
        urgency_level="routine",
        symptom_explanation="This may be a viral illness. Take 2 tablets of paracetamol.",
        immediate_actions=[
            CarePathwayStep(
                order=1,
                title="Relief",
                description="Use ibuprofen 200-400 mg with food.",
                actions=["Take 500mg paracetamol every 6 hours", "Rest in bed"],
                warnings=["Do not exceed the maximum dose"],
            )
        ],
        personalized_advice="Stay hydrated. The usual dosage is 10 ml.",
        recovery_timeline="Several days.",
        seek_help_if=["Watch for chest pain"],
    )


@pytest.mark.parametrize("raw", [
    "chest_pain",
    "Chest Pain",
    "DIFFICULTY-BREATHING",
    "sudden severe headache and confusion",
    "I think he is unconscious",
])
def test_emergency_keywords_force_emergency(gate, raw):
    result = gate.guard([raw], _verdict(UrgencyTier.MODERATE))
    assert result.verdict.tier == UrgencyTier.EMERGENCY
    assert result.verdict.emergency is True
    assert result.overrides
    assert "moderate" in result.overrides[0]


def test_rationale_cites_keyword(gate):
    result = gate.guard(["severe bleeding from a cut"], _verdict())
    assert "severe bleeding" in result.verdict.rationale
    assert "rule rationale" in result.verdict.rationale


def test_forced_escalation_is_logged_as_warning(gate, caplog):
    with caplog.at_level(logging.WARNING, logger="models.triage.safety_gate"):
        gate.guard(["stroke"], _verdict(UrgencyTier.URGENT))
    records = [r for r in caplog.records if "[safety_gate] forced_escalation" in r.getMessage()]
    assert records and records[0].levelno == logging.WARNING


def test_matches_whole_words_only(gate):
    result = gate.guard(["heatstroke recovery", "chest painting class", "poisonous plants"], _verdict())
    assert result.verdict.tier == UrgencyTier.ROUTINE
    assert result.overrides == []


@pytest.mark.parametrize("text,keyword", [
    ("he keeps having seizures", "seizure"),
    ("I have chest pains", "chest pain"),
    ("she had two strokes last year", "stroke"),
    ("overdosed on pills", "overdose"),
])
def test_plural_and_past_tense_forms_match(gate, text, keyword):
    hits = gate.scan([text])
    assert keyword in [h.keyword for h in hits]
    assert gate.guard([text], _verdict()).verdict.tier == UrgencyTier.EMERGENCY


def test_missing_rules_file_refuses_to_start(tmp_path):
    with pytest.raises(CatalogIntegrityError, match="not found"):
        SafetyGate(str(tmp_path / "absent.yaml"))


def test_rules_file_without_red_flags_refuses_to_start(tmp_path):
    path = tmp_path / "safety_rules.yaml"
    path.write_text("other_section:\n  keywords: [cough]\n", encoding="utf-8")
    with pytest.raises(CatalogIntegrityError, match="no red_flags"):
        SafetyGate(str(path))


@pytest.mark.parametrize("tier", list(UrgencyTier))
def test_never_downgrades(gate, tier):
    result = gate.guard(["mild cough"], _verdict(tier))
    assert result.verdict.tier == tier


def test_emergency_verdict_is_left_as_is(gate):
    verdict = _verdict(UrgencyTier.EMERGENCY, triggering=["chest_pain"])
    result = gate.guard(["chest pain"], verdict)
    assert result.verdict == verdict
    assert result.overrides == []
    assert [h.keyword for h in result.red_flags] == ["chest pain"]


def test_user_history_is_scanned_but_assistant_turns_are_not(gate):
    user = [ConversationTurn(role="user", content="I have been feeling suicidal")]
    assistant = [ConversationTurn(role="assistant", content="Call if you get chest pain")]

    assert gate.guard(["fatigue"], _verdict(), history=user).verdict.tier == UrgencyTier.EMERGENCY
    assert gate.guard(["fatigue"], _verdict(), history=assistant).verdict.tier == UrgencyTier.ROUTINE


def test_hyphenated_keyword_variants_count_once(gate):
    hits = gate.scan(["thoughts of self-harm", "self harm"])
    assert len(hits) == 1
    assert hits[0].category == "psychiatric"


def test_generated_text_is_not_scanned(gate):
    result = gate.guard(["cough"], _verdict(), _generated())
    assert result.verdict.tier == UrgencyTier.ROUTINE
    # non-emergency narratives keep their dosing
    assert result.generated == _generated()


def test_dosage_is_stripped_on_emergency(gate):
    result = gate.guard(["chest pain"], _verdict(UrgencyTier.URGENT), _generated())
    g = result.generated
    assert result.verdict.tier == UrgencyTier.EMERGENCY
    assert g.symptom_explanation == "This may be a viral illness."
    assert g.personalized_advice == "Stay hydrated."
    assert g.immediate_actions[0].actions == ["Rest in bed"]
    assert g.immediate_actions[0].description == ""
    assert g.immediate_actions[0].warnings == []
    assert "Dosage guidance removed from emergency narrative" in result.overrides


def test_normalize_text():
    assert normalize_text("Chest_Pain") == "chest pain"
    assert normalize_text("  self--harm  ") == "self harm"


def test_strip_dosage_keeps_dose_free_sentences():
    assert strip_dosage("Rest well. Take 5 ml twice daily! Drink water.") == "Rest well. Drink water."
    assert strip_dosage("") == ""
