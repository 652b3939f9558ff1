# tests/test_recommendation_matcher.py
from models.catalog.symptom_catalog import SymptomCatalog
from models.schema_definition import MatchResult
from models.triage.recommendation_matcher import RecommendationMatcher


def _ids(items):
    return [i.id for i in items]


def _assert_ranked(items, matched_by):
    keys = [(-len(matched_by[i.id]), i.priority, i.id) for i in items]
    assert keys == sorted(keys)


def test_items_are_ranked_by_overlap_then_priority_then_id(matcher):
    result = matcher.match(["fever", "headache", "sore_throat"])

    for items in (result.medicines, result.home_care, result.natural):
        _assert_ranked(items, result.matched_by)

    # paracetamol and ibuprofen match all three; aspirin only two
    meds = _ids(result.medicines)
    assert meds[:2] == ["paracetamol", "ibuprofen"]
    assert meds.index("aspirin") > meds.index("ibuprofen")


def test_matched_by_follows_input_order(matcher):
    result = matcher.match(["headache", "fever"])
    assert result.matched_by["aspirin"] == ["headache", "fever"]
    assert result.matched_by["paracetamol"] == ["headache", "fever"]


def test_every_included_item_overlaps_the_input(matcher, catalog):
    symptoms = ["cough", "runny_nose", "nausea"]
    result = matcher.match(symptoms)
    for item in [*result.medicines, *result.home_care, *result.natural]:
        assert set(item.treats) & set(symptoms)
        assert result.matched_by[item.id]


def test_no_duplicate_items(matcher):
    result = matcher.match(["cough", "sore_throat", "common_cold", "cough"])
    for items in (result.medicines, result.home_care, result.natural):
        ids = _ids(items)
        assert len(ids) == len(set(ids))


def test_duplicate_input_is_ignored(matcher):
    assert matcher.match(["fever", "fever"]) == matcher.match(["fever"])


def test_match_is_deterministic(matcher):
    first = matcher.match(["diarrhea", "vomiting", "fever"])
    second = matcher.match(["diarrhea", "vomiting", "fever"])
    assert first == second


def test_emergency_symptoms_are_flagged_in_input_order(matcher):
    result = matcher.match(["seizure", "fever", "chest_pain"])
    assert result.has_emergency is True
    assert result.emergency_symptoms == ["seizure", "chest_pain"]


def test_no_emergency_for_routine_symptoms(matcher):
    result = matcher.match(["common_cold"])
    assert result.has_emergency is False
    assert result.emergency_symptoms == []
    assert "rest_recovery" in _ids(result.home_care)


def test_empty_input_yields_empty_result(matcher):
    assert matcher.match([]) == MatchResult()


def test_every_section_is_matched_independently(tmp_path):
    sym = tmp_path / "symptoms.yaml"
    rec = tmp_path / "recommendations.yaml"
    sym.write_text("""
symptoms:
  - id: fever
    name: Fever
    urgency: medium
    body_system: general
""")
    rec.write_text("""
medicines:
  - id: paracetamol
    name: Paracetamol
    rationale: Reduces fever.
    treats: [fever]
    dosage: {adults: 500mg per dose, frequency: Every 4-6 hours}
    max_duration: 3 days
    contraindications: [Severe liver disease]
home_remedies:
  - id: fluids
    name: Fluids
    rationale: Prevents dehydration.
    treats: [fever]
    precautions: [See a doctor if symptoms persist]
natural_remedies:
  - id: lukewarm_sponge
    name: Lukewarm sponge
    rationale: Cools the skin.
    treats: [fever]
    precautions: [Do not use cold water]
""")
    result = RecommendationMatcher(SymptomCatalog(str(sym), str(rec))).match(["fever"])

    assert _ids(result.medicines) == ["paracetamol"]
    assert _ids(result.home_care) == ["fluids"]
    assert _ids(result.natural) == ["lukewarm_sponge"]
    assert set(result.matched_by) == {"paracetamol", "fluids", "lukewarm_sponge"}
