# tests/test_pathway_builder.py
from models.schema_definition import (
    DEGRADED_NOTICE,
    AgeBand,
    TrafficLight,
    UrgencyTier,
    UrgencyVerdict,
)


def _verdict(tier=UrgencyTier.ROUTINE):
    return UrgencyVerdict(tier=tier, rationale="test rationale", emergency=tier == UrgencyTier.EMERGENCY)


def _recommend(builder, matcher, ti):
    return builder.recommend_medicines(ti, matcher.match(ti.symptoms))


def _ids(recs):
    return [r.medicine.id for r in recs]


# ── Medicines ───────────────────────────────────────────────────────────────


def test_children_never_get_aspirin(builder, matcher, make_input):
    ti = make_input(["fever", "headache"], age_band=AgeBand.UNDER_18)
    recs = _recommend(builder, matcher, ti)

    assert "aspirin" not in _ids(recs)
    assert recs[0].medicine.id == "paracetamol"
    assert recs[0].precautions_for_user[0].startswith("Use pediatric formulation")

    contraindications = builder.contraindications(ti, matcher.match(ti.symptoms), recs)
    assert any("Reye" in c for c in contraindications)


def test_prescription_only_medicines_are_never_recommended(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["nausea", "vomiting"]))
    assert "ondansetron" not in _ids(recs)
    assert "ors" in _ids(recs)


def test_age_excluded_medicines_are_skipped(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["diarrhea"], age_band=AgeBand.UNDER_18))
    assert "loperamide" not in _ids(recs)


def test_elderly_get_nsaid_precaution(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["headache"], age_band=AgeBand.OVER_75))
    ibuprofen = next(r for r in recs if r.medicine.id == "ibuprofen")
    assert any("NSAID-related" in p for p in ibuprofen.precautions_for_user)
    paracetamol = next(r for r in recs if r.medicine.id == "paracetamol")
    assert not any("NSAID-related" in p for p in paracetamol.precautions_for_user)


def test_pregnancy_precaution_for_female_users(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["headache"], gender="Female"))
    aspirin = next(r for r in recs if r.medicine.id == "aspirin")
    paracetamol = next(r for r in recs if r.medicine.id == "paracetamol")
    assert any("pregnancy" in p for p in aspirin.precautions_for_user)
    assert not any("pregnancy" in p for p in paracetamol.precautions_for_user)


def test_primary_recommendations_come_first(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["fever", "headache", "cough"]))
    priorities = [r.priority for r in recs]
    assert priorities == sorted(priorities, key=lambda p: p != "primary")
    assert "primary" in priorities and "alternative" in priorities


def test_reason_lists_localized_symptoms(builder, matcher, make_input):
    recs = _recommend(builder, matcher, make_input(["fever"], language="es"))
    assert recs[0].reason == "Helps with: fiebre"


# ── Steps ───────────────────────────────────────────────────────────────────


def test_urgent_steps_lead_with_provider_contact(builder, make_input):
    steps = builder.build_steps(make_input(["fever"]), _verdict(UrgencyTier.URGENT))
    assert [s.title for s in steps] == [
        "Contact a Healthcare Provider",
        "Manage Fever",
        "Monitor Your Symptoms",
    ]
    assert [s.order for s in steps] == [1, 2, 3]


def test_routine_steps_follow_symptom_groups(builder, make_input):
    steps = builder.build_steps(make_input(["cough", "headache"]), _verdict())
    assert [s.title for s in steps] == ["Headache Relief", "Respiratory Care", "Monitor Your Symptoms"]


def test_emergency_steps_append_escalation_text(builder, make_input):
    steps = builder.build_steps(
        make_input(["chest_pain"]),
        _verdict(UrgencyTier.EMERGENCY),
        escalations=["Call emergency services immediately. Do not drive yourself."],
    )
    assert len(steps) == 1
    assert "emergency services" in steps[0].actions[0].lower()
    assert steps[0].actions[-1] == "Call emergency services immediately. Do not drive yourself."


# ── Narrative and assembly ──────────────────────────────────────────────────


def test_fallback_narrative_picks_matching_explanation(builder, make_input):
    narrative = builder.fallback_narrative(make_input(["fever", "cough"]), _verdict())
    assert "respiratory infection" in narrative.symptom_explanation
    assert narrative.seek_help_if


def test_fallback_advice_depends_on_age(builder, make_input):
    child = builder.fallback_narrative(make_input(["cough"], age_band=AgeBand.TODDLER), _verdict())
    elderly = builder.fallback_narrative(make_input(["cough"], age_band=AgeBand.OVER_75), _verdict())
    assert "pediatrician" in child.personalized_advice
    assert "check on you" in elderly.personalized_advice


def test_degraded_assembly_uses_standard_guidance(builder, matcher, make_input):
    ti = make_input(["diarrhea"])
    pathway = builder.assemble(ti, _verdict(UrgencyTier.MODERATE), matcher.match(ti.symptoms))

    assert pathway.personalized_advice.startswith(DEGRADED_NOTICE)
    assert "digestive upset" in pathway.symptom_explanation
    assert pathway.steps[0].title == "Prevent Dehydration"
    assert pathway.medicine_recommendations
    assert pathway.contraindications
    assert pathway.emergency_warnings == []
    assert pathway.disclaimer


def test_emergency_assembly_drops_all_recommendations(builder, matcher, make_input):
    ti = make_input(["headache", "seizure"], age_band=AgeBand.UNDER_18)
    pathway = builder.assemble(ti, _verdict(UrgencyTier.EMERGENCY), matcher.match(ti.symptoms))

    assert pathway.medicine_recommendations == []
    assert pathway.home_care == []
    assert pathway.natural_remedies == []
    assert pathway.contraindications == []
    assert "Call emergency services immediately" in pathway.emergency_warnings


def test_emergency_catalog_summary_has_no_approved_dosing(builder, matcher, make_input):
    ti = make_input(["fever", "chest_pain"])
    match = matcher.match(ti.symptoms)
    assert builder.catalog_summary(ti, match, _verdict()).approved_medicines
    summary = builder.catalog_summary(ti, match, _verdict(UrgencyTier.EMERGENCY))
    assert summary.approved_medicines == []
    assert summary.emergency_symptoms == ["chest_pain"]


# ── Quick assessment ────────────────────────────────────────────────────────


def test_quick_assessment_maps_tiers_to_traffic_lights(builder, matcher, make_input):
    ti = make_input(["cough"])
    match = matcher.match(ti.symptoms)
    lights = {
        tier: builder.quick_assessment(ti, _verdict(tier), match).urgency for tier in UrgencyTier
    }
    assert lights == {
        UrgencyTier.ROUTINE: TrafficLight.GREEN,
        UrgencyTier.MODERATE: TrafficLight.AMBER,
        UrgencyTier.URGENT: TrafficLight.AMBER,
        UrgencyTier.EMERGENCY: TrafficLight.RED,
    }


def test_quick_assessment_content(builder, matcher, make_input):
    ti = make_input(["fever", "cough", "headache", "diarrhea", "skin_rash"])
    assessment = builder.quick_assessment(
        ti, _verdict(UrgencyTier.MODERATE), matcher.match(ti.symptoms), overrides=["note"]
    )
    assert assessment.title == "Doctor visit recommended if not improving"
    assert assessment.explanation.endswith("test rationale.")
    assert ".." not in assessment.explanation
    assert assessment.actions
    assert "Antibiotics" in assessment.antibiotic_note
    assert 1 <= len(assessment.possible_causes) <= 3
    assert len(set(assessment.possible_causes)) == len(assessment.possible_causes)
    assert assessment.safety_overrides_applied == ["note"]
