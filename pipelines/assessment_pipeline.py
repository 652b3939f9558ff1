"""
CarePath Triage – Assessment Pipeline
======================================
Pipeline: TriageInput → rules → safety gate → green / amber / red assessment.
Fully deterministic; never calls the generation provider.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.logging_utils import log_pipeline_event
from models.catalog.symptom_catalog import SymptomCatalog
from models.schema_definition import QuickAssessment, TriageInput
from models.triage.pathway_builder import PathwayBuilder
from models.triage.recommendation_matcher import RecommendationMatcher
from models.triage.safety_gate import SafetyGate
from models.triage.urgency_classifier import UrgencyClassifier

logger = logging.getLogger(__name__)


class AssessmentPipeline:
    """Quick rule-based urgency assessment."""

    def __init__(
        self,
        catalog: SymptomCatalog,
        matcher: Optional[RecommendationMatcher] = None,
        classifier: Optional[UrgencyClassifier] = None,
        safety_gate: Optional[SafetyGate] = None,
        builder: Optional[PathwayBuilder] = None,
    ):
        self.matcher = matcher or RecommendationMatcher(catalog)
        self.classifier = classifier or UrgencyClassifier(catalog)
        self.safety_gate = safety_gate or SafetyGate()
        self.builder = builder or PathwayBuilder(catalog)

    def run(self, triage_input: TriageInput) -> QuickAssessment:
        match = self.matcher.match(triage_input.symptoms)
        verdict = self.classifier.classify(triage_input)
        guard = self.safety_gate.guard(
            [*triage_input.raw_symptoms, *triage_input.symptoms],
            verdict,
            history=triage_input.history,
        )

        assessment = self.builder.quick_assessment(
            triage_input, guard.verdict, match, overrides=guard.overrides
        )
        log_pipeline_event(
            logger, "assessment", "done",
            {"urgency": assessment.urgency.value, "tier": assessment.tier.value},
        )
        return assessment
