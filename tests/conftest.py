# tests/conftest.py
import json
from typing import Callable, List

import httpx
import pytest

from core.rate_limiter import RateLimiter
from models.catalog.symptom_catalog import SymptomCatalog
from models.generation.gemini_client import GeminiPathwayClient
from models.schema_definition import (
    AgeBand,
    ConversationTurn,
    DurationBucket,
    TriageInput,
)
from models.triage.pathway_builder import PathwayBuilder
from models.triage.recommendation_matcher import RecommendationMatcher
from models.triage.safety_gate import SafetyGate
from models.triage.urgency_classifier import UrgencyClassifier


@pytest.fixture(scope="session")
def catalog():
    return SymptomCatalog()


@pytest.fixture(scope="session")
def matcher(catalog):
    return RecommendationMatcher(catalog)


@pytest.fixture(scope="session")
def classifier(catalog):
    return UrgencyClassifier(catalog)


@pytest.fixture(scope="session")
def gate():
    return SafetyGate()


@pytest.fixture(scope="session")
def builder(catalog):
    return PathwayBuilder(catalog)


@pytest.fixture
def make_input() -> Callable[..., TriageInput]:
    """Factory for TriageInput with adult, short-duration, mild defaults."""

    def _make(
        symptoms: List[str],
        age_band: AgeBand = AgeBand.AGE_31_45,
        duration: DurationBucket = DurationBucket.DAYS_1_3,
        severity: int = 3,
        raw_symptoms=None,
        history=(),
        **kwargs,
    ) -> TriageInput:
        return TriageInput(
            age_band=age_band,
            symptoms=symptoms,
            raw_symptoms=list(raw_symptoms) if raw_symptoms is not None else list(symptoms),
            duration=duration,
            severity=severity,
            history=[ConversationTurn(role=r, content=c) for r, c in history],
            **kwargs,
        )

    return _make


@pytest.fixture
def pathway_json() -> dict:
    """A well-formed generated pathway as the provider would return it."""
    return {
        "urgencyLevel": "routine",
        "symptomExplanation": "These symptoms often come with a common viral illness.",
        "immediateActions": [
            {
                "order": 2,
                "title": "Stay Hydrated",
                "timeframe": "Ongoing",
                "description": "Drink fluids regularly.",
                "actions": ["Drink water", "Try warm broths"],
            },
            {
                "order": 1,
                "title": "Rest",
                "timeframe": "Today",
                "description": "Give your body time to recover.",
                "actions": ["Sleep well", "Avoid strenuous activity"],
            },
        ],
        "personalizedAdvice": "Take paracetamol 500 mg every 6 hours if needed. Rest at home.",
        "recoveryTimeline": "Usually 3-7 days.",
        "seekHelpIf": ["Fever above 39.4°C", "Difficulty breathing"],
    }


def gemini_body(payload: dict, fenced: bool = False) -> dict:
    """Wrap a JSON payload in a generateContent response body."""
    text = json.dumps(payload)
    if fenced:
        text = f"Here you go:\n```json\n{text}\n```"
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}
        ]
    }


@pytest.fixture
def gemini_response():
    return gemini_body


@pytest.fixture
def mock_gemini(pathway_json):
    """
    Build a GeminiPathwayClient backed by httpx.MockTransport.

    Returns (client, calls) where ``calls`` collects every outgoing request.
    """

    def _build(handler=None, rate_limiter: RateLimiter = None, **kwargs):
        calls: List[httpx.Request] = []

        def _default(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=gemini_body(pathway_json))

        def _record(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return (handler or _default)(request)

        client = GeminiPathwayClient(
            api_key="test-key",
            transport=httpx.MockTransport(_record),
            rate_limiter=rate_limiter,
            backoff_s=0,
            **kwargs,
        )
        return client, calls

    return _build
