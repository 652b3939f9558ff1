"""
CarePath Triage – FastAPI Application
======================================
REST API for the symptom triage and care-pathway engine.

Endpoints:
  POST /triage/assess        – Rule-based green / amber / red assessment
  POST /triage/care-pathway  – Hybrid rule + generative care pathway
  GET  /symptoms             – Symptom catalog listing (?lang=es|hi|fr)
  GET  /health               – Health check
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import (
    AssessmentResponse,
    CarePathwayResponse,
    DosageResponse,
    ErrorResponse,
    HealthResponse,
    MedicineRecommendationResponse,
    MedicineResponse,
    RemedyResponse,
    StepResponse,
    SymptomListResponse,
    SymptomResponse,
    TriageRequest,
    WarningResponse,
)
from core.errors import ValidationError
from core.logging_utils import setup_logging
from core.router import CarePathRouter
from models.schema_definition import CarePathwayResult, HomeRemedy, NaturalRemedy, QuickAssessment

# ── Setup ───────────────────────────────────────────────────────────────────

setup_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_format=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"

app = FastAPI(
    title="CarePath Triage",
    description=(
        "Symptom triage and care-pathway synthesis: deterministic urgency rules "
        "merged with Gemini-generated guidance under a one-way safety override."
    ),
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Built once at import; a broken catalog fails startup with CatalogIntegrityError
router = CarePathRouter()


# ── Error handlers ──────────────────────────────────────────────────────────


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Invalid request", details=exc.errors).model_dump(by_alias=True),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        f"Validation error at '{'.'.join(str(loc) for loc in err['loc'])}': {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Invalid request format", details=details).model_dump(by_alias=True),
    )


# ── Endpoints ───────────────────────────────────────────────────────────────


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check."""
    return HealthResponse(
        status="ok",
        version=VERSION,
        models={"generation": router.client.model},
        generation_configured=router.client.configured,
        catalog_size=len(router.catalog),
    )


@app.get("/symptoms", response_model=SymptomListResponse)
async def list_symptoms(lang: str = "en"):
    """Symptom catalog with names in the requested language (English fallback)."""
    language = lang.strip().lower() or "en"
    return SymptomListResponse(
        language=language,
        symptoms=[SymptomResponse.model_validate(s) for s in router.catalog.listing(language)],
    )


@app.post("/triage/assess", response_model=AssessmentResponse)
def triage_assess(request: TriageRequest):
    """Quick rule-based urgency assessment."""
    try:
        assessment = router.assess(request.model_dump(exclude_none=True))
    except ValidationError:
        raise
    except Exception as e:
        logger.error("Triage assess endpoint failed: %s", e)
        raise HTTPException(status_code=500, detail="Assessment failed")
    return _build_assessment_response(assessment)


@app.post("/triage/care-pathway", response_model=CarePathwayResponse)
async def triage_care_pathway(request: TriageRequest, http_request: Request, response: Response):
    """Personalised care pathway; degrades to standard guidance when generation is unavailable."""
    client_key = client_key_for(http_request)
    try:
        result = await router.care_pathway(request.model_dump(exclude_none=True), client_key=client_key)
    except ValidationError:
        raise
    except Exception as e:
        logger.error("Care pathway endpoint failed: %s", e)
        raise HTTPException(status_code=500, detail="Care pathway generation failed")

    for warning in result.warnings:
        if warning.code == "rateLimited":
            response.headers["Retry-After"] = str(warning.retry_after_s or 60)
    return _build_pathway_response(result)


# ── Helpers ─────────────────────────────────────────────────────────────────


def client_key_for(request: Request) -> str:
    """Rate-limit key: first X-Forwarded-For hop, else X-Real-IP, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _remedy(item: HomeRemedy | NaturalRemedy) -> RemedyResponse:
    steps = item.instructions if isinstance(item, HomeRemedy) else item.how_to_use
    return RemedyResponse(
        id=item.id,
        name=item.name,
        rationale=item.rationale,
        instructions=list(steps),
        precautions=list(item.precautions),
    )


def _build_pathway_response(result: CarePathwayResult) -> CarePathwayResponse:
    """Convert a pipeline result to the API response."""
    pathway = result.pathway
    medicines = [
        MedicineRecommendationResponse(
            medicine=MedicineResponse(
                id=rec.medicine.id,
                name=rec.medicine.name,
                category=rec.medicine.category,
                safety_class=rec.medicine.safety_class.value,
                dosage=DosageResponse(**rec.medicine.dosage.model_dump()),
                max_duration=rec.medicine.max_duration,
                common_side_effects=list(rec.medicine.side_effects.common),
                serious_side_effects=list(rec.medicine.side_effects.serious),
                pregnancy_category=rec.medicine.pregnancy_category,
            ),
            priority=rec.priority,
            reason=rec.reason,
            precautions_for_user=list(rec.precautions_for_user),
        )
        for rec in pathway.medicine_recommendations
    ]
    return CarePathwayResponse(
        id=result.id,
        timestamp=result.timestamp,
        urgency_level=result.verdict.tier.value,
        urgency_explanation=result.verdict.rationale,
        symptom_explanation=pathway.symptom_explanation,
        immediate_actions=[StepResponse(**s.model_dump()) for s in pathway.steps],
        personalized_advice=pathway.personalized_advice,
        recovery_timeline=pathway.recovery_timeline,
        when_to_seek_help=list(pathway.when_to_seek_help),
        medicine_recommendations=medicines,
        home_care_recommendations=[_remedy(h) for h in pathway.home_care],
        natural_remedies=[_remedy(n) for n in pathway.natural_remedies],
        emergency_symptoms=list(result.match.emergency_symptoms),
        triggering_symptoms=list(result.verdict.triggering_symptoms),
        contraindications=list(pathway.contraindications),
        emergency_warnings=list(pathway.emergency_warnings),
        mode=result.mode,
        warnings=[WarningResponse(**w.model_dump()) for w in result.warnings],
        safety_overrides_applied=list(result.safety_overrides_applied),
        disclaimer=pathway.disclaimer,
    )


def _build_assessment_response(assessment: QuickAssessment) -> AssessmentResponse:
    return AssessmentResponse(
        urgency=assessment.urgency.value,
        tier=assessment.tier.value,
        title=assessment.title,
        explanation=assessment.explanation,
        actions=list(assessment.actions),
        antibiotic_note=assessment.antibiotic_note,
        possible_causes=list(assessment.possible_causes),
        emergency_symptoms=list(assessment.emergency_symptoms),
        safety_overrides_applied=list(assessment.safety_overrides_applied),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
