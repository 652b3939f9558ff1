"""
CarePath Triage – Router
=========================
Composition root. Loads model_config.yaml, builds the catalog, the rule
engines, the rate limiter and the generation client once, and exposes the
two entrypoints used by the API and the CLI.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from core.rate_limiter import InMemoryRateLimitStore, RateLimiter
from core.validation import build_triage_input
from models.catalog.symptom_catalog import SymptomCatalog
from models.generation.gemini_client import GeminiPathwayClient, create_client
from models.schema_definition import CarePathwayResult, QuickAssessment, TriageInput
from models.triage.pathway_builder import PathwayBuilder
from models.triage.recommendation_matcher import RecommendationMatcher
from models.triage.safety_gate import SafetyGate
from models.triage.urgency_classifier import UrgencyClassifier
from pipelines.assessment_pipeline import AssessmentPipeline
from pipelines.care_pathway_pipeline import HybridOrchestrator

logger = logging.getLogger(__name__)

_ROOT = Path(__file__).resolve().parents[1]
_DEFAULT_CONFIG_PATH = _ROOT / "configs" / "model_config.yaml"


class CarePathRouter:
    """One-call entrypoint for CarePath Triage."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        client: Optional[GeminiPathwayClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        cfg_path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH

        self.config: dict = {}
        if cfg_path.exists():
            with open(cfg_path) as f:
                self.config = yaml.safe_load(f) or {}
        else:
            logger.warning("Config not found at %s – using defaults", cfg_path)

        paths = self._build_catalog_paths()
        generation_cfg = self._build_generation_config()
        rate_cfg = self._build_rate_limit_config()

        # Raises CatalogIntegrityError on broken reference data
        self.catalog = SymptomCatalog(paths["symptoms"], paths["recommendations"])
        matcher = RecommendationMatcher(self.catalog)
        classifier = UrgencyClassifier(self.catalog)
        safety_gate = SafetyGate(paths["safety_rules"])
        builder = PathwayBuilder(self.catalog, paths["escalation_policy"])

        self.rate_limiter = rate_limiter or RateLimiter(
            store=InMemoryRateLimitStore(),
            window_s=rate_cfg["window_s"],
            max_requests=rate_cfg["max_requests"],
        )
        self.client = client or create_client(generation_cfg, rate_limiter=self.rate_limiter)
        logger.info(
            "Generation backend: %s (%s), configured=%s",
            generation_cfg["backend"], generation_cfg["model"], self.client.configured,
        )

        self.orchestrator = HybridOrchestrator(
            self.catalog,
            client=self.client,
            matcher=matcher,
            classifier=classifier,
            safety_gate=safety_gate,
            builder=builder,
            deadline_s=generation_cfg["deadline_s"],
        )
        self.assessment_pipeline = AssessmentPipeline(
            self.catalog,
            matcher=matcher,
            classifier=classifier,
            safety_gate=safety_gate,
            builder=builder,
        )

    def _build_catalog_paths(self) -> dict:
        c = self.config.get("catalog", {})

        def resolve(key: str, default: str) -> str:
            p = Path(c.get(key, default))
            return str(p if p.is_absolute() else _ROOT / p)

        return {
            "symptoms": resolve("symptoms", "configs/symptom_catalog.yaml"),
            "recommendations": resolve("recommendations", "configs/recommendations.yaml"),
            "safety_rules": resolve("safety_rules", "configs/safety_rules.yaml"),
            "escalation_policy": resolve("escalation_policy", "configs/escalation_policy.yaml"),
        }

    def _build_generation_config(self) -> dict:
        g = self.config.get("generation", {})
        params = g.get("parameters", {})
        return {
            "backend": g.get("backend", "gemini"),
            "model": g.get("model", "gemini-1.5-flash"),
            "base_url": g.get("base_url", "https://generativelanguage.googleapis.com/v1beta"),
            "timeout_s": g.get("timeout_s", 20),
            "deadline_s": g.get("deadline_s", 8),
            "max_history_turns": g.get("max_history_turns", 10),
            "max_retries": g.get("max_retries", 1),
            "backoff_s": g.get("backoff_s", 0.5),
            "max_output_tokens": params.get("max_output_tokens", 1024),
            "temperature": params.get("temperature", 0.3),
            "top_p": params.get("top_p", 0.9),
            "top_k": params.get("top_k", 40),
        }

    def _build_rate_limit_config(self) -> dict:
        r = self.config.get("rate_limit", {})
        return {
            "window_s": r.get("window_s", 60),
            "max_requests": r.get("max_requests", 20),
        }

    # ── Public API ──────────────────────────────────────────────────────

    def parse(self, payload: Any) -> TriageInput:
        """Validate a raw payload; raises ValidationError."""
        return build_triage_input(payload, self.catalog)

    async def care_pathway(self, payload: Any, client_key: Optional[str] = None) -> CarePathwayResult:
        triage_input = self.parse(payload)
        logger.info("CarePath routing to care-pathway pipeline (%d symptoms)", len(triage_input.symptoms))
        return await self.orchestrator.synthesize(triage_input, client_key=client_key)

    def assess(self, payload: Any) -> QuickAssessment:
        triage_input = self.parse(payload)
        logger.info("CarePath routing to assessment pipeline (%d symptoms)", len(triage_input.symptoms))
        return self.assessment_pipeline.run(triage_input)
