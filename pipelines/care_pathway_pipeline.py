"""
CarePath Triage – Care-Pathway Pipeline
========================================
Hybrid orchestrator: deterministic rule branch + generative branch → merge →
safety gate.

  start → awaiting_both → merged | rule_only → safety_checked → done

The rule branch (matcher + classifier) never suspends. The generative branch
runs as a task bounded by ``deadline_s``; on timeout it is cancelled. Any
generative failure degrades to ``rule_only`` with a warning, never to an error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

from core.errors import (
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from core.logging_utils import log_pipeline_event
from core.validation import coerce_tier
from models.catalog.symptom_catalog import SymptomCatalog
from models.generation.gemini_client import GeminiPathwayClient
from models.schema_definition import (
    CarePathwayResult,
    CatalogSummary,
    GeneratedPathway,
    PathwayWarning,
    TriageInput,
    UrgencyTier,
    UrgencyVerdict,
)
from models.triage.pathway_builder import PathwayBuilder
from models.triage.recommendation_matcher import RecommendationMatcher
from models.triage.safety_gate import SafetyGate
from models.triage.urgency_classifier import UrgencyClassifier

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_S = 8.0
RATE_LIMIT_RETRY_AFTER_S = 60


class HybridOrchestrator:
    """Runs both branches for one request and merges them under the safety gate."""

    def __init__(
        self,
        catalog: SymptomCatalog,
        client: Optional[GeminiPathwayClient] = None,
        matcher: Optional[RecommendationMatcher] = None,
        classifier: Optional[UrgencyClassifier] = None,
        safety_gate: Optional[SafetyGate] = None,
        builder: Optional[PathwayBuilder] = None,
        deadline_s: float = DEFAULT_DEADLINE_S,
    ):
        self.catalog = catalog
        self.client = client
        self.matcher = matcher or RecommendationMatcher(catalog)
        self.classifier = classifier or UrgencyClassifier(catalog)
        self.safety_gate = safety_gate or SafetyGate()
        self.builder = builder or PathwayBuilder(catalog)
        self.deadline_s = deadline_s

    async def synthesize(
        self, triage_input: TriageInput, client_key: Optional[str] = None
    ) -> CarePathwayResult:
        """
        Produce a care pathway for one validated request.

        Parameters
        ----------
        triage_input : TriageInput
            Validated request.
        client_key : str, optional
            Rate-limit key of the caller.

        Returns
        -------
        CarePathwayResult – always complete; ``mode`` tells whether the
        generated narrative was merged.
        """
        states = ["start"]
        overrides: List[str] = []

        # Rule branch
        match = self.matcher.match(triage_input.symptoms)
        verdict = self.classifier.classify(triage_input)
        context = self.builder.catalog_summary(triage_input, match, verdict)
        log_pipeline_event(
            logger, "rules", "classified",
            {"tier": verdict.tier.value, "symptoms": triage_input.symptoms},
        )

        # Generative branch
        states.append("awaiting_both")
        generated, warnings = await self._generate(triage_input, context, client_key)

        if generated is not None:
            mode = "merged"
            verdict, merge_overrides = self._merge_urgency(verdict, generated)
            overrides.extend(merge_overrides)
        else:
            mode = "rule_only"
        states.append(mode)

        # Safety gate
        guard = self.safety_gate.guard(
            [*triage_input.raw_symptoms, *triage_input.symptoms],
            verdict,
            generated,
            history=triage_input.history,
        )
        verdict = guard.verdict
        overrides.extend(guard.overrides)
        states.append("safety_checked")

        pathway = self.builder.assemble(
            triage_input,
            verdict,
            match,
            narrative=guard.generated,
            escalations=[h.escalation for h in guard.red_flags] if verdict.emergency else (),
        )
        states.append("done")

        log_pipeline_event(
            logger, "pipeline", "done",
            {"mode": mode, "tier": verdict.tier.value, "warnings": [w.code for w in warnings]},
        )
        return CarePathwayResult(
            mode=mode,
            verdict=verdict,
            match=match,
            pathway=pathway,
            warnings=warnings,
            safety_overrides_applied=overrides,
            states=states,
        )

    async def _generate(
        self,
        triage_input: TriageInput,
        context: CatalogSummary,
        client_key: Optional[str],
    ) -> Tuple[Optional[GeneratedPathway], List[PathwayWarning]]:
        if self.client is None or not self.client.configured:
            return None, [PathwayWarning(
                code="serviceUnavailable",
                message="Personalized guidance is not configured; showing standard guidance.",
            )]

        task = asyncio.create_task(self.client.generate(triage_input, context, client_key))
        try:
            return await asyncio.wait_for(task, timeout=self.deadline_s), []
        except RateLimitedError as e:
            warning = PathwayWarning(
                code="rateLimited",
                message="Too many requests. Personalized guidance paused; showing standard guidance.",
                retry_after_s=e.retry_after_s or RATE_LIMIT_RETRY_AFTER_S,
            )
        except ServiceUnavailableError as e:
            warning = PathwayWarning(code="serviceUnavailable", message=str(e))
        except TimeoutError:
            # covers GenerationTimeoutError and the wait_for deadline
            warning = PathwayWarning(
                code="timeout",
                message="Personalized guidance took too long; showing standard guidance.",
            )
        except UpstreamError as e:
            warning = PathwayWarning(code="upstreamError", message=str(e))
        except Exception as e:
            logger.exception("Unexpected generation failure")
            warning = PathwayWarning(code="upstreamError", message=f"Generation failed: {e}")

        log_pipeline_event(
            logger, "generation", "fallback",
            {"code": warning.code, "message": warning.message},
            level=logging.WARNING,
        )
        return None, [warning]

    @staticmethod
    def _merge_urgency(
        verdict: UrgencyVerdict, generated: GeneratedPathway
    ) -> Tuple[UrgencyVerdict, List[str]]:
        """Adopt the generated urgency only when it is more severe than the rule tier."""
        if not generated.urgency_level:
            return verdict, []
        gen_tier = coerce_tier(generated.urgency_level)
        if gen_tier is None or gen_tier.rank <= verdict.tier.rank:
            return verdict, []

        previous = verdict.tier
        merged = verdict.model_copy(update={
            "tier": gen_tier,
            "emergency": gen_tier == UrgencyTier.EMERGENCY,
            "rationale": f"{verdict.rationale}; raised to {gen_tier.value} by the generated assessment",
        })
        return merged, [f"Urgency upgraded {previous.value} → {gen_tier.value} by generated assessment"]
