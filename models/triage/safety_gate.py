"""
CarePath Triage – Safety Gate
==============================
Last word on urgency. Runs after the rule branch and the generative branch
have been merged, independently of both, so critical phrases are never missed.

  * Emergency keywords in the raw input, the user's conversation turns or the
    verdict's triggering symptoms force the ``emergency`` tier.
  * Whenever the final tier is ``emergency``, dosage guidance is stripped from
    the generated narrative.
  * The gate never lowers a tier.

A missing or empty rules file raises ``CatalogIntegrityError`` at startup;
the gate never runs without its red-flag list.

Generated text is not scanned for keywords; a narrative that says "watch for
chest pain" would otherwise escalate every request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from core.errors import CatalogIntegrityError
from core.logging_utils import log_pipeline_event
from models.catalog.symptom_catalog import load_yaml
from models.schema_definition import (
    CarePathwayStep,
    ConversationTurn,
    GeneratedPathway,
    UrgencyTier,
    UrgencyVerdict,
)

logger = logging.getLogger(__name__)

_DEFAULT_RULES_PATH = Path(__file__).resolve().parents[2] / "configs" / "safety_rules.yaml"

_SEPARATORS = re.compile(r"[_\-]+")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_DOSAGE = re.compile(
    r"\b\d+(?:[.,]\d+)?\s*(?:-\s*\d+(?:[.,]\d+)?\s*)?"
    r"(?:mg|mcg|µg|ml|g|tablets?|capsules?|tsp|teaspoons?|drops?)\b"
    r"|\bdos(?:e|es|age|ing)\b",
    re.IGNORECASE,
)


def normalize_text(text: str) -> str:
    """Lowercase, turn underscores / hyphens into spaces, collapse whitespace."""
    return _WHITESPACE.sub(" ", _SEPARATORS.sub(" ", text or "")).strip().lower()


def strip_dosage(text: str) -> str:
    """Drop every sentence that carries a dose amount or a dosing word."""
    if not text:
        return text
    kept = [s for s in _SENTENCE_SPLIT.split(text) if not _DOSAGE.search(s)]
    return " ".join(kept).strip()


@dataclass(frozen=True)
class RedFlagHit:
    keyword: str
    category: str
    escalation: str


@dataclass(frozen=True)
class GuardResult:
    verdict: UrgencyVerdict
    generated: Optional[GeneratedPathway]
    overrides: List[str] = field(default_factory=list)
    red_flags: List[RedFlagHit] = field(default_factory=list)


class SafetyGate:
    """Keyword-rule override on top of the merged verdict."""

    def __init__(self, rules_path: Optional[str] = None):
        path = Path(rules_path) if rules_path else _DEFAULT_RULES_PATH

        self.rules: dict = load_yaml(path).get("red_flags") or {}
        if not self.rules:
            raise CatalogIntegrityError(f"Safety rules at {path} define no red_flags")

        self._patterns = []
        for category, rule in self.rules.items():
            escalation = rule.get("escalation", "Call emergency services.")
            for keyword in rule.get("keywords", []):
                norm = normalize_text(keyword)
                # plural and past-tense forms: seizures, chest pains, overdosed
                pattern = re.compile(r"(?<!\w)" + re.escape(norm) + r"(?:s|es|ed|d)?(?!\w)")
                self._patterns.append((pattern, norm, keyword, category, escalation))

    # ── Scanning ────────────────────────────────────────────────────────

    def scan(self, texts: Iterable[str]) -> List[RedFlagHit]:
        """Return the red-flag keywords found in ``texts``, one hit per normalised keyword."""
        corpus = " | ".join(normalize_text(t) for t in texts if t)
        hits: List[RedFlagHit] = []
        seen = set()
        for pattern, norm, keyword, category, escalation in self._patterns:
            if norm in seen:
                continue
            if pattern.search(corpus):
                seen.add(norm)
                hits.append(RedFlagHit(keyword, category, escalation))
        return hits

    # ── Guard ───────────────────────────────────────────────────────────

    def guard(
        self,
        raw_symptoms: Sequence[str],
        verdict: UrgencyVerdict,
        generated: Optional[GeneratedPathway] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> GuardResult:
        """
        Apply the emergency override and dosage stripping.

        Parameters
        ----------
        raw_symptoms : list[str]
            Symptom labels as the user supplied them.
        verdict : UrgencyVerdict
            Merged verdict from the rule and generative branches.
        generated : GeneratedPathway, optional
            Generated narrative, if the generative branch succeeded.
        history : list[ConversationTurn]
            Prior conversation; only the user's own turns are scanned.

        Returns
        -------
        GuardResult – verdict with tier >= the input tier, sanitised narrative,
        and the list of overrides applied.
        """
        texts = list(raw_symptoms)
        texts.extend(t.content for t in history if t.role == "user")
        texts.extend(verdict.triggering_symptoms)

        hits = self.scan(texts)
        overrides: List[str] = []

        if hits and verdict.tier != UrgencyTier.EMERGENCY:
            keywords = [h.keyword for h in hits]
            previous = verdict.tier
            verdict = verdict.model_copy(update={
                "tier": UrgencyTier.EMERGENCY,
                "emergency": True,
                "rationale": (
                    f"Escalated to emergency by safety rule: '{keywords[0]}' reported "
                    f"(was {previous.value}: {verdict.rationale})"
                ),
            })
            overrides.append(
                f"Urgency upgraded {previous.value} → emergency by safety rule '{keywords[0]}'"
            )
            log_pipeline_event(
                logger,
                "safety_gate",
                "forced_escalation",
                {"from": previous.value, "keywords": keywords},
                level=logging.WARNING,
            )
        elif hits:
            logger.info("Red flags present on emergency verdict: %s", [h.keyword for h in hits])

        if generated is not None and verdict.tier == UrgencyTier.EMERGENCY:
            stripped = self._strip_generated(generated)
            if stripped != generated:
                overrides.append("Dosage guidance removed from emergency narrative")
                log_pipeline_event(logger, "safety_gate", "dosage_stripped", level=logging.WARNING)
            generated = stripped

        return GuardResult(verdict=verdict, generated=generated, overrides=overrides, red_flags=hits)

    @staticmethod
    def _strip_generated(generated: GeneratedPathway) -> GeneratedPathway:
        steps = []
        for step in generated.immediate_actions:
            actions = [a for a in (strip_dosage(x) for x in step.actions) if a]
            warnings = None
            if step.warnings is not None:
                warnings = [w for w in (strip_dosage(x) for x in step.warnings) if w]
            steps.append(CarePathwayStep(
                order=step.order,
                title=step.title,
                timeframe=step.timeframe,
                description=strip_dosage(step.description),
                actions=actions,
                warnings=warnings,
            ))
        return generated.model_copy(update={
            "symptom_explanation": strip_dosage(generated.symptom_explanation),
            "personalized_advice": strip_dosage(generated.personalized_advice),
            "recovery_timeline": strip_dosage(generated.recovery_timeline),
            "seek_help_if": [s for s in (strip_dosage(x) for x in generated.seek_help_if) if s],
            "immediate_actions": steps,
        })
