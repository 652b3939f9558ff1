"""
CarePath Triage – Gemini Pathway Client
========================================
Generative branch: asks Google Gemini (``generateContent`` REST API) for a
personalised care-pathway narrative.

  - Admission is checked with the injected RateLimiter BEFORE any network call
  - Only catalog-approved dosing is offered to the model (see prompts.py)
  - 429 / 503 responses are retried with exponential backoff
  - No request or response is persisted

Errors raised (all handled by the care-pathway pipeline):
  ServiceUnavailableError  no API key configured
  RateLimitedError         limiter denied this client
  GenerationTimeoutError   HTTP call exceeded ``timeout_s``
  UpstreamError            non-2xx, blocked or unparseable response
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.errors import (
    GenerationTimeoutError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from core.logging_utils import log_pipeline_event
from core.rate_limiter import RateLimiter
from models.generation.prompts import build_system_instruction, build_user_message
from models.schema_definition import CatalogSummary, GeneratedPathway, TriageInput

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash"

_RETRYABLE_STATUS = {429, 503}
_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
_LIST_FIELDS = ("immediateActions", "seekHelpIf")
_STEP_LIST_FIELDS = ("actions", "warnings")


def _as_list(val):
    """Wrap a bare string in a list; a blank string becomes an empty list."""
    if isinstance(val, str):
        return [val] if val.strip() else []
    return val


def _sanitize_pathway_output(data: dict) -> dict:
    """Coerce list fields, strip None values and give steps contiguous 1..n orders."""
    for key in _LIST_FIELDS:
        val = _as_list(data.get(key))
        if isinstance(val, list):
            data[key] = [item for item in val if item is not None]
        elif val is None:
            data[key] = []

    steps = []
    for step in data.get("immediateActions", []):
        if not isinstance(step, dict):
            continue
        for key in _STEP_LIST_FIELDS:
            val = _as_list(step.get(key))
            if isinstance(val, list):
                step[key] = [str(item) for item in val if item is not None]
            elif val is None and key == "actions":
                step[key] = []
        steps.append(step)
    steps.sort(key=lambda s: s.get("order") if isinstance(s.get("order"), int) else len(steps))
    for i, step in enumerate(steps, start=1):
        step["order"] = i
    data["immediateActions"] = steps
    return data


def extract_json(text: str) -> dict:
    """Extract the first valid JSON object from model output."""
    text = text.strip()
    if text.startswith("{"):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

    md_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if md_match:
        try:
            return json.loads(md_match.group(1))
        except json.JSONDecodeError:
            pass

    start = text.find("{")
    if start == -1:
        raise ValueError(f"No JSON object found in model output: {text[:200]}")

    depth = 0
    for i in range(start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    continue

    raise ValueError(f"Could not parse valid JSON from model output: {text[:300]}")


class GeminiPathwayClient:
    """Care-pathway narrative generator backed by the Gemini REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 20,
        max_history_turns: int = 10,
        max_retries: int = 1,
        backoff_s: float = 0.5,
        max_output_tokens: int = 1024,
        temperature: float = 0.3,
        top_p: float = 0.9,
        top_k: int = 40,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = (
            api_key
            or os.environ.get("GEMINI_API_KEY")
            or os.environ.get("GOOGLE_GEMINI_API_KEY")
        )
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_history_turns = max_history_turns
        self.max_retries = max_retries
        self.backoff_s = backoff_s
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.top_k = top_k
        self.rate_limiter = rate_limiter
        self._transport = transport

        if not self.api_key:
            logger.warning(
                "GEMINI_API_KEY is not set – care pathways will use standard guidance only"
            )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    # ── Request construction ────────────────────────────────────────────

    def build_payload(self, triage_input: TriageInput, context: CatalogSummary) -> dict:
        contents: List[dict] = []
        history = triage_input.history
        if self.max_history_turns > 0:
            history = history[-self.max_history_turns:]
        else:
            history = []
        for turn in history:
            contents.append({
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [{"text": turn.content}],
            })
        contents.append({
            "role": "user",
            "parts": [{"text": build_user_message(triage_input, context)}],
        })

        system = build_system_instruction(
            triage_input.age_band,
            language=triage_input.language,
            relationship=triage_input.relationship,
        )
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system}]},
            "generationConfig": {
                "maxOutputTokens": self.max_output_tokens,
                "temperature": self.temperature,
                "topP": self.top_p,
                "topK": self.top_k,
                "responseMimeType": "application/json",
            },
            "safetySettings": [
                {"category": c, "threshold": "BLOCK_MEDIUM_AND_ABOVE"} for c in _SAFETY_CATEGORIES
            ],
        }

    # ── Model call ──────────────────────────────────────────────────────

    async def _post(self, payload: dict) -> dict:
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            while True:
                try:
                    response = await client.post(self.endpoint, headers=headers, json=payload)
                except httpx.TimeoutException as e:
                    raise GenerationTimeoutError(
                        f"Gemini did not answer within {self.timeout_s}s"
                    ) from e
                except httpx.HTTPError as e:
                    raise UpstreamError(f"Gemini request failed: {e}") from e

                if response.status_code in _RETRYABLE_STATUS and attempt < self.max_retries:
                    delay = self.backoff_s * (2 ** attempt)
                    attempt += 1
                    log_pipeline_event(
                        logger, "generation", "retry",
                        {"status": response.status_code, "attempt": attempt, "delay_s": delay},
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code >= 300:
                    raise UpstreamError(
                        f"Gemini returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                try:
                    return response.json()
                except ValueError as e:
                    raise UpstreamError("Gemini returned a non-JSON body") from e

    @staticmethod
    def _response_text(body: dict) -> str:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise UpstreamError(f"Gemini blocked the prompt: {feedback['blockReason']}")
        candidates = body.get("candidates") or []
        if not candidates:
            raise UpstreamError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text.strip():
            reason = candidates[0].get("finishReason", "unknown")
            raise UpstreamError(f"Gemini returned an empty candidate (finishReason={reason})")
        return text

    # ── Public API ──────────────────────────────────────────────────────

    async def generate(
        self,
        triage_input: TriageInput,
        context: CatalogSummary,
        client_key: Optional[str] = None,
    ) -> GeneratedPathway:
        """
        Generate a personalised care-pathway narrative.

        Parameters
        ----------
        triage_input : TriageInput
            Validated request, including conversation history.
        context : CatalogSummary
            Rule-branch context: symptom names, rule tier and approved dosing.
        client_key : str, optional
            Rate-limit key of the caller.

        Returns
        -------
        GeneratedPathway with steps numbered 1..n.
        """
        if not self.configured:
            raise ServiceUnavailableError("Generation provider is not configured")

        if self.rate_limiter is not None:
            decision = self.rate_limiter.check(client_key or "unknown")
            if not decision.allowed:
                raise RateLimitedError(client_key or "unknown", decision.retry_after_s or 60)

        payload = self.build_payload(triage_input, context)
        log_pipeline_event(
            logger, "generation", "request",
            {"model": self.model, "turns": len(payload["contents"])},
        )
        body = await self._post(payload)
        raw_output = self._response_text(body)
        logger.debug("Gemini raw output: %s", raw_output[:500])

        try:
            data = extract_json(raw_output)
        except ValueError as e:
            raise UpstreamError(str(e)) from e
        if not isinstance(data, dict):
            raise UpstreamError("Gemini output is not a JSON object")

        try:
            return GeneratedPathway.model_validate(_sanitize_pathway_output(data))
        except PydanticValidationError as e:
            raise UpstreamError(f"Gemini output failed validation: {e.error_count()} errors") from e


def create_client(config: dict, rate_limiter: Optional[RateLimiter] = None) -> GeminiPathwayClient:
    """
    Build the generation client from the router's generation config.

    Example model_config.yaml entry:

      generation:
        backend: gemini
        model: gemini-1.5-flash
        timeout_s: 20
    """
    backend = config.get("backend", "gemini")
    if backend != "gemini":
        raise ValueError(f"Unsupported generation backend: {backend}")

    return GeminiPathwayClient(
        api_key=config.get("api_key"),
        model=config.get("model", DEFAULT_MODEL),
        base_url=config.get("base_url", DEFAULT_BASE_URL),
        timeout_s=config.get("timeout_s", 20),
        max_history_turns=config.get("max_history_turns", 10),
        max_retries=config.get("max_retries", 1),
        backoff_s=config.get("backoff_s", 0.5),
        max_output_tokens=config.get("max_output_tokens", 1024),
        temperature=config.get("temperature", 0.3),
        top_p=config.get("top_p", 0.9),
        top_k=config.get("top_k", 40),
        rate_limiter=rate_limiter,
        transport=config.get("transport"),
    )
