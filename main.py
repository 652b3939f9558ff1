#!/usr/bin/env python3
"""
CarePath Triage – Main Entrypoint
==================================
Usage:
    python main.py --symptoms fever cough --age 31-45 --duration "1-3 days" --severity 4
    python main.py --symptoms "Chest Pain" --age 58 --duration "<24h" --severity 7 --assess
    python main.py --file cases.json

Importable convenience function:
    from main import run_care_pathway
    result = run_care_pathway({"age": 34, "symptoms": ["fever"], "duration": "1-3 days", "severity": 4})
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

from dotenv import load_dotenv
load_dotenv(override=True)

from core.errors import ValidationError
from core.logging_utils import setup_logging
from core.router import CarePathRouter
from models.schema_definition import CarePathwayResult, QuickAssessment, UrgencyTier

# Module-level singleton router (lazy-initialised on first call)
_router: CarePathRouter | None = None


def _get_router(config_path: str | None = None) -> CarePathRouter:
    global _router
    if _router is None:
        _router = CarePathRouter(config_path=config_path)
    return _router


def run_care_pathway(payload: dict, config_path: str | None = None) -> CarePathwayResult:
    """
    Run the care-pathway pipeline for one request payload.

    Parameters
    ----------
    payload : dict
        ``{age, gender?, symptoms, duration, severity, relationship?, language?, history?}``
    config_path : str, optional
        Path to a custom ``model_config.yaml``.

    Returns
    -------
    CarePathwayResult
    """
    router = _get_router(config_path)
    return asyncio.run(router.care_pathway(payload, client_key="cli"))


# ── Presentation helpers ────────────────────────────────────────────────────

COLORS = {
    UrgencyTier.EMERGENCY: "\033[91m",
    UrgencyTier.URGENT: "\033[93m",
    UrgencyTier.MODERATE: "\033[33m",
    UrgencyTier.ROUTINE: "\033[92m",
}
RESET = "\033[0m"


def print_result(result: CarePathwayResult, verbose: bool = False):
    """Pretty-print a care-pathway result to stdout."""
    verdict = result.verdict
    pathway = result.pathway
    color = COLORS.get(verdict.tier, "")

    print(f"\n{'='*60}")
    print(f"  CAREPATH RESULT  |  ID: {result.id}  |  mode: {result.mode}")
    print(f"{'='*60}")
    print(f"  Urgency:    {color}{verdict.tier.value.upper()}{RESET}")
    print(f"  Rationale:  {verdict.rationale}")
    print(f"{'─'*60}")

    if pathway.symptom_explanation:
        print(f"  {pathway.symptom_explanation}")

    print(f"\n  📋 CARE STEPS:")
    for step in pathway.steps:
        timeframe = f" ({step.timeframe})" if step.timeframe else ""
        print(f"   {step.order}. {step.title}{timeframe}")
        for a in step.actions:
            print(f"       • {a}")
        for w in step.warnings or []:
            print(f"       ⚠️  {w}")

    if pathway.medicine_recommendations:
        print(f"\n  💊 MEDICINES:")
        for rec in pathway.medicine_recommendations:
            print(f"     • [{rec.priority}] {rec.medicine.name} – {rec.reason}")
            for p in rec.precautions_for_user:
                print(f"         – {p}")

    if pathway.home_care:
        print(f"\n  🏠 HOME CARE: {', '.join(h.name for h in pathway.home_care)}")
    if pathway.natural_remedies:
        print(f"  🌿 NATURAL: {', '.join(n.name for n in pathway.natural_remedies)}")

    if pathway.emergency_warnings:
        print(f"\n  🚨 EMERGENCY WARNINGS:")
        for w in pathway.emergency_warnings:
            print(f"     • {w}")

    if pathway.personalized_advice:
        print(f"\n  💬 {pathway.personalized_advice}")

    if result.warnings:
        print(f"\n  ⚠️  NOTICES:")
        for w in result.warnings:
            print(f"     • [{w.code}] {w.message}")

    if result.safety_overrides_applied:
        print(f"\n  🔒 SAFETY OVERRIDES:")
        for o in result.safety_overrides_applied:
            print(f"     • {o}")

    if verbose:
        print(f"\n  📊 Full result JSON:")
        print(result.model_dump_json(indent=2))

    print(f"\n{'─'*60}")
    print(f"  ⚕️  {pathway.disclaimer}")
    print(f"{'='*60}\n")


def print_assessment(assessment: QuickAssessment):
    color = COLORS.get(assessment.tier, "")
    print(f"\n{'='*60}")
    print(f"  {color}{assessment.urgency.value.upper()}{RESET} – {assessment.title}")
    print(f"{'─'*60}")
    print(f"  {assessment.explanation}")
    for a in assessment.actions:
        print(f"     • {a}")
    if assessment.possible_causes:
        print(f"\n  Possible causes to discuss with a doctor:")
        for c in assessment.possible_causes:
            print(f"     • {c}")
    print(f"\n  💊 {assessment.antibiotic_note}")
    print(f"{'='*60}\n")


def _payload_from_args(args) -> dict:
    payload = {
        "age": int(args.age) if args.age.isdigit() else args.age,
        "symptoms": args.symptoms,
        "duration": args.duration,
        "severity": args.severity,
        "language": args.language,
    }
    if args.gender:
        payload["gender"] = args.gender
    if args.relationship:
        payload["relationship"] = args.relationship
    return payload


def main():
    parser = argparse.ArgumentParser(description="CarePath Triage")
    parser.add_argument("--symptoms", "-s", nargs="+", help="Symptom ids or labels")
    parser.add_argument("--age", "-a", default="18-30", help="Age in years or age group (default 18-30)")
    parser.add_argument("--duration", "-d", default="1-3 days", help="Duration bucket (default '1-3 days')")
    parser.add_argument("--severity", type=int, default=5, help="Severity 1-10 (default 5)")
    parser.add_argument("--gender", "-g", help="Male, Female or Other")
    parser.add_argument("--relationship", "-r", help="Caregiver relationship, e.g. child")
    parser.add_argument("--language", "-l", default="en", help="Response language code")
    parser.add_argument("--assess", action="store_true", help="Quick green/amber/red assessment only")
    parser.add_argument("--file", "-f", help="Path to JSON file of request payloads")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--config", "-c", help="Path to model config YAML")

    args = parser.parse_args()

    setup_logging(level=os.environ.get("LOG_LEVEL", "WARNING"))

    if args.file:
        with open(args.file) as f:
            data = json.load(f)
        payloads = data if isinstance(data, list) else data.get("cases", [data])
    elif args.symptoms:
        payloads = [_payload_from_args(args)]
    else:
        parser.print_help()
        return

    router = _get_router(args.config)
    for payload in payloads:
        try:
            if args.assess:
                print_assessment(router.assess(payload))
            else:
                result = asyncio.run(router.care_pathway(payload, client_key="cli"))
                print_result(result, verbose=args.verbose)
        except ValidationError as e:
            print(f"\n❌ Invalid input:", file=sys.stderr)
            for err in e.errors:
                print(f"   • {err}", file=sys.stderr)
            sys.exit(2)


if __name__ == "__main__":
    main()
