"""
CarePath Triage – Benchmark Runner
===================================
Runs the deterministic triage path (validation → rules → safety gate) over
a set of labelled cases and produces aggregate metrics.

Usage:
    python -m evaluation.benchmark_runner evaluation/benchmark_cases.json
"""

from __future__ import annotations

import argparse
import json
import logging
from typing import List

from core.router import CarePathRouter
from evaluation.triage_metrics import triage_report

logger = logging.getLogger(__name__)


def load_test_cases(path: str) -> List[dict]:
    """Load test cases from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        return data
    if "cases" in data:
        return data["cases"]
    raise ValueError(f"Expected a list or {{cases: [...]}} in {path}")


def run_benchmark(
    router: CarePathRouter,
    test_cases: List[dict],
    verbose: bool = True,
) -> dict:
    """
    Run the rule path on a list of test cases and collect metrics.

    Parameters
    ----------
    router : CarePathRouter
        Provides validation, classifier and safety gate.
    test_cases : list[dict]
        Each case should have:
          - "input": request payload
          - "expected_urgency": tier name (optional)
          - "expected_red_flags": list[str] (optional)
    verbose : bool
        Log per-case results.

    Returns
    -------
    dict with aggregate metrics.
    """
    results = []
    errors = []
    gate = router.orchestrator.safety_gate
    classifier = router.orchestrator.classifier

    for i, case in enumerate(test_cases):
        case_id = case.get("id", f"case_{i}")

        try:
            triage_input = router.parse(case.get("input", {}))
            verdict = classifier.classify(triage_input)
            guard = gate.guard(
                [*triage_input.raw_symptoms, *triage_input.symptoms],
                verdict,
                history=triage_input.history,
            )
            report = triage_report(
                guard.verdict.tier,
                expected_urgency=case.get("expected_urgency"),
                detected_red_flags=[h.keyword for h in guard.red_flags],
                expected_red_flags=case.get("expected_red_flags"),
                overrides=guard.overrides,
            )
            case_result = {"case_id": case_id, "status": "success", "triage_metrics": report}

            if verbose:
                logger.info(
                    "Case %s: predicted=%s expected=%s",
                    case_id, report["predicted_urgency"], report.get("expected_urgency", "?"),
                )

        except Exception as e:
            case_result = {"case_id": case_id, "status": "error", "error": str(e)}
            errors.append(case_id)
            logger.error("Case %s failed: %s", case_id, e)

        results.append(case_result)

    successful = [r for r in results if r["status"] == "success"]
    aggregate = _compute_aggregate(successful)
    aggregate["total_cases"] = len(test_cases)
    aggregate["successful_cases"] = len(successful)
    aggregate["failed_cases"] = len(errors)
    aggregate["per_case_results"] = results
    return aggregate


def _compute_aggregate(successful_results: List[dict]) -> dict:
    """Compute aggregate metrics from successful results."""
    if not successful_results:
        return {}

    def _collect(key):
        return [r["triage_metrics"][key] for r in successful_results if key in r["triage_metrics"]]

    def _mean(lst):
        return round(sum(lst) / len(lst), 4) if lst else None

    return {
        "urgency_exact_accuracy": _mean([float(x) for x in _collect("urgency_exact_match")]),
        "urgency_within_one_accuracy": _mean([float(x) for x in _collect("urgency_within_one")]),
        "under_triage_rate": _mean([float(x) for x in _collect("under_triage")]),
        "mean_safety_score": _mean(_collect("safety_score")),
        "mean_red_flag_recall": _mean(_collect("red_flag_recall")),
    }


def main():
    parser = argparse.ArgumentParser(description="CarePath triage benchmark")
    parser.add_argument("cases", help="Path to JSON test case file")
    parser.add_argument("--config", "-c", help="Path to model config YAML")
    args = parser.parse_args()

    from core.logging_utils import setup_logging
    setup_logging(level="INFO")

    aggregate = run_benchmark(CarePathRouter(config_path=args.config), load_test_cases(args.cases))
    aggregate.pop("per_case_results")
    print(json.dumps(aggregate, indent=2))


if __name__ == "__main__":
    main()
