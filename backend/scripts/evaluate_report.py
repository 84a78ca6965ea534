"""
Local growth report runner.

Usage:
  python scripts/evaluate_report.py --pack b2b_saas --stage A-2 --responses scripts/sample_responses.json
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from growth_engine.config import EngineSettings
from growth_engine.models import KPIResponse, report_to_dict
from growth_engine.report_engine import ReportEngine
from growth_engine.rule_loader import RulePack


def _load_responses(path: Path) -> List[KPIResponse]:
    """JSON list of responses, or JSONL with one response per line."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        rows: List[Dict[str, Any]] = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            rows.append(json.loads(line))
    else:
        rows = json.loads(text) if text.strip() else []
    return [
        KPIResponse(kpi_id=str(r["kpi_id"]), value=r.get("value"), not_applicable=bool(r.get("not_applicable")))
        for r in rows
    ]


def summarize(report: Dict[str, Any]) -> Dict[str, Any]:
    summary = report["summary"]
    return {
        "overall_score": None if summary["overall_score"] is None else round(summary["overall_score"], 1),
        "status": summary["status"],
        "completion_rate": round(summary["completion_rate"] * 100, 1),
        "axes": {
            a["axis"]: None if a["score"] is None else round(a["score"], 1)
            for a in report["axis_scores"]
        },
        "risks": len(report["risk_alerts"]),
        "actions": len(report["action_plan"]),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Build a growth report from a rule pack and a responses file.")
    parser.add_argument("--pack-dir", default="rule_packs", help="Directory containing rule packs")
    parser.add_argument("--pack", required=True, help="Rule pack id (directory name)")
    parser.add_argument("--stage", required=True, help="Stage code, e.g. A-2")
    parser.add_argument("--sector", default="", help="Sector override for benchmark lookups")
    parser.add_argument("--responses", required=True, help="Path to JSON or JSONL responses")
    parser.add_argument("--digest-size", type=int, default=None, help="Number of digest entries")
    parser.add_argument("--output", default="", help="Optional path to write the full report JSON")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)

    responses_path = Path(args.responses)
    if not responses_path.exists():
        print(f"Responses file not found: {responses_path}")
        return 1
    responses = _load_responses(responses_path)
    if not responses:
        print("No responses found.")
        return 1

    pack = RulePack(args.pack, args.pack_dir)
    if not pack.validated:
        print(f"Rule pack '{args.pack}' is invalid: {pack.validation_errors}")
        return 1

    engine = ReportEngine.from_rule_pack(pack, settings=EngineSettings.from_env())
    report = report_to_dict(engine.evaluate(
        responses,
        sector=args.sector or pack.sector,
        stage=args.stage,
        digest_size=args.digest_size,
    ))

    print(json.dumps(summarize(report), indent=2))
    if report["critical_alerts"]:
        print("\nCritical alerts:")
        for alert in report["critical_alerts"]:
            print(f"- {alert}")
    if report["quick_highlights"]:
        print("\nHighlights:")
        for item in report["quick_highlights"]:
            print(f"- {item}")

    if args.output:
        Path(args.output).write_text(json.dumps(report, indent=2), encoding="utf-8")
        print(f"\nWrote report to {args.output}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
