#!/usr/bin/env python3
"""CLI interface for the Context Verification Engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from .config import Settings
from .engine import ContextVerificationEngine
from .models import DriftStatus, Insights, ProjectTruth, TruthVersionInfo

EXIT_OK = 0
EXIT_VIOLATIONS = 1
EXIT_ERROR = 3


# ============================================================================
# Input loading
# ============================================================================

def load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_items(path: str) -> List[Dict]:
    """Items file: a JSON list, or an object with an ``items`` list."""
    data = load_json(path)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of items")
    return data


def load_truth(path: str):
    content = Path(path).read_text(encoding="utf-8")
    if path.endswith(".md"):
        return ProjectTruth.from_markdown(content)
    return json.loads(content)


# ============================================================================
# Markdown renderers for objects without their own
# ============================================================================

def history_markdown(history: List[TruthVersionInfo]) -> str:
    md = "# Project Truth History\n\n"
    if not history:
        return md + "No versions recorded.\n"
    md += "| Version | Date | Type | Author | Reason |\n|---|---|---|---|---|\n"
    for info in reversed(history):
        md += (f"| v{info.version} | {info.timestamp.strftime('%Y-%m-%d %H:%M')} "
               f"| {info.change_type} | {info.author} | {info.change_reason} |\n")
    return md


def drift_markdown(status: DriftStatus) -> str:
    md = "# Context Drift Status\n\n"
    md += f"**Monitoring**: {status.state.value}\n"
    md += f"**Checks Recorded**: {status.history_length}\n\n"
    snapshot = status.snapshot
    if snapshot is None:
        return md + "No drift checks yet.\n"
    md += f"## {snapshot.severity.emoji} {snapshot.drift_percentage}% drift ({snapshot.severity.value})\n\n"
    md += f"- Purity: {snapshot.purity_score}% of {snapshot.items_checked} items\n"
    md += f"- Truth version: v{snapshot.truth_version}\n"
    if status.trend.determined:
        direction = "increasing" if status.trend.increasing else "stable or decreasing"
        md += f"- Trend: {status.trend.rate:+.2f}% per check ({direction})\n"
    else:
        md += "- Trend: undetermined (not enough checks)\n"
    for name, value in snapshot.source_drift.items():
        md += f"- {name.capitalize()}: {value}% drift\n"
    if snapshot.recommendations:
        md += "\n### Recommendations\n\n"
        for rec in snapshot.recommendations:
            md += f"- {rec}\n"
    return md


def insights_markdown(insights: Insights) -> str:
    md = "# Learning Insights\n\n"
    md += f"Results analyzed: {insights.results_analyzed}\n\n"
    if insights.common_violations:
        md += "## Common Violations\n\n"
        for cluster in insights.common_violations:
            md += (f"- **{cluster.violation_type}** in {cluster.category}: "
                   f"{cluster.occurrences}x ({cluster.message})\n")
        md += "\n"
    if insights.risk_factors:
        md += "## Risk Factors\n\n"
        for risk in insights.risk_factors:
            md += f"- [{risk.impact.upper()}] {risk.factor}: {risk.mitigation}\n"
        md += "\n"
    if insights.prevention_strategies:
        md += "## Prevention Strategies\n\n"
        for strategy in insights.prevention_strategies:
            md += f"- [{strategy.priority.upper()}] **{strategy.name}**: {strategy.description}\n"
        md += "\n"
    md += "## Recommendations\n\n"
    for rec in insights.recommendations:
        md += f"- [{rec['priority'].upper()}] {rec['action']}\n"
    return md


# ============================================================================
# Commands
# ============================================================================

def cmd_truth(engine: ContextVerificationEngine, args):
    if args.truth_command == "set":
        result = engine.create_or_update_truth(
            load_truth(args.file), change_reason=args.reason or "", author=args.author,
        )
        md = f"Project truth v{result.version} saved ({result.change_summary})\n"
        for warning in result.warnings:
            md += f"⚠️ {warning}\n"
        return result, md, EXIT_OK
    if args.truth_command == "history":
        history = engine.truth_store.get_history()
        return {"versions": [v.to_dict() for v in history]}, history_markdown(history), EXIT_OK
    if args.truth_command == "rollback":
        result = engine.rollback_truth(args.version, args.reason or "")
        return result, f"Rolled back to v{args.version} as v{result.version}\n", EXIT_OK

    if args.version:
        truth = engine.truth_store.get_version(args.version)
    else:
        truth = engine.truth_store.require()
    return truth, truth.to_markdown(), EXIT_OK


def cmd_verify(engine: ContextVerificationEngine, args):
    report = engine.verify_backlog(load_items(args.file))
    code = EXIT_VIOLATIONS if report.violations else EXIT_OK
    return report, report.to_markdown(), code


def cmd_sprint(engine: ContextVerificationEngine, args):
    verification = engine.verify_sprint_tasks(load_items(args.file), sprint_name=args.name or "")
    code = EXIT_OK if verification.can_proceed else EXIT_VIOLATIONS
    return verification, verification.to_markdown(), code


def cmd_drift(engine: ContextVerificationEngine, args):
    if args.backlog:
        engine.set_backlog(load_items(args.backlog))
        engine.check_now()
    status = engine.get_drift_status()
    escalated = status.snapshot is not None and status.snapshot.severity.escalates
    return status, drift_markdown(status), EXIT_VIOLATIONS if escalated else EXIT_OK


def cmd_audit(engine: ContextVerificationEngine, args):
    if args.backlog:
        engine.set_backlog(load_items(args.backlog))
    if args.sprints:
        engine.set_sprints(load_json(args.sprints))
    if args.documents:
        engine.set_documents(load_items(args.documents))
    if args.decisions:
        engine.set_decisions(load_items(args.decisions))

    options = {name: False for name in args.skip or []}
    report = engine.generate_full_audit(options, save=args.save)
    text = report.to_html() if args.html else report.to_markdown()
    code = EXIT_VIOLATIONS if report.critical_findings else EXIT_OK
    return report, text, code


def cmd_insights(engine: ContextVerificationEngine, args):
    insights = engine.get_learning_insights()
    return insights, insights_markdown(insights), EXIT_OK


COMMANDS = {
    "truth": cmd_truth,
    "verify": cmd_verify,
    "sprint": cmd_sprint,
    "drift": cmd_drift,
    "audit": cmd_audit,
    "insights": cmd_insights,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-verify",
        description="Context Verification Engine - Detect drift from the project truth",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store a new project truth version
  context-verify truth set project-truth.json --reason "Initial scope"

  # Verify a backlog export against the current truth
  context-verify verify backlog.json

  # Gate a sprint (exit code 1 when any task is blocked)
  context-verify sprint sprint-12.json --name "Sprint 12"

  # Record a drift check and show the trend
  context-verify drift --backlog backlog.json

  # Full audit as HTML
  context-verify audit --backlog backlog.json --sprints sprints.json --html -o audit.html
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed progress")
    parser.add_argument("--json", action="store_true", help="Output as JSON instead of markdown")
    parser.add_argument("--output", "-o", type=str, help="Write output to file")
    parser.add_argument("--root", type=str,
                        help="Storage directory (default: $CV_STORAGE_DIR or .context-verification)")
    parser.add_argument("--ai", action="store_true",
                        help="Use OpenAI for domain alignment (requires OPENAI_API_KEY)")

    sub = parser.add_subparsers(dest="command", required=True)

    truth = sub.add_parser("truth", help="Manage the project truth")
    truth_sub = truth.add_subparsers(dest="truth_command", required=True)
    truth_set = truth_sub.add_parser("set", help="Create or update the truth from JSON or markdown")
    truth_set.add_argument("file")
    truth_set.add_argument("--reason", type=str)
    truth_set.add_argument("--author", type=str, default="cli")
    truth_show = truth_sub.add_parser("show", help="Show the current (or a given) truth version")
    truth_show.add_argument("--version", type=int)
    truth_sub.add_parser("history", help="List truth versions")
    truth_rollback = truth_sub.add_parser("rollback", help="Republish an earlier version")
    truth_rollback.add_argument("version", type=int)
    truth_rollback.add_argument("--reason", type=str)

    verify = sub.add_parser("verify", help="Verify a backlog")
    verify.add_argument("file", help="JSON list of items")

    sprint = sub.add_parser("sprint", help="Verify sprint tasks")
    sprint.add_argument("file", help="JSON list of tasks")
    sprint.add_argument("--name", type=str)

    drift = sub.add_parser("drift", help="Show drift status, optionally checking a backlog first")
    drift.add_argument("--backlog", type=str)

    audit = sub.add_parser("audit", help="Generate a full audit report")
    audit.add_argument("--backlog", type=str)
    audit.add_argument("--sprints", type=str, help="JSON object of sprint name -> tasks")
    audit.add_argument("--documents", type=str)
    audit.add_argument("--decisions", type=str)
    audit.add_argument("--skip", type=lambda s: [c.strip() for c in s.split(",") if c.strip()],
                       help="Comma-separated sections to skip, e.g. documents,decisions")
    audit.add_argument("--html", action="store_true", help="Render HTML instead of markdown")
    audit.add_argument("--save", action="store_true", help="Persist json/md/html to storage")

    sub.add_parser("insights", help="Show learning insights")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = Settings.from_env()
        if args.root:
            settings.storage_dir = Path(args.root)
        engine = ContextVerificationEngine(settings=settings, use_ai=args.ai)

        result, markdown, code = COMMANDS[args.command](engine, args)
        if args.json:
            output = json.dumps(result.to_dict(), indent=2) if hasattr(result, "to_dict") \
                else json.dumps(result, indent=2)
        else:
            output = markdown

        if args.output:
            Path(args.output).write_text(output, encoding="utf-8")
            print(f"Report written to: {args.output}")
        else:
            print(output)
        sys.exit(code)

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
