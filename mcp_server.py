#!/usr/bin/env python3
"""
MCP Server for the Context Verification Engine.
Exposes project truth management, backlog/sprint verification, drift monitoring,
audits and learning insights via Model Context Protocol.
"""
import json
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from context_verification import ContextVerificationEngine, ContextVerificationError

# Create MCP server
mcp = FastMCP("context-verification")

# Global engine instance (created lazily)
_engine: Optional[ContextVerificationEngine] = None


def get_engine() -> ContextVerificationEngine:
    """Get the context verification engine (singleton)."""
    global _engine
    if _engine is None:
        _engine = ContextVerificationEngine.from_env()
    return _engine


def _error(e: Exception) -> dict:
    if isinstance(e, ContextVerificationError):
        return {"success": False, "error": str(e), "error_type": type(e).__name__,
                "context": e.context}
    return {"success": False, "error": str(e)}


def _parse_items(items_json: str) -> list:
    items = json.loads(items_json)
    if isinstance(items, dict):
        items = items.get("items", [])
    if not isinstance(items, list):
        raise ValueError("Expected a JSON list of items")
    return items


# =============================================================================
# PROJECT TRUTH
# =============================================================================

@mcp.tool()
def set_project_truth(truth_json: str, change_reason: str = "", author: str = "mcp") -> dict:
    """
    Create or update the project truth. Every call stores a new version.

    Args:
        truth_json: JSON object with whatWereBuilding, industry, targetUsers {primary, secondary},
                    notThis [..], competitors [{name, description}], domainTerms [{term, definition}]
        change_reason: Why the truth changed (recorded in version history)
        author: Who made the change

    Returns:
        dict with the new version, change classification and quality warnings
    """
    try:
        result = get_engine().create_or_update_truth(
            json.loads(truth_json), change_reason=change_reason, author=author
        )
        return {"success": True, **result.to_dict()}
    except Exception as e:
        return _error(e)


@mcp.tool()
def get_project_truth(version: int = 0) -> dict:
    """
    Get the current project truth, or a specific version.

    Args:
        version: Version number to read (0 = current)

    Returns:
        dict with the truth and its markdown rendering
    """
    try:
        engine = get_engine()
        truth = engine.truth_store.get_version(version) if version else engine.truth_store.require()
        return {
            "success": True,
            "truth": truth.to_dict(),
            "markdown": truth.to_markdown(),
        }
    except Exception as e:
        return _error(e)


@mcp.tool()
def get_truth_history() -> dict:
    """
    List all project truth versions, oldest first.

    Returns:
        dict with version metadata (author, reason, change type, changed fields)
    """
    try:
        history = get_engine().truth_store.get_history()
        return {
            "success": True,
            "count": len(history),
            "versions": [v.to_dict() for v in history],
        }
    except Exception as e:
        return _error(e)


@mcp.tool()
def compare_truth_versions(version_a: int, version_b: int) -> dict:
    """
    Field-by-field differences between two truth versions.

    Args:
        version_a: Older version number
        version_b: Newer version number

    Returns:
        dict with the list of changed fields and their impact
    """
    try:
        differences = get_engine().truth_store.compare_versions(version_a, version_b)
        return {
            "success": True,
            "version_a": version_a,
            "version_b": version_b,
            "changes": [d.to_dict() for d in differences],
        }
    except Exception as e:
        return _error(e)


@mcp.tool()
def rollback_truth(version: int, reason: str = "") -> dict:
    """
    Republish an earlier truth version as a new version.

    Args:
        version: Version to restore
        reason: Why the rollback is needed

    Returns:
        dict with the newly created version
    """
    try:
        result = get_engine().rollback_truth(version, reason)
        return {"success": True, "restored_from": version, **result.to_dict()}
    except Exception as e:
        return _error(e)


# =============================================================================
# VERIFICATION
# =============================================================================

@mcp.tool()
def verify_backlog(items_json: str) -> dict:
    """
    Verify backlog items against the current project truth.
    The items become the backlog that drift checks re-verify.

    Args:
        items_json: JSON list of items with id, title, description, category, acceptanceCriteria

    Returns:
        dict with purity score, counts per status and per-item results
    """
    try:
        report = get_engine().verify_backlog(_parse_items(items_json))
        return {
            "success": True,
            **report.to_dict(),
            "markdown_report": report.to_markdown(),
        }
    except Exception as e:
        return _error(e)


@mcp.tool()
def verify_sprint_tasks(tasks_json: str, sprint_name: str = "") -> dict:
    """
    Gate a sprint: can_proceed is false when any task is blocked.

    Args:
        tasks_json: JSON list of tasks (same shape as backlog items)
        sprint_name: Sprint label for the report

    Returns:
        dict with can_proceed, alignment score and blocked tasks
    """
    try:
        verification = get_engine().verify_sprint_tasks(
            _parse_items(tasks_json), sprint_name=sprint_name
        )
        return {
            "success": True,
            **verification.to_dict(),
            "markdown_report": verification.to_markdown(),
        }
    except Exception as e:
        return _error(e)


@mcp.tool()
def quick_item_check(title: str, description: str = "") -> dict:
    """
    Score one item against the current truth without recording it anywhere.

    Args:
        title: Item title
        description: Optional item description

    Returns:
        dict with status, confidence and the sub-score breakdown
    """
    try:
        result = get_engine().score_items(
            [{"title": title, "description": description}], record=False
        )[0]
        return {
            "success": True,
            "status_emoji": result.status.emoji,
            **result.to_dict(),
        }
    except Exception as e:
        return _error(e)


# =============================================================================
# DRIFT MONITORING
# =============================================================================

@mcp.tool()
def start_drift_monitoring(interval_minutes: float = 60) -> dict:
    """
    Start periodic drift checks of the current backlog.

    Args:
        interval_minutes: Minutes between checks (minimum 5)

    Returns:
        dict with started (false if monitoring was already running)
    """
    try:
        started = get_engine().start_monitoring(interval_minutes)
        return {"success": True, "started": started, "interval_minutes": interval_minutes}
    except Exception as e:
        return _error(e)


@mcp.tool()
def stop_drift_monitoring() -> dict:
    """
    Stop periodic drift checks.

    Returns:
        dict with stopped (false if monitoring was not running)
    """
    try:
        return {"success": True, "stopped": get_engine().stop_monitoring()}
    except Exception as e:
        return _error(e)


@mcp.tool()
def check_drift_now() -> dict:
    """
    Run one drift check immediately.

    Returns:
        dict with the drift snapshot (drift %, severity, recommendations)
    """
    try:
        snapshot = get_engine().check_now()
        return {"success": True, "severity_emoji": snapshot.severity.emoji, **snapshot.to_dict()}
    except Exception as e:
        return _error(e)


@mcp.tool()
def get_drift_status() -> dict:
    """
    Current monitor state, latest snapshot and drift trend.

    Returns:
        dict with state, snapshot, trend and history length
    """
    try:
        return {"success": True, **get_engine().get_drift_status().to_dict()}
    except Exception as e:
        return _error(e)


# =============================================================================
# AUDIT & LEARNING
# =============================================================================

@mcp.tool()
def generate_audit(options_json: str = "", output_format: str = "markdown",
                   save: bool = False) -> dict:
    """
    Generate a full context audit report.

    Args:
        options_json: Optional JSON object of section toggles, e.g. {"includeDocuments": false}
        output_format: markdown, html or json
        save: If True, persist json/markdown/html renderings to storage

    Returns:
        dict with overall score, health status and the rendered report
    """
    try:
        options = json.loads(options_json) if options_json else None
        report = get_engine().generate_full_audit(options, save=save)
        data = report.to_dict()
        result = {
            "success": True,
            "report_id": report.report_id,
            "overall_score": report.overall_score,
            "health_status": report.health_status.value,
            "critical_findings": data["critical_findings"],
        }
        if output_format == "html":
            result["report"] = report.to_html()
        elif output_format == "json":
            result["report"] = data
        else:
            result["report"] = report.to_markdown()
        return result
    except Exception as e:
        return _error(e)


@mcp.tool()
def get_learning_insights() -> dict:
    """
    Common violations, risk factors and prevention strategies from past verifications.

    Returns:
        dict with insights (advisory only)
    """
    try:
        return {"success": True, **get_engine().get_learning_insights().to_dict()}
    except Exception as e:
        return _error(e)


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    print("Starting Context Verification MCP Server...", file=sys.stderr)
    mcp.run()
