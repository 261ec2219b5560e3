#!/usr/bin/env python3
"""
Insider Risk Monitor MCP Server
Exposes request-time risk evaluation, download guarding, AI-assisted user
analysis and the scheduler's on-demand triggers as MCP tools
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional

from pydantic import ValidationError

# FastMCP for high-performance MCP server
from fastmcp import FastMCP

from config import get_config
from models_validation import ActivityLogEntry, AdditionalData, Role, User
from monitoring import monitor, setup_monitoring
from insider_risk import (
    PersistenceError,
    StoreError,
    UnblockNotPermittedError,
    UserNotFoundError,
    create_pipeline,
)

logger = logging.getLogger(__name__)

# Initialize MCP server
mcp = FastMCP("Insider Risk Monitor")

# Shared pipeline over in-memory stores
pipeline = create_pipeline()


def _failure(status: str, error: str) -> Dict[str, Any]:
    return {"status": status, "error": error}


# =============================================================================
# Implementations (plain functions, directly testable)
# =============================================================================

def register_user_impl(user_id: str, name: str, email: str, role: str = "Intern") -> Dict[str, Any]:
    """Register a user with the user store."""
    try:
        user = pipeline.register_user(User(id=user_id, name=name, email=email, role=Role(role)))
    except (ValidationError, ValueError) as e:
        return _failure("validation_failed", str(e))
    return {"status": "registered", "user": user.model_dump(mode="json")}


def record_activity_impl(
    user_id: str,
    action: str,
    ip_address: Optional[str] = None,
    risk_score: float = 0.0,
    details: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Append an activity entry for a registered user."""
    user = pipeline.user_store.get(user_id)
    if user is None:
        return _failure("not_found", f"User not found: {user_id}")

    try:
        entry = ActivityLogEntry(
            user_id=user_id,
            role=user.role.value,
            action=action,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else pipeline.risk_engine.clock(),
            ip_address=ip_address,
            additional_data=AdditionalData(risk_score=risk_score, details=details),
        )
    except (ValidationError, ValueError) as e:
        return _failure("validation_failed", str(e))

    pipeline.record_activity(entry)
    return {"status": "recorded", "entry": entry.model_dump(mode="json")}


def evaluate_risk_impl(user_id: str, ip_address: Optional[str] = None) -> Dict[str, Any]:
    """Deterministic risk assessment of a user's current request."""
    try:
        assessment = pipeline.risk_engine.evaluate(user_id, ip_address)
    except StoreError as e:
        logger.error(f"Risk evaluation failed: {e}")
        return _failure("evaluation_failed", str(e))

    monitor.record_risk_evaluation(assessment.suspicious)
    result = assessment.model_dump(mode="json")
    result["normalized_score"] = pipeline.risk_engine.normalize(assessment.score)
    result["analysis_timestamp"] = pipeline.risk_engine.clock().isoformat()
    return result


def guard_download_impl(user_id: str, ip_address: Optional[str] = None, details: str = "") -> Dict[str, Any]:
    """Permit or deny a download."""
    try:
        decision = pipeline.access_guard.guard_download(user_id, ip_address, details)
    except UserNotFoundError as e:
        return _failure("not_found", str(e))
    except (PersistenceError, StoreError) as e:
        logger.error(f"Download guard failed for {user_id}: {e}")
        return {"status": "failed", "allowed": False, "error": "Request could not be completed"}
    return decision.model_dump(mode="json")


def analyze_user_impl(user_id: str, window_days: int = 7) -> Dict[str, Any]:
    """AI-assisted analysis of a user's activity window."""
    if window_days < 1:
        return _failure("validation_failed", "window_days must be at least 1")
    try:
        result = pipeline.analyzer.analyze_user_behavior(user_id, window_days)
    except StoreError as e:
        logger.error(f"User analysis failed: {e}")
        return _failure("analysis_failed", str(e))
    return result.model_dump(mode="json")


def trigger_weekly_analysis_impl() -> Dict[str, Any]:
    """Run the weekly analysis now."""
    try:
        result = pipeline.scheduler.trigger_weekly_analysis()
    except Exception as e:
        logger.error(f"Weekly analysis failed: {e}")
        return _failure("analysis_failed", str(e))
    return {
        "status": "completed",
        "users_analyzed": len(result.analysis_results),
        "blocked": result.blocked_count,
        "monitored": result.monitored_count,
        "failures": [f.model_dump() for f in result.failures],
        "summary": result.summary,
    }


def trigger_health_check_impl() -> Dict[str, Any]:
    """Run the infrastructure health check now."""
    status = pipeline.scheduler.trigger_health_check()
    result = status.model_dump(mode="json")
    result["process"] = monitor.health_check()
    return result


def unblock_user_impl(user_id: str, actor_role: str = "Admin") -> Dict[str, Any]:
    """Clear a user's block state."""
    try:
        user = pipeline.behavior_monitor.unblock_user(user_id, actor_role=Role(actor_role))
    except UserNotFoundError as e:
        return _failure("not_found", str(e))
    except UnblockNotPermittedError as e:
        return _failure("forbidden", str(e))
    except ValueError as e:
        return _failure("validation_failed", str(e))
    return {"status": "unblocked", "user": user.model_dump(mode="json")}


def get_behavior_summary_impl() -> Dict[str, Any]:
    """Violations over the last 7 days."""
    return pipeline.behavior_monitor.get_behavior_summary()


def get_system_status_impl(recheck_ai: bool = False) -> Dict[str, Any]:
    """Analyzer availability, thresholds and scheduler state."""
    if recheck_ai:
        pipeline.analyzer.check_ai_availability()
    config = get_config()
    return {
        "app_name": config.APP_NAME,
        "version": config.APP_VERSION,
        "environment": config.ENVIRONMENT,
        "analyzer": pipeline.analyzer.get_system_status(),
        "scheduler": pipeline.scheduler.get_status(),
    }


# =============================================================================
# MCP tools
# =============================================================================

@mcp.tool()
def register_user(user_id: str, name: str, email: str, role: str = "Intern") -> Dict[str, Any]:
    """
    Register a user.

    Args:
        user_id: Unique user identifier
        name: Display name
        email: Contact email
        role: One of Admin, Manager, Analyst, Intern
    """
    return register_user_impl(user_id, name, email, role)


@mcp.tool()
def record_activity(
    user_id: str,
    action: str,
    ip_address: Optional[str] = None,
    risk_score: float = 0.0,
    details: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Record a user action in the activity log.

    Args:
        user_id: Acting user
        action: Action name, e.g. "Downloaded Files"
        ip_address: Source IP
        risk_score: Risk score to persist with the entry
        details: Free-text context
        timestamp: ISO-8601 timestamp, now if omitted
    """
    return record_activity_impl(user_id, action, ip_address, risk_score, details, timestamp)


@mcp.tool()
def evaluate_risk(user_id: str, ip_address: Optional[str] = None) -> Dict[str, Any]:
    """
    Deterministic additive risk score for a user's current request.

    Returns:
        score, suspicious flag, triggered reasons and the normalized score
    """
    return evaluate_risk_impl(user_id, ip_address)


@mcp.tool()
def guard_download(user_id: str, ip_address: Optional[str] = None, details: str = "") -> Dict[str, Any]:
    """
    Permit or deny a file download, applying quotas and block consequences.
    """
    return guard_download_impl(user_id, ip_address, details)


@mcp.tool()
def analyze_user(user_id: str, window_days: int = 7) -> Dict[str, Any]:
    """
    AI-assisted behavior analysis over a trailing window, with rule-based fallback.
    """
    return analyze_user_impl(user_id, window_days)


@mcp.tool()
def trigger_weekly_analysis() -> Dict[str, Any]:
    """Run the weekly population analysis immediately."""
    return trigger_weekly_analysis_impl()


@mcp.tool()
def trigger_health_check() -> Dict[str, Any]:
    """Run the daily health check immediately."""
    return trigger_health_check_impl()


@mcp.tool()
def unblock_user(user_id: str, actor_role: str = "Admin") -> Dict[str, Any]:
    """
    Unblock a user. Admins may unblock anyone; Managers only Analysts and Interns.
    """
    return unblock_user_impl(user_id, actor_role)


@mcp.tool()
def get_behavior_summary() -> Dict[str, Any]:
    """Suspicious activity and repeat violators over the last 7 days."""
    return get_behavior_summary_impl()


@mcp.tool()
def get_system_status(recheck_ai: bool = False) -> Dict[str, Any]:
    """
    Analyzer and scheduler status.

    Args:
        recheck_ai: Try to re-enable external analysis if it was disabled
    """
    return get_system_status_impl(recheck_ai)


def main():
    """Run the MCP server with the periodic jobs armed"""
    config = get_config()
    setup_monitoring(
        app_name=config.APP_NAME,
        version=config.APP_VERSION,
        log_level=config.LOG_LEVEL,
        log_file=config.LOG_FILE,
    )
    pipeline.scheduler.initialize()
    try:
        mcp.run()
    finally:
        pipeline.scheduler.stop_all()


if __name__ == "__main__":
    main()
