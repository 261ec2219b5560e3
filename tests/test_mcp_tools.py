"""
Tests for MCP tool endpoints
"""

import pytest

import server
from server import (
    analyze_user_impl as analyze_user,
    evaluate_risk_impl as evaluate_risk,
    get_behavior_summary_impl as get_behavior_summary,
    get_system_status_impl as get_system_status,
    guard_download_impl as guard_download,
    record_activity_impl as record_activity,
    register_user_impl as register_user,
    trigger_health_check_impl as trigger_health_check,
    trigger_weekly_analysis_impl as trigger_weekly_analysis,
    unblock_user_impl as unblock_user,
)
from insider_risk.pipeline import create_pipeline
from insider_risk.stores import PersistenceError


@pytest.fixture(autouse=True)
def isolated_pipeline(monkeypatch, activity_store, user_store, alert_sink, config, clock):
    """Point the server at a pipeline over the test stores"""
    pipeline = create_pipeline(
        activity_store=activity_store,
        user_store=user_store,
        alert_sink=alert_sink,
        config=config,
        clock=clock,
    )
    monkeypatch.setattr(server, "pipeline", pipeline)
    return pipeline


class TestRegistrationTools:
    """Test register_user and record_activity"""

    def test_register_user(self, user_store):
        result = register_user("newhire", "New Hire", "new@company.com", "Intern")

        assert result["status"] == "registered"
        assert result["user"]["role"] == "Intern"
        assert user_store.get("newhire") is not None

    def test_register_unknown_role(self):
        result = register_user("x1", "X", "x@company.com", "Contractor")

        assert result["status"] == "validation_failed"

    def test_record_activity_defaults_to_now(self, activity_store, clock):
        result = record_activity("analyst1", "Viewed Report", ip_address="10.0.0.1")

        assert result["status"] == "recorded"
        entry = activity_store.find(user_id="analyst1")[0]
        assert entry.timestamp == clock.now
        assert entry.role == "Analyst"

    def test_record_activity_with_timestamp(self, activity_store):
        result = record_activity(
            "analyst1", "Failed Login", risk_score=0.9, timestamp="2024-05-14T08:30:00+00:00"
        )

        assert result["entry"]["additional_data"]["risk_score"] == 0.9
        assert activity_store.find()[0].timestamp.hour == 8

    def test_record_activity_unknown_user(self):
        assert record_activity("ghost", "Viewed Report")["status"] == "not_found"

    def test_record_activity_bad_timestamp(self):
        assert record_activity("analyst1", "Viewed Report", timestamp="yesterday")["status"] == "validation_failed"

    def test_record_activity_negative_risk(self):
        assert record_activity("analyst1", "Viewed Report", risk_score=-1)["status"] == "validation_failed"


class TestEvaluateRiskTool:
    """Test evaluate_risk MCP tool"""

    def test_evaluate_risk(self, make_entry, clock):
        make_entry(action="Failed Login", minutes_ago=2)
        result = evaluate_risk("analyst1", "10.0.0.1")

        assert result["score"] == 5
        assert result["suspicious"] is False
        assert result["normalized_score"] == pytest.approx(0.25)
        assert result["analysis_timestamp"] == clock.now.isoformat()

    def test_evaluate_unknown_user_is_zero(self):
        result = evaluate_risk("ghost")

        assert result["score"] == 0
        assert result["reasons"] == []


class TestGuardDownloadTool:
    """Test guard_download MCP tool"""

    def test_allowed(self):
        result = guard_download("analyst1", "10.0.0.1")

        assert result["allowed"] is True
        assert result["status"] == "allowed"

    def test_unknown_user(self):
        assert guard_download("ghost", "10.0.0.1")["status"] == "not_found"

    def test_store_failure_is_reported_generically(self, monkeypatch, isolated_pipeline):
        def broken(entry):
            raise PersistenceError("disk full at /var/lib/store")

        monkeypatch.setattr(isolated_pipeline.activity_store, "insert", broken)
        result = guard_download("analyst1", "10.0.0.1")

        assert result == {"status": "failed", "allowed": False, "error": "Request could not be completed"}


class TestAnalysisTools:
    """Test analyze_user and trigger_weekly_analysis"""

    def test_analyze_user_fallback(self, make_entry):
        make_entry(action="Downloaded Files", minutes_ago=5)
        result = analyze_user("analyst1")

        assert result["fallback_used"] is True
        assert 0.0 <= result["risk_score"] <= 1.0
        assert result["risk_level"] in ("Low", "Medium", "High")

    def test_analyze_user_client_crash_falls_back(self, monkeypatch, isolated_pipeline, make_client, make_entry):
        make_entry(action="Downloaded Files", minutes_ago=5)
        monkeypatch.setattr(isolated_pipeline.analyzer, "client", make_client(RuntimeError("socket closed")))
        isolated_pipeline.analyzer.availability.re_enable()
        result = analyze_user("analyst1")

        assert result["ai_error"] is True
        assert result["fallback_used"] is True
        assert 0.0 <= result["risk_score"] <= 1.0

    def test_analyze_user_invalid_window(self):
        assert analyze_user("analyst1", window_days=0)["status"] == "validation_failed"

    def test_trigger_weekly_analysis(self):
        result = trigger_weekly_analysis()

        assert result["status"] == "completed"
        assert result["users_analyzed"] == 4
        assert result["blocked"] == 0
        assert result["failures"] == []
        assert "period" in result["summary"]


class TestAdministrationTools:
    """Test unblock, summary, health and status tools"""

    def test_unblock(self, isolated_pipeline, user_store, clock):
        from models_validation import RiskNote

        user_store.block("intern1", RiskNote(reason="x", action="block"), clock.now)
        result = unblock_user("intern1", actor_role="Manager")

        assert result["status"] == "unblocked"
        assert result["user"]["is_blocked"] is False

    def test_unblock_forbidden(self):
        assert unblock_user("mgr1", actor_role="Analyst")["status"] == "forbidden"

    def test_unblock_unknown(self):
        assert unblock_user("ghost")["status"] == "not_found"

    def test_unblock_bad_role(self):
        assert unblock_user("intern1", actor_role="Root")["status"] == "validation_failed"

    def test_behavior_summary(self, make_entry):
        make_entry(risk_score=0.9, minutes_ago=1)
        make_entry(risk_score=0.95, minutes_ago=2)

        summary = get_behavior_summary()
        assert summary["totalSuspicious"] == 2
        assert summary["userViolations"][0]["userId"] == "analyst1"

    def test_health_check(self):
        result = trigger_health_check()

        assert result["is_healthy"] is False
        assert "Email configuration incomplete" in result["issues"]
        assert "process" in result

    def test_system_status(self, isolated_pipeline):
        isolated_pipeline.scheduler.initialize(start_timers=False)
        status = get_system_status(recheck_ai=True)

        assert status["analyzer"]["aiAvailable"] is False
        assert status["analyzer"]["disabledReason"] == "not_configured"
        assert status["scheduler"]["isInitialized"] is True
        assert "weekly_analysis" in status["scheduler"]["jobs"]
