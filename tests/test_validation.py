"""
Tests for the pydantic models
"""

import pytest
from datetime import datetime, timezone

from pydantic import ValidationError

from models_validation import (
    ActivityLogEntry,
    AdditionalData,
    AIAnalysisResult,
    BatchAnalysisResult,
    HealthStatus,
    RiskNote,
    Role,
    User,
    UserAnalysis,
)


class TestUser:
    """Test user record validation"""

    def test_defaults(self):
        user = User(id="u1")
        assert user.role == Role.INTERN
        assert user.is_blocked is False
        assert user.risk_notes == []
        assert user.created_at.tzinfo is not None

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            User(id="")

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            User(id="u1", role="Contractor")

    def test_naive_timestamp_made_utc(self):
        user = User(id="u1", blocked_at=datetime(2024, 5, 15, 10, 0))
        assert user.blocked_at == datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc)

    def test_assignment_is_validated(self):
        user = User(id="u1")
        with pytest.raises(ValidationError):
            user.role = "Contractor"


class TestActivityLogEntry:
    """Test activity entry validation"""

    def test_risk_score_property(self):
        entry = ActivityLogEntry(user_id="u1", action="Viewed", additional_data=AdditionalData(risk_score=0.4))
        assert entry.risk_score == 0.4

    def test_entries_are_immutable(self):
        entry = ActivityLogEntry(user_id="u1", action="Viewed")
        with pytest.raises(ValidationError):
            entry.action = "Deleted"

    def test_ids_are_unique(self):
        assert ActivityLogEntry(user_id="u1", action="a").id != ActivityLogEntry(user_id="u1", action="a").id

    def test_empty_action_rejected(self):
        with pytest.raises(ValidationError):
            ActivityLogEntry(user_id="u1", action="")

    def test_negative_risk_rejected(self):
        with pytest.raises(ValidationError):
            AdditionalData(risk_score=-0.1)


class TestResultModels:
    """Test result model helpers"""

    def test_risk_note_action_restricted(self):
        with pytest.raises(ValidationError):
            RiskNote(reason="x", action="ban")

    def test_analysis_score_bounds(self):
        with pytest.raises(ValidationError):
            AIAnalysisResult(risk_score=1.2)

    def test_health_status_issues(self):
        status = HealthStatus()
        status.add_issue("warning only")
        assert status.is_healthy is True

        status.add_issue("broken", critical=True)
        assert status.is_healthy is False
        assert status.critical_issues == 1
        assert status.issues == ["warning only", "broken"]

    def test_batch_counts(self):
        def item(user_id, action):
            return UserAnalysis(
                user_id=user_id, role=Role.ANALYST,
                result=AIAnalysisResult(risk_score=0.9), action=action,
            )

        batch = BatchAnalysisResult(
            window_days=7,
            flagged=[item("a", "block"), item("b", "monitor"), item("c", "monitor")],
        )
        assert batch.blocked_count == 1
        assert batch.monitored_count == 2
