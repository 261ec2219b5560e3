"""
Tests for the AI-assisted threat analyzer and its rule-based fallback
"""

import pytest

from models_validation import RiskLevel
from insider_risk.ai_analyzer import (
    AIAvailability,
    AIThreatAnalyzer,
    EXTERNAL_METHOD,
    FALLBACK_METHOD,
)
from insider_risk.assessment_client import (
    AssessmentServiceError,
    InvalidCredentialError,
    QuotaExceededError,
    RateLimitedError,
)


@pytest.fixture
def analyzer_for(activity_store, config, clock):
    """Build an analyzer around a given client"""

    def _make(client=None, availability=None):
        return AIThreatAnalyzer(
            activity_store, client=client, availability=availability, config=config, clock=clock
        )

    return _make


@pytest.fixture
def burst(make_entry):
    """Twelve downloads 30 seconds apart during work hours"""
    return [
        make_entry(action="Downloaded Files", minutes_ago=i * 0.5)
        for i in range(12)
    ]


class TestFeatureExtraction:
    """Derived features over an activity window"""

    def test_distributions_and_counts(self, analyzer_for, make_entry):
        entries = [
            make_entry(action="Viewed Report", minutes_ago=0, ip_address="10.0.0.1"),
            make_entry(action="Downloaded Files", minutes_ago=30, ip_address="10.0.0.2"),
            make_entry(action="Downloaded Files", minutes_ago=8 * 60, ip_address=None),
        ]
        features = analyzer_for().prepare_analysis_data(entries, window_days=7)

        assert features.user_id == "analyst1"
        assert features.total_activities == 3
        assert features.hourly_distribution[10] == 1
        assert features.hourly_distribution[9] == 1
        assert features.hourly_distribution[2] == 1
        assert sum(features.hourly_distribution) == 3
        assert features.daily_distribution[2] == 3
        assert features.action_frequency == {"viewed report": 1, "downloaded files": 2}
        assert features.download_activity == 2
        assert features.work_hours_activity == 2
        assert features.after_hours_activity == 1
        assert features.ip_addresses == ["10.0.0.1", "10.0.0.2"]
        assert features.unique_actions == ["Downloaded Files", "Viewed Report"]

    def test_entry_work_hours_flag_wins(self, analyzer_for, make_entry):
        entries = [make_entry(minutes_ago=0, work_hours=False)]
        features = analyzer_for().prepare_analysis_data(entries)

        assert features.work_hours_activity == 0
        assert features.after_hours_activity == 1

    def test_access_patterns(self, make_entry):
        entries = [
            make_entry(action="Export", minutes_ago=10 * 60),      # 00:00, unusual
            make_entry(action="Export", minutes_ago=10 * 60 - 0.5),
            make_entry(action="Viewed Report", minutes_ago=5),
            make_entry(action="Viewed Report", minutes_ago=4.5),
        ]
        patterns = AIThreatAnalyzer.analyze_access_patterns(entries)

        assert patterns.rapid_succession == 2
        assert patterns.unusual_hours == 2
        assert patterns.repetitive_actions == 2
        assert patterns.mixed_actions == 2

    def test_prompt_mentions_window(self, analyzer_for, burst):
        analyzer = analyzer_for()
        prompt = analyzer.build_analysis_prompt(analyzer.prepare_analysis_data(burst, window_days=30))

        assert "Time Period: Last 30 days" in prompt
        assert "Download Activity: 12" in prompt
        assert "RISK_SCORE:" in prompt


class TestParsing:
    """Tolerant parsing of the textual reply"""

    def test_well_formed(self, well_formed_response):
        parsed = AIThreatAnalyzer.parse_ai_analysis(well_formed_response)

        assert parsed["risk_score"] == pytest.approx(0.85)
        assert parsed["analysis"].startswith("User downloaded an unusual volume")
        assert parsed["recommendations"] == [
            "Review recent downloads",
            "Interview the user's manager",
            "Restrict bulk export permissions",
        ]

    def test_garbage_uses_defaults(self):
        parsed = AIThreatAnalyzer.parse_ai_analysis("I cannot help with that.")

        assert parsed == {
            "risk_score": 0.5,
            "analysis": "Analysis parsing failed",
            "recommendations": ["Manual review required"],
        }

    def test_score_is_clamped(self):
        assert AIThreatAnalyzer.parse_ai_analysis("RISK_SCORE: 7.5\n")["risk_score"] == 1.0

    def test_unparseable_score_uses_default(self):
        assert AIThreatAnalyzer.parse_ai_analysis("RISK_SCORE: high\n")["risk_score"] == 0.5

    def test_trailing_period_score(self):
        parsed = AIThreatAnalyzer.parse_ai_analysis(
            "RISK_SCORE: 0.75.\nANALYSIS: Bulk exports.\nRECOMMENDATIONS:\n- Review\n"
        )

        assert parsed["risk_score"] == pytest.approx(0.75)
        assert parsed["analysis"] == "Bulk exports."

    @pytest.mark.parametrize("reply,expected", [
        ("RISK_SCORE: 0.4.2\n", 0.4),
        ("RISK_SCORE: .6\n", 0.6),
        ("RISK_SCORE: 1\n", 1.0),
    ])
    def test_longest_numeric_prefix(self, reply, expected):
        assert AIThreatAnalyzer.parse_ai_analysis(reply)["risk_score"] == pytest.approx(expected)

    def test_case_insensitive_labels(self):
        parsed = AIThreatAnalyzer.parse_ai_analysis(
            "risk_score: 0.2\nanalysis: Quiet week.\nrecommendations:\n- None needed\n"
        )

        assert parsed["risk_score"] == pytest.approx(0.2)
        assert parsed["analysis"] == "Quiet week."
        assert parsed["recommendations"] == ["None needed"]


class TestFallback:
    """Rule-based scorer"""

    def test_burst_weights(self, analyzer_for, burst):
        analyzer = analyzer_for()
        result = analyzer.fallback_analysis(analyzer.prepare_analysis_data(burst))

        # rapid succession (0.2) + downloads (0.2) + repetitive (0.1)
        assert result.risk_score == pytest.approx(0.5)
        assert result.risk_level == RiskLevel.LOW
        assert result.fallback_used is True
        assert result.analysis_method == FALLBACK_METHOD
        assert result.analysis == "Fallback analysis (Low Risk): Normal behavior patterns"
        assert "High download activity detected" in result.recommendations
        assert "Download activity: 12 files" in result.warnings

    def test_mean_risk_score_contributes(self, analyzer_for, make_entry):
        entries = [make_entry(minutes_ago=i * 30, risk_score=1.0) for i in range(2)]
        analyzer = analyzer_for()
        result = analyzer.fallback_analysis(analyzer.prepare_analysis_data(entries))

        assert result.risk_score == pytest.approx(0.3)
        assert result.recommendations == ["No immediate concerns detected"]

    def test_suspicious_verdict_and_clamp(self, analyzer_for, make_entry):
        entries = [
            make_entry(
                action="Downloaded Files",
                minutes_ago=10 * 60 + i * 0.25,
                ip_address=f"10.0.0.{i % 5}",
                risk_score=1.0,
            )
            for i in range(12)
        ]
        analyzer = analyzer_for()
        result = analyzer.fallback_analysis(analyzer.prepare_analysis_data(entries))

        assert result.risk_score == 1.0
        assert result.risk_level == RiskLevel.HIGH
        assert result.analysis == "Fallback analysis (High Risk): Suspicious patterns detected"

    def test_deterministic(self, analyzer_for, burst):
        analyzer = analyzer_for()
        features = analyzer.prepare_analysis_data(burst)

        assert analyzer.fallback_analysis(features) == analyzer.fallback_analysis(features)


class TestAnalyzeUserBehavior:
    """End to end with a scripted client"""

    def test_no_activity(self, analyzer_for, make_client):
        client = make_client()
        result = analyzer_for(client).analyze_user_behavior("ghost")

        assert result.risk_score == 0
        assert result.risk_level == RiskLevel.LOW
        assert result.analysis == "No activity detected"
        assert result.recommendations == []
        assert client.calls == 0

    def test_external_success(self, analyzer_for, make_client, burst, well_formed_response):
        client = make_client(well_formed_response)
        result = analyzer_for(client).analyze_user_behavior("analyst1")

        assert client.calls == 1
        assert result.risk_score == pytest.approx(0.85)
        assert result.risk_level == RiskLevel.HIGH
        assert result.analysis_method == EXTERNAL_METHOD
        assert result.fallback_used is False
        assert result.ai_response == well_formed_response

    def test_window_excludes_old_entries(self, analyzer_for, make_client, make_entry):
        make_entry(minutes_ago=8 * 24 * 60)
        client = make_client()
        result = analyzer_for(client).analyze_user_behavior("analyst1", window_days=7)

        assert result.analysis == "No activity detected"
        assert client.calls == 0

    def test_unconfigured_client_uses_fallback(self, analyzer_for, make_client, burst):
        client = make_client(configured=False)
        analyzer = analyzer_for(client)
        result = analyzer.analyze_user_behavior("analyst1")

        assert client.calls == 0
        assert result.fallback_used is True
        assert analyzer.availability.reason == "not_configured"

    def test_no_client_uses_fallback(self, analyzer_for, burst):
        analyzer = analyzer_for()

        assert analyzer.client is None
        assert analyzer.analyze_user_behavior("analyst1").fallback_used is True


class TestDegradation:
    """Quota, credential, rate-limit and generic failures"""

    def test_quota_disables_external_path(self, analyzer_for, make_client, burst, well_formed_response):
        client = make_client(QuotaExceededError("credit balance too low"), well_formed_response)
        analyzer = analyzer_for(client)

        first = analyzer.analyze_user_behavior("analyst1")
        second = analyzer.analyze_user_behavior("analyst1")

        assert first.quota_exceeded is True
        assert first.fallback_used is True
        assert "quota exceeded" in first.ai_response
        assert second.fallback_used is True
        assert second.quota_exceeded is False
        assert client.calls == 1
        assert analyzer.availability.is_available() is False
        assert analyzer.availability.reason == "quota_exceeded"

    def test_invalid_credential_disables_external_path(self, analyzer_for, make_client, burst):
        client = make_client(InvalidCredentialError("invalid x-api-key"))
        analyzer = analyzer_for(client)

        result = analyzer.analyze_user_behavior("analyst1")
        analyzer.analyze_user_behavior("analyst1")

        assert result.api_key_error is True
        assert client.calls == 1
        assert analyzer.availability.reason == "invalid_credential"

    def test_rate_limit_stays_enabled(self, analyzer_for, make_client, burst, well_formed_response):
        client = make_client(RateLimitedError("overloaded"), well_formed_response)
        analyzer = analyzer_for(client)

        first = analyzer.analyze_user_behavior("analyst1")
        second = analyzer.analyze_user_behavior("analyst1")

        assert first.rate_limited is True
        assert first.fallback_used is True
        assert second.analysis_method == EXTERNAL_METHOD
        assert client.calls == 2
        assert analyzer.availability.is_available() is True

    def test_generic_error_stays_enabled(self, analyzer_for, make_client, burst):
        client = make_client(AssessmentServiceError("connection reset"))
        analyzer = analyzer_for(client)
        result = analyzer.analyze_user_behavior("analyst1")

        assert result.ai_error is True
        assert result.ai_response == "AI analysis failed - using fallback rules"
        assert analyzer.availability.is_available() is True

    def test_unexpected_client_failure_degrades(self, analyzer_for, make_client, burst):
        client = make_client(RuntimeError("socket closed"))
        analyzer = analyzer_for(client)
        result = analyzer.analyze_user_behavior("analyst1")

        assert result.ai_error is True
        assert result.fallback_used is True
        assert result.ai_response == "AI analysis failed - using fallback rules"
        assert analyzer.availability.is_available() is True

    def test_degraded_score_matches_fallback(self, analyzer_for, make_client, burst):
        client = make_client(RateLimitedError("overloaded"))
        analyzer = analyzer_for(client)
        degraded = analyzer.analyze_user_behavior("analyst1")
        expected = analyzer.fallback_analysis(analyzer.prepare_analysis_data(burst))

        assert degraded.risk_score == expected.risk_score
        assert degraded.recommendations == expected.recommendations

    def test_shared_availability(self, analyzer_for, make_client, burst):
        availability = AIAvailability()
        first = analyzer_for(make_client(QuotaExceededError("quota")), availability)
        other_client = make_client()
        second = analyzer_for(other_client, availability)

        first.analyze_user_behavior("analyst1")
        second.analyze_user_behavior("analyst1")

        assert other_client.calls == 0


class TestAvailabilityRecheck:
    """Re-enabling the external path"""

    def test_recheck_re_enables(self, analyzer_for, make_client, burst, well_formed_response):
        client = make_client(QuotaExceededError("quota"), well_formed_response)
        analyzer = analyzer_for(client)
        analyzer.analyze_user_behavior("analyst1")

        assert analyzer.check_ai_availability() is True
        assert analyzer.availability.reason is None
        assert analyzer.analyze_user_behavior("analyst1").analysis_method == EXTERNAL_METHOD

    def test_recheck_without_credential(self, analyzer_for, make_client):
        analyzer = analyzer_for(make_client(configured=False))

        assert analyzer.check_ai_availability() is False
        assert analyzer.availability.is_available() is False


class TestThresholds:
    """Runtime threshold updates"""

    def test_risk_level_boundaries(self, analyzer_for):
        analyzer = analyzer_for()

        assert analyzer.risk_level(0.8) == RiskLevel.HIGH
        assert analyzer.risk_level(0.79) == RiskLevel.MEDIUM
        assert analyzer.risk_level(0.6) == RiskLevel.MEDIUM
        assert analyzer.risk_level(0.59) == RiskLevel.LOW

    def test_update_thresholds(self, analyzer_for, config):
        analyzer = analyzer_for()
        thresholds = analyzer.update_thresholds(high=0.9, medium=0.5)

        assert thresholds == {"highRisk": 0.9, "mediumRisk": 0.5, "lowRisk": 0.4}
        assert config.AI_HIGH_RISK_THRESHOLD == 0.9
        assert analyzer.risk_level(0.85) == RiskLevel.MEDIUM

    @pytest.mark.parametrize("kwargs", [
        {"high": 1.5},
        {"low": -0.1},
        {"medium": 0.9, "high": 0.8},
        {"low": 0.7, "medium": 0.6},
    ])
    def test_invalid_thresholds_rejected(self, analyzer_for, config, kwargs):
        with pytest.raises(ValueError):
            analyzer_for().update_thresholds(**kwargs)
        assert config.risk_thresholds() == {"highRisk": 0.8, "mediumRisk": 0.6, "lowRisk": 0.4}


class TestSystemStatus:
    def test_status(self, analyzer_for, make_client, clock):
        status = analyzer_for(make_client()).get_system_status()

        assert status["aiAvailable"] is True
        assert status["aiConfigured"] is True
        assert status["disabledReason"] is None
        assert status["thresholds"]["highRisk"] == 0.8
        assert "dataExfiltration" in status["patterns"]
        assert status["lastCheck"] == clock.now.isoformat()
