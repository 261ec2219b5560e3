"""
AI-Assisted Threat Analyzer

Summarizes a user's activity window into derived features, asks the external
assessment service for a risk score, and falls back to an explainable
rule-based estimate whenever the service is unavailable or degraded.

Degradation policy:
- no credential: permanent fallback
- quota exceeded: disable the external path until re-checked
- invalid credential: disable the external path until re-checked
- rate limited: fallback for this call only
- any other error, timeouts included: fallback for this call only
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from config import AppConfig, get_config
from models_validation import ActivityLogEntry, AIAnalysisResult, RiskLevel, utcnow
from monitoring import monitor
from insider_risk.assessment_client import (
    AssessmentClient,
    AssessmentServiceError,
    InvalidCredentialError,
    QuotaExceededError,
    RateLimitedError,
)
from insider_risk.behavior_monitor import within_work_hours
from insider_risk.risk_engine import is_download_action
from insider_risk.stores import ActivityStore

logger = logging.getLogger(__name__)

# Action vocabulary per behavior pattern, reported by get_system_status
BEHAVIOR_PATTERNS = {
    "dataExfiltration": ["download", "export", "copy", "transfer"],
    "unauthorizedAccess": ["access", "view", "open", "read"],
    "suspiciousTiming": ["after_hours", "weekend", "holiday"],
    "privilegeEscalation": ["admin", "root", "sudo", "elevate"],
    "dataModification": ["modify", "delete", "update", "change"],
}

RAPID_SUCCESSION_SECONDS = 60
UNUSUAL_HOUR_START = 6
UNUSUAL_HOUR_END = 22

DEFAULT_PARSED_SCORE = 0.5
PARSE_FAILED_ANALYSIS = "Analysis parsing failed"
MANUAL_REVIEW = "Manual review required"

RISK_SCORE_RE = re.compile(r"RISK_SCORE:\s*([0-9]+(?:\.[0-9]+)?|\.[0-9]+)", re.IGNORECASE)
ANALYSIS_RE = re.compile(r"ANALYSIS:\s*(.+?)(?=\n|RECOMMENDATIONS:)", re.IGNORECASE | re.DOTALL)
RECOMMENDATIONS_RE = re.compile(r"RECOMMENDATIONS:\s*((?:- .+\n?)+)", re.IGNORECASE | re.DOTALL)

EXTERNAL_METHOD = "External assessment"
FALLBACK_METHOD = "Rule-based fallback"


class AIAvailability:
    """Process-wide switch for the external assessment path."""

    def __init__(self, available: bool = True):
        self._lock = threading.Lock()
        self._available = available
        self._reason: Optional[str] = None if available else "not_configured"

    def disable(self, reason: str) -> None:
        with self._lock:
            self._available = False
            self._reason = reason
        monitor.set_ai_available(False)

    def re_enable(self) -> None:
        with self._lock:
            self._available = True
            self._reason = None
        monitor.set_ai_available(True)

    def is_available(self) -> bool:
        with self._lock:
            return self._available

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason


@dataclass
class AccessPatterns:
    rapid_succession: int = 0
    unusual_hours: int = 0
    repetitive_actions: int = 0
    mixed_actions: int = 0


@dataclass
class ActivityFeatures:
    """Derived features over one user's activity window."""
    user_id: str
    role: Optional[str]
    window_days: int
    total_activities: int
    unique_actions: List[str]
    hourly_distribution: List[int]
    daily_distribution: List[int]
    action_frequency: Dict[str, int]
    risk_scores: List[float]
    work_hours_activity: int
    after_hours_activity: int
    download_activity: int
    access_patterns: AccessPatterns = field(default_factory=AccessPatterns)
    ip_addresses: List[str] = field(default_factory=list)


class AIThreatAnalyzer:
    """
    Scores a user's activity window, externally when possible.

    Args:
        activity_store: Source of activity entries
        client: Assessment client; built from config when a key is configured
        availability: Shared availability switch; one is created if omitted
        config: Live configuration
        clock: Source of the current time
    """

    def __init__(
        self,
        activity_store: ActivityStore,
        client: Optional[AssessmentClient] = None,
        availability: Optional[AIAvailability] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.activity_store = activity_store
        self.config = config or get_config()
        self.clock = clock

        if client is None and self.config.ai_credential_configured:
            client = AssessmentClient(config=self.config)
        self.client = client

        if availability is None:
            availability = AIAvailability(available=self.credential_configured)
        self.availability = availability
        monitor.set_ai_available(self.availability.is_available())

        if not self.credential_configured:
            logger.warning("Assessment API key not configured; AI analysis will use fallback rules")

    @property
    def credential_configured(self) -> bool:
        if self.client is not None:
            return self.client.configured
        return self.config.ai_credential_configured

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def analyze_user_behavior(self, user_id: str, window_days: int = 7) -> AIAnalysisResult:
        """
        Analyze a user's activity over the trailing window.

        Assessment failures never propagate; store failures do.
        """
        end = self.clock()
        start = end - timedelta(days=window_days)
        entries = self.activity_store.find(user_id=user_id, since=start, until=end)

        if not entries:
            monitor.record_analysis("empty")
            return AIAnalysisResult(
                risk_score=0.0,
                risk_level=RiskLevel.LOW,
                analysis="No activity detected",
                recommendations=[],
                analysis_method="No activity",
            )

        features = self.prepare_analysis_data(entries, window_days)
        return self.get_ai_analysis(features)

    # ------------------------------------------------------------------
    # Feature extraction
    # ------------------------------------------------------------------

    def prepare_analysis_data(self, entries: List[ActivityLogEntry], window_days: int = 7) -> ActivityFeatures:
        """Derive features from entries sorted by ascending timestamp."""
        entries = sorted(entries, key=lambda e: e.timestamp)
        hours = np.array([e.timestamp.hour for e in entries], dtype=int)
        weekdays = np.array([e.timestamp.weekday() for e in entries], dtype=int)

        action_frequency: Dict[str, int] = {}
        for entry in entries:
            key = entry.action.lower()
            action_frequency[key] = action_frequency.get(key, 0) + 1

        work_hours = sum(1 for e in entries if self._in_work_hours(e))
        ip_addresses = sorted({e.ip_address for e in entries if e.ip_address})

        return ActivityFeatures(
            user_id=entries[0].user_id,
            role=entries[0].role,
            window_days=window_days,
            total_activities=len(entries),
            unique_actions=sorted({e.action for e in entries}),
            hourly_distribution=np.bincount(hours, minlength=24).tolist(),
            daily_distribution=np.bincount(weekdays, minlength=7).tolist(),
            action_frequency=action_frequency,
            risk_scores=[e.risk_score for e in entries],
            work_hours_activity=work_hours,
            after_hours_activity=len(entries) - work_hours,
            download_activity=sum(1 for e in entries if is_download_action(e.action)),
            access_patterns=self.analyze_access_patterns(entries),
            ip_addresses=ip_addresses,
        )

    def _in_work_hours(self, entry: ActivityLogEntry) -> bool:
        flag = entry.additional_data.work_hours
        if flag is not None:
            return flag
        return within_work_hours(entry.timestamp, self.config)

    @staticmethod
    def analyze_access_patterns(entries: List[ActivityLogEntry]) -> AccessPatterns:
        patterns = AccessPatterns()
        if not entries:
            return patterns

        seconds = np.array([e.timestamp.timestamp() for e in entries], dtype=float)
        patterns.rapid_succession = int(np.sum(np.diff(seconds) < RAPID_SUCCESSION_SECONDS))

        hours = np.array([e.timestamp.hour for e in entries], dtype=int)
        patterns.unusual_hours = int(np.sum((hours < UNUSUAL_HOUR_START) | (hours > UNUSUAL_HOUR_END)))

        patterns.repetitive_actions = sum(
            1 for prev, cur in zip(entries, entries[1:]) if prev.action == cur.action
        )
        patterns.mixed_actions = len({e.action for e in entries})
        return patterns

    # ------------------------------------------------------------------
    # External assessment
    # ------------------------------------------------------------------

    def get_ai_analysis(self, features: ActivityFeatures) -> AIAnalysisResult:
        """Score features externally, degrading to the fallback scorer."""
        if self.client is None or not self.availability.is_available():
            logger.debug("AI not available, using fallback analysis")
            monitor.record_analysis("fallback", self.availability.reason or "unavailable")
            return self.fallback_analysis(features)

        prompt = self.build_analysis_prompt(features)
        try:
            response = self.client.complete(prompt)
        except QuotaExceededError as e:
            logger.warning("Assessment quota exceeded, disabling external analysis: %s", e)
            self.availability.disable("quota_exceeded")
            return self._degraded(
                features, "quota_exceeded",
                "AI analysis unavailable due to quota exceeded - using fallback rules",
                quota_exceeded=True,
            )
        except InvalidCredentialError as e:
            logger.error("Invalid assessment API key, disabling external analysis: %s", e)
            self.availability.disable("invalid_credential")
            return self._degraded(
                features, "invalid_credential",
                "AI analysis unavailable due to invalid API key - using fallback rules",
                api_key_error=True,
            )
        except RateLimitedError as e:
            logger.warning("Assessment service rate limited: %s", e)
            return self._degraded(
                features, "rate_limited",
                "AI analysis temporarily unavailable due to rate limits - using fallback rules",
                rate_limited=True,
            )
        except AssessmentServiceError as e:
            logger.error("Assessment service error: %s", e)
            return self._degraded(
                features, "error",
                "AI analysis failed - using fallback rules",
                ai_error=True,
            )
        except Exception as e:
            logger.error("Unexpected assessment client failure: %s", e, exc_info=True)
            return self._degraded(
                features, "error",
                "AI analysis failed - using fallback rules",
                ai_error=True,
            )

        parsed = self.parse_ai_analysis(response)
        monitor.record_analysis("external")
        return AIAnalysisResult(
            risk_score=parsed["risk_score"],
            risk_level=self.risk_level(parsed["risk_score"]),
            analysis=parsed["analysis"],
            recommendations=parsed["recommendations"],
            ai_response=response,
            analysis_method=EXTERNAL_METHOD,
        )

    def _degraded(self, features: ActivityFeatures, reason: str, message: str, **flags) -> AIAnalysisResult:
        monitor.record_analysis("fallback", reason)
        result = self.fallback_analysis(features)
        return result.model_copy(update={"ai_response": message, **flags})

    def build_analysis_prompt(self, features: ActivityFeatures) -> str:
        patterns = features.access_patterns
        unique_actions = ", ".join(features.unique_actions) or "None"
        ip_addresses = ", ".join(features.ip_addresses) or "None"
        risk_scores = ", ".join(f"{s:g}" for s in features.risk_scores) or "None"

        return f"""
Analyze this user behavior data for potential insider threats:

User Role: {features.role or 'Unknown'}
Total Activities: {features.total_activities}
Time Period: Last {features.window_days} days

Activity Summary:
- Work Hours Activity: {features.work_hours_activity}
- After Hours Activity: {features.after_hours_activity}
- Download Activity: {features.download_activity}
- Unique Actions: {unique_actions}
- IP Addresses Used: {ip_addresses}

Access Patterns:
- Rapid Succession Actions: {patterns.rapid_succession}
- Unusual Hours Activity: {patterns.unusual_hours}
- Repetitive Actions: {patterns.repetitive_actions}
- Action Variety: {patterns.mixed_actions}

Risk Scores: {risk_scores}

Provide:
1. Risk Score (0.0-1.0) - 0.0 = No risk, 1.0 = High risk
2. Analysis summary (2-3 sentences)
3. Specific recommendations (3-5 bullet points)

Format your response as:
RISK_SCORE: [score]
ANALYSIS: [analysis]
RECOMMENDATIONS:
- [recommendation 1]
- [recommendation 2]
- [recommendation 3]
"""

    @staticmethod
    def parse_ai_analysis(response: str) -> Dict[str, Any]:
        """
        Extract score, analysis and recommendations from the textual reply.

        Missing or malformed fields fall back to a neutral score, a parse
        failure note and a manual review recommendation.
        """
        score = DEFAULT_PARSED_SCORE
        score_match = RISK_SCORE_RE.search(response)
        if score_match:
            score = float(score_match.group(1))
        else:
            logger.warning("No risk score in assessment reply")
        score = min(max(score, 0.0), 1.0)

        analysis_match = ANALYSIS_RE.search(response)
        analysis = analysis_match.group(1).strip() if analysis_match else PARSE_FAILED_ANALYSIS

        recommendations_match = RECOMMENDATIONS_RE.search(response)
        if recommendations_match:
            recommendations = [
                line.strip()[2:]
                for line in recommendations_match.group(1).split("\n")
                if line.strip().startswith("-")
            ]
        else:
            recommendations = [MANUAL_REVIEW]

        return {"risk_score": score, "analysis": analysis, "recommendations": recommendations}

    # ------------------------------------------------------------------
    # Fallback scorer
    # ------------------------------------------------------------------

    def fallback_analysis(self, features: ActivityFeatures) -> AIAnalysisResult:
        """Additive rule-based score over the same features."""
        score = 0.0
        recommendations: List[str] = []
        warnings: List[str] = []
        patterns = features.access_patterns
        total = features.total_activities

        if features.after_hours_activity > features.work_hours_activity * 0.3:
            score += 0.2
            recommendations.append("High after-hours activity detected")
            warnings.append(
                f"After-hours activity: {features.after_hours_activity} "
                f"vs work hours: {features.work_hours_activity}"
            )

        if patterns.rapid_succession > 5:
            score += 0.2
            recommendations.append("Rapid succession of actions detected")
            warnings.append(f"Rapid succession actions: {patterns.rapid_succession}")

        if features.download_activity > 10:
            score += 0.2
            recommendations.append("High download activity detected")
            warnings.append(f"Download activity: {features.download_activity} files")

        if len(features.ip_addresses) > 3:
            score += 0.1
            recommendations.append("Multiple IP addresses used")
            warnings.append(f"IP addresses used: {len(features.ip_addresses)} different locations")

        if patterns.unusual_hours > total * 0.4:
            score += 0.15
            recommendations.append("High percentage of unusual hours activity")
            warnings.append(
                f"Unusual hours activity: {patterns.unusual_hours} out of {total} total activities"
            )

        if patterns.repetitive_actions > total * 0.5:
            score += 0.1
            recommendations.append("High repetitive action pattern detected")
            warnings.append(
                f"Repetitive actions: {patterns.repetitive_actions} out of {total} total activities"
            )

        if features.risk_scores:
            score += float(np.mean(features.risk_scores)) * 0.3

        score = min(max(score, 0.0), 1.0)
        level = self.risk_level(score)
        verdict = (
            "Suspicious patterns detected"
            if score > self.config.AI_MEDIUM_RISK_THRESHOLD
            else "Normal behavior patterns"
        )

        return AIAnalysisResult(
            risk_score=score,
            risk_level=level,
            analysis=f"Fallback analysis ({level.value} Risk): {verdict}",
            recommendations=recommendations or ["No immediate concerns detected"],
            warnings=warnings,
            fallback_used=True,
            analysis_method=FALLBACK_METHOD,
        )

    def risk_level(self, score: float) -> RiskLevel:
        if score >= self.config.AI_HIGH_RISK_THRESHOLD:
            return RiskLevel.HIGH
        if score >= self.config.AI_MEDIUM_RISK_THRESHOLD:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    # ------------------------------------------------------------------
    # Availability and status
    # ------------------------------------------------------------------

    def check_ai_availability(self) -> bool:
        """Re-enable the external path if a credential is present and it is disabled."""
        if self.availability.is_available():
            return True
        if not self.credential_configured:
            return False

        if self.client is None:
            self.client = AssessmentClient(config=self.config)
        self.availability.re_enable()
        logger.info("External assessment re-enabled after previous error")
        return True

    def update_thresholds(
        self,
        high: Optional[float] = None,
        medium: Optional[float] = None,
        low: Optional[float] = None,
    ) -> Dict[str, float]:
        """Adjust analysis thresholds at runtime."""
        new_high = self.config.AI_HIGH_RISK_THRESHOLD if high is None else high
        new_medium = self.config.AI_MEDIUM_RISK_THRESHOLD if medium is None else medium
        new_low = self.config.AI_LOW_RISK_THRESHOLD if low is None else low

        for value in (new_high, new_medium, new_low):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Threshold must be between 0 and 1, got {value}")
        if not new_low <= new_medium <= new_high:
            raise ValueError("Thresholds must satisfy low <= medium <= high")

        self.config.AI_HIGH_RISK_THRESHOLD = new_high
        self.config.AI_MEDIUM_RISK_THRESHOLD = new_medium
        self.config.AI_LOW_RISK_THRESHOLD = new_low
        logger.info("Analysis thresholds updated: %s", self.config.risk_thresholds())
        return self.config.risk_thresholds()

    def get_system_status(self) -> Dict[str, Any]:
        return {
            "aiAvailable": self.availability.is_available(),
            "aiConfigured": self.credential_configured,
            "disabledReason": self.availability.reason,
            "thresholds": self.config.risk_thresholds(),
            "patterns": list(BEHAVIOR_PATTERNS),
            "lastCheck": self.clock().isoformat(),
        }
