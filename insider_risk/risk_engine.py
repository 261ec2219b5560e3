"""
Deterministic Risk Scorer

Single-shot additive risk score over a user's activity history and the
context of the current request. Every heuristic contributes a fixed weight
and a reason string when it fires; the result is suspicious once the sum
reaches the configured suspicion threshold.

The scorer only reads from the activity store.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from config import AppConfig, get_config
from models_validation import ActivityLogEntry, RiskAssessment, utcnow
from insider_risk.stores import ActivityStore

logger = logging.getLogger(__name__)

# Substrings marking an action as a download
DOWNLOAD_KEYWORD = "download"

# Substrings marking an action as suspicious
SUSPICIOUS_KEYWORDS = ("failed login", "unauthorized access", "suspicious")

# Heuristic weights
WEIGHT_OFF_HOURS = 2
WEIGHT_HIGH_VOLUME = 3
WEIGHT_NEW_IP = 1
WEIGHT_DOWNLOADS_MODERATE = 3
WEIGHT_DOWNLOADS_HIGH = 5
WEIGHT_DOWNLOADS_EXCESSIVE = 8
WEIGHT_SUSPICIOUS_ACTIONS = 5
WEIGHT_CRITICAL_VERY_HIGH = 12
WEIGHT_CRITICAL_EXCESSIVE = 15

REASON_OFF_HOURS = "Accessed system during very late hours"
REASON_HIGH_VOLUME = "Very high activity within 1 hour"
REASON_NEW_IP = "Access from new IP address"
REASON_DOWNLOADS_MODERATE = "Moderate download frequency"
REASON_DOWNLOADS_HIGH = "High download frequency"
REASON_DOWNLOADS_EXCESSIVE = "Excessive download frequency"
REASON_SUSPICIOUS_ACTIONS = "Suspicious actions detected"
REASON_CRITICAL_VERY_HIGH = "CRITICAL: Very high download frequency"
REASON_CRITICAL_EXCESSIVE = "CRITICAL: Excessive downloads detected"


def is_download_action(action: str) -> bool:
    return DOWNLOAD_KEYWORD in action.lower()


def is_suspicious_action(action: str) -> bool:
    lowered = action.lower()
    return any(keyword in lowered for keyword in SUSPICIOUS_KEYWORDS)


class RiskEngine:
    """
    Deterministic rule-based scorer.

    Same log snapshot, same source IP and same wall-clock hour give the
    same assessment.
    """

    def __init__(
        self,
        activity_store: ActivityStore,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.activity_store = activity_store
        self.config = config or get_config()
        self.clock = clock

    def evaluate(self, user_id: str, current_ip: Optional[str]) -> RiskAssessment:
        """
        Score a user's current request.

        Args:
            user_id: The user making the request
            current_ip: Source IP of the current request

        Returns:
            RiskAssessment with the summed score, the suspicious flag and the
            reasons of every heuristic that fired
        """
        logs = self.activity_store.find(user_id=user_id, newest_first=True)
        if not logs:
            return RiskAssessment(score=0, suspicious=False, reasons=[])

        assessment = self.score_history(logs, current_ip, self.clock())
        logger.debug(
            "Risk evaluation for user %s: score=%s suspicious=%s",
            user_id, assessment.score, assessment.suspicious
        )
        return assessment

    def score_history(
        self,
        logs: List[ActivityLogEntry],
        current_ip: Optional[str],
        now: datetime,
    ) -> RiskAssessment:
        """Pure scoring over an activity snapshot at a given instant."""
        cfg = self.config
        if not logs:
            return RiskAssessment(score=0, suspicious=False, reasons=[])

        one_hour_ago = now - timedelta(hours=1)
        reasons: List[str] = []
        score = 0.0

        # 1. Off-hours access
        hour = now.hour
        if hour < cfg.OFF_HOURS_START or hour > cfg.OFF_HOURS_END:
            score += WEIGHT_OFF_HOURS
            reasons.append(REASON_OFF_HOURS)

        # 2. Activity volume in the trailing hour
        recent = [log for log in logs if log.timestamp > one_hour_ago]
        if len(recent) > cfg.RECENT_ACTIVITY_LIMIT:
            score += WEIGHT_HIGH_VOLUME
            reasons.append(REASON_HIGH_VOLUME)

        # 3. Unseen source IP, only once the user has an established IP history
        known_ips = {log.ip_address for log in logs}
        if current_ip not in known_ips and len(known_ips) > cfg.KNOWN_IP_MINIMUM:
            score += WEIGHT_NEW_IP
            reasons.append(REASON_NEW_IP)

        # 4. Download frequency tiers
        downloads = sum(1 for log in recent if is_download_action(log.action))
        if downloads > cfg.DOWNLOAD_TIER_EXCESSIVE:
            score += WEIGHT_DOWNLOADS_EXCESSIVE
            reasons.append(REASON_DOWNLOADS_EXCESSIVE)
        elif downloads > cfg.DOWNLOAD_TIER_HIGH:
            score += WEIGHT_DOWNLOADS_HIGH
            reasons.append(REASON_DOWNLOADS_HIGH)
        elif downloads > cfg.DOWNLOAD_TIER_MODERATE:
            score += WEIGHT_DOWNLOADS_MODERATE
            reasons.append(REASON_DOWNLOADS_MODERATE)

        # 5. Suspicious action names
        if any(is_suspicious_action(log.action) for log in recent):
            score += WEIGHT_SUSPICIOUS_ACTIONS
            reasons.append(REASON_SUSPICIOUS_ACTIONS)

        # 6. Critical download volume, on top of the tier above
        if downloads > cfg.DOWNLOAD_CRITICAL_EXCESSIVE:
            score += WEIGHT_CRITICAL_EXCESSIVE
            reasons.append(REASON_CRITICAL_EXCESSIVE)
        elif downloads > cfg.DOWNLOAD_CRITICAL_VERY_HIGH:
            score += WEIGHT_CRITICAL_VERY_HIGH
            reasons.append(REASON_CRITICAL_VERY_HIGH)

        return RiskAssessment(
            score=score,
            suspicious=score >= cfg.SUSPICION_THRESHOLD,
            reasons=reasons,
        )

    def normalize(self, score: float) -> float:
        """Map an additive score onto [0, 1] for role blocking thresholds."""
        ceiling = self.config.RISK_SCORE_CEILING
        if ceiling <= 0:
            return 0.0
        return max(0.0, min(score / ceiling, 1.0))
