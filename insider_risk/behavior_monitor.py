"""
Behavior Monitor

Role-aware consequence engine:
- daily download quotas enforced during work hours
- weekly violation count limit
- single-event blocking threshold on the normalized risk score

This is the only place, together with the scheduler's action step, where
user block state is mutated.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

import pandas as pd

from config import AppConfig, get_config
from models_validation import BehaviorEvaluation, RiskNote, Role, User, utcnow
from monitoring import monitor
from insider_risk.alerts import AlertSink, AlertSubject, LoggingAlertSink
from insider_risk.roles import can_be_blocked, can_manage, capabilities_for, coerce_role
from insider_risk.stores import ActivityStore, PersistenceError, UserNotFoundError, UserStore

logger = logging.getLogger(__name__)

DOWNLOAD_PATTERN = "download"
VIOLATION_WINDOW_DAYS = 7


class UnblockNotPermittedError(Exception):
    """The acting role may not manage the target account."""


def within_work_hours(moment: datetime, config: AppConfig) -> bool:
    """Weekday in the configured work days and hour in [start, end)."""
    return (
        moment.weekday() in config.WORK_DAYS
        and config.WORK_HOURS_START <= moment.hour < config.WORK_HOURS_END
    )


def format_percent(score: float) -> str:
    return f"{score * 100:.1f}%"


class BehaviorMonitor:
    """
    Decides and applies block/monitor consequences for a user's action.

    Thresholds and quotas come from the shared role capability table and are
    read on every call, so runtime config updates take effect immediately.
    """

    def __init__(
        self,
        activity_store: ActivityStore,
        user_store: UserStore,
        alert_sink: Optional[AlertSink] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.activity_store = activity_store
        self.user_store = user_store
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.config = config or get_config()
        self.clock = clock

    # ------------------------------------------------------------------
    # Quota and violation checks
    # ------------------------------------------------------------------

    def is_work_hours(self) -> bool:
        return within_work_hours(self.clock(), self.config)

    def get_work_hours_download_count(self, user_id: str) -> int:
        """Download-tagged entries since midnight today."""
        midnight = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return self.activity_store.count(
            user_id=user_id,
            since=midnight,
            action_pattern=DOWNLOAD_PATTERN,
        )

    def check_download_limit(self, user_id: str, role: Union[Role, str]) -> Dict[str, Any]:
        """
        Compare today's downloads against the role's quota.

        Outside work hours the check never reports a breach.

        Returns:
            Dict with ``exceeded``, ``current`` and ``limit``
        """
        if not self.is_work_hours():
            return {"exceeded": False, "current": 0, "limit": 0}

        current = self.get_work_hours_download_count(user_id)
        limit = capabilities_for(role, self.config).download_quota
        return {
            "exceeded": current >= limit,
            "current": current,
            "limit": limit,
        }

    def get_weekly_violation_count(self, user_id: str) -> int:
        """Persisted entries in the trailing week above the high-risk cutoff."""
        since = self.clock() - timedelta(days=VIOLATION_WINDOW_DAYS)
        return self.activity_store.count(
            user_id=user_id,
            since=since,
            risk_score_above=self.config.VIOLATION_RISK_CUTOFF,
        )

    def should_block_for_weekly_violations(self, user_id: str, role: Union[Role, str]) -> bool:
        if not can_be_blocked(role):
            return False
        return self.get_weekly_violation_count(user_id) >= self.config.WEEKLY_VIOLATION_LIMIT

    def should_block_for_risk_score(self, role: Union[Role, str], risk_score: float) -> bool:
        if not can_be_blocked(role):
            return False
        return risk_score >= capabilities_for(role, self.config).block_threshold

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_behavior(
        self,
        user: User,
        action: str,
        risk_score: float,
        details: str = "",
    ) -> BehaviorEvaluation:
        """
        Combine the quota, weekly-violation and risk-score checks.

        A block reason replaces a notify-only reason. Any score above the
        always-notify cutoff forces a notification.

        Args:
            user: The acting user
            action: Action name of the current request
            risk_score: Normalized risk score in [0, 1]
            details: Free text forwarded to the alert sink
        """
        result = BehaviorEvaluation()
        subject = AlertSubject.from_user(user)
        percent = format_percent(risk_score)

        if DOWNLOAD_PATTERN in action.lower():
            download_check = self.check_download_limit(user.id, user.role)
            if download_check["exceeded"]:
                result.should_notify = True
                result.reason = (
                    "Download limit exceeded during work hours. "
                    f"Current: {download_check['current']}, Limit: {download_check['limit']}"
                )
                self._alert(
                    subject,
                    "Download Limit Exceeded",
                    risk_score,
                    "User exceeded daily download limit during work hours. "
                    f"Current: {download_check['current']}, Limit: {download_check['limit']}",
                )

        if self.should_block_for_weekly_violations(user.id, user.role):
            result.should_block = True
            result.action = "block"
            result.reason = (
                f"Weekly violation limit exceeded ({self.config.WEEKLY_VIOLATION_LIMIT}+ suspicious activities)"
            )
            self._alert(
                subject,
                "Weekly Violation Limit Exceeded",
                risk_score,
                "User has exceeded weekly violation limit and will be blocked",
            )

        if self.should_block_for_risk_score(user.role, risk_score):
            result.should_block = True
            result.action = "block"
            result.reason = (
                f"Risk score {percent} exceeds blocking threshold for role {user.role.value}"
            )
            self._alert(
                subject,
                "High Risk Score - User Blocked",
                risk_score,
                f"User blocked due to high risk score: {percent}",
            )

        if risk_score > self.config.ALWAYS_NOTIFY_CUTOFF:
            result.should_notify = True
            if not result.reason:
                result.reason = f"High risk activity detected: {percent}"
            self._alert(subject, "High Risk Activity Detected", risk_score, details)

        return result

    def _alert(self, subject: AlertSubject, headline: str, risk_score: float, details: str) -> None:
        delivered = self.alert_sink.send_admin_alert(subject, headline, risk_score, details)
        if not delivered:
            logger.warning("Alert '%s' for %s was not delivered", headline, subject.id)

    # ------------------------------------------------------------------
    # Consequences
    # ------------------------------------------------------------------

    def apply_consequences(self, user: User, evaluation: BehaviorEvaluation) -> Optional[User]:
        """
        Persist a block or a monitoring note.

        Returns the updated user, or None when the evaluation asks for
        nothing. Store write failures are logged and re-raised.
        """
        if not (evaluation.should_block or evaluation.should_notify):
            return None

        now = self.clock()
        block = evaluation.should_block and can_be_blocked(user.role)
        if evaluation.should_block and not block:
            logger.warning("Refusing to block %s user %s; recording a monitor note", user.role.value, user.id)

        try:
            if block:
                note = RiskNote(reason=evaluation.reason, timestamp=now, action="block")
                updated = self.user_store.block(user.id, note, now)
                logger.info("User %s blocked: %s", user.email or user.id, evaluation.reason)
            else:
                note = RiskNote(reason=evaluation.reason, timestamp=now, action="monitor")
                updated = self.user_store.add_note(user.id, note)
                logger.info("User %s flagged for monitoring: %s", user.email or user.id, evaluation.reason)
        except PersistenceError:
            logger.error("Failed to persist consequences for user %s", user.id, exc_info=True)
            raise

        monitor.record_behavior_action("block" if block else "monitor", "behavior_monitor")
        return updated

    def unblock_user(self, user_id: str, actor_role: Union[Role, str] = Role.ADMIN) -> User:
        """
        Clear block state and risk notes.

        Safe to call on a user who is not blocked.

        Raises:
            UserNotFoundError: No such user
            UnblockNotPermittedError: ``actor_role`` may not manage the user
        """
        user = self.user_store.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not can_manage(actor_role, user.role):
            raise UnblockNotPermittedError(
                f"{coerce_role(actor_role).value} may not unblock {user.role.value} accounts"
            )
        if not user.is_blocked and not user.risk_notes:
            return user

        updated = self.user_store.clear_block(user_id)
        logger.info("User %s unblocked", user_id)
        return updated

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_behavior_summary(self) -> Dict[str, Any]:
        """Violations over the trailing week, grouped per user."""
        now = self.clock()
        since = now - timedelta(days=VIOLATION_WINDOW_DAYS)
        entries = self.activity_store.find(
            since=since, risk_score_above=self.config.VIOLATION_RISK_CUTOFF
        )

        user_violations = []
        if entries:
            df = pd.DataFrame(
                {"user_id": e.user_id, "risk_score": e.risk_score} for e in entries
            )
            grouped = df.groupby("user_id")["risk_score"].agg(["count", "mean"])
            repeat = grouped[grouped["count"] >= 2]
            for user_id, row in repeat.iterrows():
                user = self.user_store.get(user_id)
                if user is None:
                    continue
                user_violations.append({
                    "userId": user_id,
                    "name": user.name,
                    "email": user.email,
                    "role": user.role.value,
                    "violationCount": int(row["count"]),
                    "avgRiskScore": float(row["mean"]),
                })

        return {
            "totalSuspicious": len(entries),
            "usersWithViolations": len(user_violations),
            "blockedUsers": self.user_store.count(is_blocked=True),
            "period": f"Last 7 days ({since.date().isoformat()} - {now.date().isoformat()})",
            "userViolations": user_violations,
        }
