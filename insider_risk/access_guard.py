"""
Foreground download guard.

The request is permitted or denied only after the deterministic scorer and
the behavior monitor have run to completion.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from config import AppConfig, get_config
from models_validation import ActivityLogEntry, AdditionalData, DownloadDecision, User, utcnow
from monitoring import monitor
from insider_risk.behavior_monitor import BehaviorMonitor
from insider_risk.risk_engine import RiskEngine
from insider_risk.stores import UserNotFoundError, UserStore, ActivityStore

logger = logging.getLogger(__name__)

DOWNLOAD_ACTION = "Downloaded Files"
LIMIT_EXCEEDED_ACTION = "Download Limit Exceeded"


class AccessGuard:
    """Runs the download flow for one request."""

    def __init__(
        self,
        risk_engine: RiskEngine,
        behavior_monitor: BehaviorMonitor,
        activity_store: ActivityStore,
        user_store: UserStore,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.risk_engine = risk_engine
        self.behavior_monitor = behavior_monitor
        self.activity_store = activity_store
        self.user_store = user_store
        self.config = config or get_config()
        self.clock = clock

    def guard_download(self, user_id: str, ip_address: Optional[str], details: str = "") -> DownloadDecision:
        """
        Decide a download request.

        Steps: refuse blocked users, enforce the work-hours quota, score the
        request, record it, then evaluate and apply consequences.

        Raises:
            UserNotFoundError: Unknown user
            PersistenceError: Consequences could not be stored
        """
        user = self.user_store.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        if user.is_blocked:
            logger.info("Download refused for blocked user %s", user_id)
            return DownloadDecision(
                allowed=False,
                status="blocked",
                message="Your account is blocked due to suspicious activity.",
                blocked_at=user.blocked_at,
            )

        work_hours = self.behavior_monitor.is_work_hours()
        limit_check = self.behavior_monitor.check_download_limit(user.id, user.role)
        if limit_check["exceeded"]:
            return self._refuse_over_quota(user, ip_address, limit_check, work_hours)

        assessment = self.risk_engine.evaluate(user.id, ip_address)
        monitor.record_risk_evaluation(assessment.suspicious)
        normalized = self.risk_engine.normalize(assessment.score)

        self.activity_store.insert(ActivityLogEntry(
            user_id=user.id,
            role=user.role.value,
            action=DOWNLOAD_ACTION,
            timestamp=self.clock(),
            ip_address=ip_address,
            additional_data=AdditionalData(
                risk_score=normalized,
                details=details or None,
                work_hours=work_hours,
                download_count=limit_check["current"] + 1,
                limit=limit_check["limit"],
            ),
        ))

        evaluation = self.behavior_monitor.evaluate_behavior(
            user, DOWNLOAD_ACTION, normalized, "; ".join(assessment.reasons) or details
        )
        updated = self.behavior_monitor.apply_consequences(user, evaluation)

        blocked = updated is not None and updated.is_blocked
        if blocked:
            return DownloadDecision(
                allowed=False,
                status="blocked",
                message=f"Download blocked: {evaluation.reason}",
                risk_score=assessment.score,
                download_count=limit_check["current"] + 1,
                limit=limit_check["limit"],
                work_hours=work_hours,
                reasons=assessment.reasons,
                blocked_at=updated.blocked_at,
            )

        return DownloadDecision(
            allowed=True,
            status="allowed",
            message="Download permitted",
            risk_score=assessment.score,
            download_count=limit_check["current"] + 1,
            limit=limit_check["limit"],
            work_hours=work_hours,
            reasons=assessment.reasons,
        )

    def _refuse_over_quota(self, user: User, ip_address: Optional[str], limit_check: dict, work_hours: bool) -> DownloadDecision:
        self.activity_store.insert(ActivityLogEntry(
            user_id=user.id,
            role=user.role.value,
            action=LIMIT_EXCEEDED_ACTION,
            timestamp=self.clock(),
            ip_address=ip_address,
            additional_data=AdditionalData(
                risk_score=self.config.DOWNLOAD_LIMIT_RISK_SCORE,
                details=f"Exceeded daily download limit during work hours ({limit_check['current']}/{limit_check['limit']})",
                work_hours=work_hours,
                download_count=limit_check["current"],
                limit=limit_check["limit"],
            ),
        ))
        logger.warning(
            "Download limit exceeded for user %s: %s/%s",
            user.id, limit_check["current"], limit_check["limit"]
        )
        return DownloadDecision(
            allowed=False,
            status="limit_exceeded",
            message=(
                f"Daily download limit exceeded. You have downloaded {limit_check['current']} files "
                f"today (limit: {limit_check['limit']})."
            ),
            risk_score=self.config.DOWNLOAD_LIMIT_RISK_SCORE,
            download_count=limit_check["current"],
            limit=limit_check["limit"],
            work_hours=work_hours,
        )
