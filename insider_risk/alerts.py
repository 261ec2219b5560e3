"""
Alerting collaborator.

Alerts go out when a user is blocked or flagged for monitoring, when a daily
health check reports critical issues, and when a scheduled job fails.
Summaries go out once per completed weekly or monthly run. Delivery is the
sink's concern; the default sink writes structured log events.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict

import structlog

from models_validation import User


@dataclass(frozen=True)
class AlertSubject:
    """Who an alert is about: a user or the system itself."""
    id: str
    name: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "AlertSubject":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role.value)


SYSTEM_SUBJECT = AlertSubject(id="system", name="System", email="system@company.com", role="System")


def risk_band(risk_score: float) -> str:
    """Band label used in alert bodies."""
    if risk_score > 0.8:
        return "HIGH RISK - Immediate action required"
    if risk_score > 0.6:
        return "MEDIUM RISK - Monitor closely"
    return "LOW RISK - Standard monitoring"


class AlertSink(ABC):
    """Receives admin alerts and run summaries."""

    @abstractmethod
    def send_admin_alert(
        self,
        subject: AlertSubject,
        headline: str,
        risk_score: float,
        details: str,
    ) -> bool:
        """Deliver an alert; returns whether delivery succeeded."""

    @abstractmethod
    def send_summary(self, summary: Dict[str, Any]) -> bool:
        """Deliver a weekly or monthly summary; returns whether delivery succeeded."""


class LoggingAlertSink(AlertSink):
    """Writes alerts and summaries as structured log events."""

    def __init__(self):
        self.logger = structlog.get_logger(self.__class__.__name__)

    def send_admin_alert(
        self,
        subject: AlertSubject,
        headline: str,
        risk_score: float,
        details: str,
    ) -> bool:
        self.logger.warning(
            "admin_alert",
            subject_id=subject.id,
            subject_email=subject.email,
            subject_role=subject.role,
            headline=headline,
            risk_score=round(risk_score, 3),
            risk_band=risk_band(risk_score),
            details=details,
        )
        return True

    def send_summary(self, summary: Dict[str, Any]) -> bool:
        self.logger.info(
            "analysis_summary",
            period=summary.get("period"),
            blocked_users=summary.get("blockedUsers"),
            monitored_users=summary.get("monitoredUsers"),
            total_suspicious=summary.get("totalSuspicious"),
        )
        return True
