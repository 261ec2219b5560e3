"""
Insider Risk Evaluation Pipeline

Deterministic request scoring, role-aware behavior consequences, AI-assisted
periodic analysis with a rule-based fallback, and the scheduler that runs
analysis and health checks across the user population.
"""

from insider_risk.roles import (
    RoleCapabilities,
    capabilities_for,
    can_be_blocked,
    can_manage,
)

from insider_risk.stores import (
    ActivityStore,
    UserStore,
    InMemoryActivityStore,
    InMemoryUserStore,
    StoreError,
    PersistenceError,
    UserNotFoundError,
)

from insider_risk.alerts import (
    AlertSink,
    AlertSubject,
    LoggingAlertSink,
    SYSTEM_SUBJECT,
)

from insider_risk.risk_engine import RiskEngine

from insider_risk.behavior_monitor import (
    BehaviorMonitor,
    UnblockNotPermittedError,
    within_work_hours,
)

from insider_risk.assessment_client import (
    AssessmentClient,
    AssessmentServiceError,
    QuotaExceededError,
    InvalidCredentialError,
    RateLimitedError,
)

from insider_risk.ai_analyzer import (
    AIAvailability,
    AIThreatAnalyzer,
    ActivityFeatures,
)

from insider_risk.scheduler import (
    CronSchedule,
    JobState,
    Scheduler,
)

from insider_risk.access_guard import AccessGuard

from insider_risk.pipeline import Pipeline, create_pipeline

__all__ = [
    "RoleCapabilities",
    "capabilities_for",
    "can_be_blocked",
    "can_manage",
    "ActivityStore",
    "UserStore",
    "InMemoryActivityStore",
    "InMemoryUserStore",
    "StoreError",
    "PersistenceError",
    "UserNotFoundError",
    "AlertSink",
    "AlertSubject",
    "LoggingAlertSink",
    "SYSTEM_SUBJECT",
    "RiskEngine",
    "BehaviorMonitor",
    "UnblockNotPermittedError",
    "within_work_hours",
    "AssessmentClient",
    "AssessmentServiceError",
    "QuotaExceededError",
    "InvalidCredentialError",
    "RateLimitedError",
    "AIAvailability",
    "AIThreatAnalyzer",
    "ActivityFeatures",
    "CronSchedule",
    "JobState",
    "Scheduler",
    "AccessGuard",
    "Pipeline",
    "create_pipeline",
]
