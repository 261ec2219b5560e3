"""
Wiring for the risk-and-behavior pipeline.

``create_pipeline`` builds every component over one pair of stores, one
alert sink, one clock and one configuration instance so they all agree.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import AppConfig, get_config
from models_validation import ActivityLogEntry, User, utcnow
from insider_risk.access_guard import AccessGuard
from insider_risk.ai_analyzer import AIAvailability, AIThreatAnalyzer
from insider_risk.alerts import AlertSink, LoggingAlertSink
from insider_risk.assessment_client import AssessmentClient
from insider_risk.behavior_monitor import BehaviorMonitor
from insider_risk.risk_engine import RiskEngine
from insider_risk.scheduler import Scheduler
from insider_risk.stores import (
    ActivityStore,
    InMemoryActivityStore,
    InMemoryUserStore,
    UserStore,
)

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    config: AppConfig
    activity_store: ActivityStore
    user_store: UserStore
    alert_sink: AlertSink
    risk_engine: RiskEngine
    behavior_monitor: BehaviorMonitor
    analyzer: AIThreatAnalyzer
    scheduler: Scheduler
    access_guard: AccessGuard

    def register_user(self, user: User) -> User:
        return self.user_store.add(user)

    def record_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        return self.activity_store.insert(entry)


def create_pipeline(
    activity_store: Optional[ActivityStore] = None,
    user_store: Optional[UserStore] = None,
    alert_sink: Optional[AlertSink] = None,
    assessment_client: Optional[AssessmentClient] = None,
    availability: Optional[AIAvailability] = None,
    config: Optional[AppConfig] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Pipeline:
    """
    Build a pipeline; omitted collaborators get in-memory or logging defaults.

    Args:
        activity_store: Activity log backend
        user_store: User backend
        alert_sink: Alert and summary receiver
        assessment_client: External assessment client, built from config if omitted
        availability: Shared AI availability switch
        config: Configuration, the global instance if omitted
        clock: Source of the current time for every component
    """
    config = config or get_config()
    activity_store = activity_store if activity_store is not None else InMemoryActivityStore()
    user_store = user_store if user_store is not None else InMemoryUserStore()
    alert_sink = alert_sink or LoggingAlertSink()

    risk_engine = RiskEngine(activity_store, config=config, clock=clock)
    behavior_monitor = BehaviorMonitor(
        activity_store, user_store, alert_sink=alert_sink, config=config, clock=clock
    )
    analyzer = AIThreatAnalyzer(
        activity_store,
        client=assessment_client,
        availability=availability,
        config=config,
        clock=clock,
    )
    scheduler = Scheduler(
        analyzer, user_store, activity_store, alert_sink=alert_sink, config=config, clock=clock
    )
    access_guard = AccessGuard(
        risk_engine, behavior_monitor, activity_store, user_store, config=config, clock=clock
    )

    logger.debug("Pipeline created (AI available: %s)", analyzer.availability.is_available())
    return Pipeline(
        config=config,
        activity_store=activity_store,
        user_store=user_store,
        alert_sink=alert_sink,
        risk_engine=risk_engine,
        behavior_monitor=behavior_monitor,
        analyzer=analyzer,
        scheduler=scheduler,
        access_guard=access_guard,
    )
