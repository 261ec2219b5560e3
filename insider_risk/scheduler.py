"""
Scheduler / Orchestrator

Drives three periodic jobs over the user population:
- weekly analysis, Sunday 02:00
- daily health check, 06:00
- monthly analysis with trend aggregates, 1st of the month 03:00

Each job moves Idle -> Running -> Completed | Failed -> Idle and is
rescheduled for its next fire time whatever the outcome. Per-user failures
are collected without aborting the batch; job-level failures are logged,
alerted, and never escape the timer thread.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd
import structlog

from config import AppConfig, get_config
from models_validation import (
    AnalysisFailure,
    BatchAnalysisResult,
    HealthStatus,
    RiskNote,
    UserAnalysis,
    User,
    utcnow,
)
from monitoring import monitor
from insider_risk.ai_analyzer import AIThreatAnalyzer
from insider_risk.alerts import SYSTEM_SUBJECT, AlertSink, AlertSubject, LoggingAlertSink
from insider_risk.behavior_monitor import format_percent
from insider_risk.roles import can_be_blocked
from insider_risk.stores import ActivityStore, UserStore

logger = structlog.get_logger(__name__)

WEEKLY_JOB = "weekly_analysis"
HEALTH_JOB = "daily_health_check"
MONTHLY_JOB = "monthly_analysis"

# Trend distribution bucket bounds
TREND_LOW_BOUND = 0.4
TREND_HIGH_BOUND = 0.7


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class CronSchedule:
    """
    Minimal cron-style fire time: a fixed minute and hour, optionally
    restricted to a weekday (Monday=0) or a day of the month.
    """
    minute: int
    hour: int
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None

    def matches_day(self, moment: datetime) -> bool:
        if self.day_of_week is not None and moment.weekday() != self.day_of_week:
            return False
        if self.day_of_month is not None and moment.day != self.day_of_month:
            return False
        return True

    def next_fire(self, after: datetime, tz: ZoneInfo) -> datetime:
        """First fire time strictly after ``after``."""
        local = after.astimezone(tz)
        candidate = local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate += timedelta(days=1)
        # Any day-of-month pattern recurs within a year
        for _ in range(400):
            if self.matches_day(candidate):
                return candidate
            candidate += timedelta(days=1)
        raise ValueError(f"Schedule {self} never fires")

    def describe(self) -> str:
        when = f"{self.hour:02d}:{self.minute:02d}"
        if self.day_of_week is not None:
            day = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"][self.day_of_week]
            return f"every {day} at {when}"
        if self.day_of_month is not None:
            return f"day {self.day_of_month} of every month at {when}"
        return f"every day at {when}"


WEEKLY_SCHEDULE = CronSchedule(minute=0, hour=2, day_of_week=6)
HEALTH_SCHEDULE = CronSchedule(minute=0, hour=6)
MONTHLY_SCHEDULE = CronSchedule(minute=0, hour=3, day_of_month=1)


@dataclass
class ScheduledJob:
    name: str
    title: str
    schedule: CronSchedule
    func: Callable[[], Any]
    failure_risk_score: float = 0.9
    state: JobState = JobState.IDLE
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_status: Optional[JobState] = None
    last_error: Optional[str] = None
    timer: Optional[threading.Timer] = field(default=None, repr=False)


class Scheduler:
    """
    Periodic and on-demand orchestration of analysis and health checks.

    Timers run on daemon threads. Jobs are independent of each other and of
    foreground requests; a job is not re-armed until its run has finished.
    """

    def __init__(
        self,
        analyzer: AIThreatAnalyzer,
        user_store: UserStore,
        activity_store: ActivityStore,
        alert_sink: Optional[AlertSink] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.analyzer = analyzer
        self.user_store = user_store
        self.activity_store = activity_store
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.config = config or get_config()
        self.clock = clock

        self.jobs: Dict[str, ScheduledJob] = {}
        self.is_initialized = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, start_timers: bool = True) -> None:
        """Register the three periodic jobs. Calling twice is a no-op."""
        with self._lock:
            if self.is_initialized:
                logger.info("scheduler_already_initialized")
                return

            self.jobs = {
                WEEKLY_JOB: ScheduledJob(
                    WEEKLY_JOB, "Weekly AI Analysis", WEEKLY_SCHEDULE, self._weekly_job
                ),
                HEALTH_JOB: ScheduledJob(
                    HEALTH_JOB, "Daily Health Check", HEALTH_SCHEDULE, self._health_job,
                    failure_risk_score=0.7,
                ),
                MONTHLY_JOB: ScheduledJob(
                    MONTHLY_JOB, "Monthly Analysis", MONTHLY_SCHEDULE, self._monthly_job
                ),
            }
            for job in self.jobs.values():
                job.next_run = job.schedule.next_fire(self.clock(), self._tz)
                if start_timers:
                    self._arm(job)
                logger.info(
                    "job_scheduled",
                    job=job.name,
                    schedule=job.schedule.describe(),
                    timezone=self.config.SCHEDULER_TIMEZONE,
                    next_run=job.next_run.isoformat(),
                )

            self.is_initialized = True
            logger.info("scheduler_initialized", jobs=list(self.jobs))

    def stop_all(self) -> None:
        with self._lock:
            for name, job in self.jobs.items():
                if job.timer is not None:
                    job.timer.cancel()
                logger.info("job_stopped", job=name)
            self.jobs.clear()
            self.is_initialized = False
        logger.info("scheduler_stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "isInitialized": self.is_initialized,
            "jobs": {
                name: {
                    "state": job.state.value,
                    "schedule": job.schedule.describe(),
                    "nextRun": job.next_run.isoformat() if job.next_run else None,
                    "lastRun": job.last_run.isoformat() if job.last_run else None,
                    "lastStatus": job.last_status.value if job.last_status else None,
                    "lastError": job.last_error,
                }
                for name, job in self.jobs.items()
            },
        }

    @property
    def _tz(self) -> ZoneInfo:
        return ZoneInfo(self.config.SCHEDULER_TIMEZONE)

    def _arm(self, job: ScheduledJob) -> None:
        delay = max((job.next_run - self.clock()).total_seconds(), 0.0)
        job.timer = threading.Timer(delay, self._fire, args=(job.name,))
        job.timer.daemon = True
        job.timer.start()

    def _fire(self, name: str) -> None:
        with self._lock:
            job = self.jobs.get(name)
        if job is None:
            return
        self._execute(job)
        with self._lock:
            if self.is_initialized and self.jobs.get(name) is job:
                self._arm(job)

    def run_job(self, name: str) -> Any:
        """
        Execute a registered job at the job boundary.

        Never raises; a failure is logged, counted, alerted and recorded on
        the job. Returns the job's result, or None when it failed.
        """
        return self._execute(self.jobs[name])

    def _execute(self, job: ScheduledJob) -> Any:
        name = job.name
        job.state = JobState.RUNNING
        job.last_run = self.clock()
        started = time.time()
        logger.info("job_started", job=name)

        result = None
        try:
            result = job.func()
            job.state = JobState.COMPLETED
            job.last_error = None
        except Exception as e:
            job.state = JobState.FAILED
            job.last_error = str(e)
            logger.error("job_failed", job=name, error=str(e), exc_info=True)
            self._send_alert(
                SYSTEM_SUBJECT,
                f"{job.title} Failed",
                job.failure_risk_score,
                f"{job.title} failed with error: {e}. Manual intervention required.",
            )

        duration = time.time() - started
        monitor.record_job(name, job.state.value, duration)
        logger.info("job_finished", job=name, status=job.state.value, duration=round(duration, 3))

        job.last_status = job.state
        job.state = JobState.IDLE
        job.next_run = job.schedule.next_fire(self.clock(), self._tz)
        return result

    def _send_alert(self, subject: AlertSubject, headline: str, risk_score: float, details: str) -> None:
        try:
            delivered = self.alert_sink.send_admin_alert(subject, headline, risk_score, details)
        except Exception as e:
            logger.error("alert_failed", headline=headline, error=str(e), exc_info=True)
            return
        if not delivered:
            logger.warning("alert_not_delivered", headline=headline, subject=subject.id)

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    def _weekly_job(self) -> BatchAnalysisResult:
        result = self.perform_weekly_analysis()
        self._log_batch("weekly", result)
        return result

    def _monthly_job(self) -> BatchAnalysisResult:
        result = self.perform_monthly_analysis()
        self._log_batch("monthly", result)
        return result

    def _health_job(self) -> HealthStatus:
        status = self.perform_health_check()
        if status.is_healthy:
            logger.info("health_check_passed")
        else:
            logger.warning("health_check_issues", issues=status.issues)
            if status.critical_issues > 0:
                self._send_alert(
                    SYSTEM_SUBJECT,
                    "Daily Health Check Failed",
                    0.7,
                    f"Daily health check failed with {status.critical_issues} critical issues. "
                    "Please review system logs.",
                )
        return status

    def _log_batch(self, kind: str, result: BatchAnalysisResult) -> None:
        logger.info(
            "batch_analysis_completed",
            kind=kind,
            users_analyzed=len(result.analysis_results),
            flagged=len(result.flagged),
            blocked=result.blocked_count,
            monitored=result.monitored_count,
            failures=len(result.failures),
        )
        if result.flagged:
            logger.warning(
                "high_risk_users_detected",
                kind=kind,
                users=[
                    {"email": item.email, "role": item.role.value,
                     "riskScore": item.result.risk_score, "action": item.action}
                    for item in result.flagged
                ],
            )

    # ------------------------------------------------------------------
    # Batch analysis
    # ------------------------------------------------------------------

    def perform_weekly_analysis(self) -> BatchAnalysisResult:
        return self._run_batch(self.config.WEEKLY_WINDOW_DAYS, "AI Analysis", with_trends=False)

    def perform_monthly_analysis(self) -> BatchAnalysisResult:
        return self._run_batch(self.config.MONTHLY_WINDOW_DAYS, "Monthly AI Analysis", with_trends=True)

    def _run_batch(self, window_days: int, label: str, with_trends: bool) -> BatchAnalysisResult:
        users = self.user_store.find(is_blocked=False)
        result = BatchAnalysisResult(window_days=window_days)

        for user in users:
            try:
                analysis = self.analyzer.analyze_user_behavior(user.id, window_days)
            except Exception as e:
                logger.error("user_analysis_failed", user_id=user.id, error=str(e), exc_info=True)
                result.failures.append(AnalysisFailure(user_id=user.id, stage="analysis", error=str(e)))
                continue

            item = UserAnalysis(
                user_id=user.id,
                name=user.name,
                email=user.email,
                role=user.role,
                result=analysis,
                action=self.classify(user, analysis.risk_score),
            )
            result.analysis_results.append(item)
            if item.action is not None:
                result.flagged.append(item)

        for item in result.flagged:
            try:
                self.apply_analysis_action(item)
            except Exception as e:
                logger.error("apply_action_failed", user_id=item.user_id, error=str(e), exc_info=True)
                result.failures.append(
                    AnalysisFailure(user_id=item.user_id, stage="consequences", error=str(e))
                )

        if with_trends:
            result.trends = self.analyze_trends(result.analysis_results)
        result.summary = self.build_summary(result, label)
        if result.trends is not None:
            result.summary["trends"] = result.trends

        try:
            if not self.alert_sink.send_summary(result.summary):
                logger.warning("summary_not_delivered", period=result.summary["period"])
        except Exception as e:
            logger.error("summary_failed", error=str(e), exc_info=True)

        return result

    def classify(self, user: User, risk_score: float) -> Optional[str]:
        """block at or above the high threshold, monitor at or above medium."""
        if risk_score >= self.config.AI_HIGH_RISK_THRESHOLD:
            return "block" if can_be_blocked(user.role) else "monitor"
        if risk_score >= self.config.AI_MEDIUM_RISK_THRESHOLD:
            return "monitor"
        return None

    def apply_analysis_action(self, item: UserAnalysis) -> None:
        """Persist the block or monitoring note for a flagged user and alert."""
        analysis = item.result
        percent = format_percent(analysis.risk_score)
        band = "High" if analysis.risk_score >= self.config.AI_HIGH_RISK_THRESHOLD else "Medium"
        note = RiskNote(
            reason=f"AI Analysis: {band} risk score {percent} - {analysis.analysis}",
            timestamp=self.clock(),
            action="block" if item.action == "block" else "monitor",
        )
        subject = AlertSubject(id=item.user_id, name=item.name, email=item.email, role=item.role.value)

        if item.action == "block":
            self.user_store.block(item.user_id, note, self.clock())
            headline = "AI Analysis: User Blocked"
            details = f"User blocked based on AI analysis. Risk Score: {percent}. Analysis: {analysis.analysis}"
        else:
            self.user_store.add_note(item.user_id, note)
            headline = "AI Analysis: User Under Monitoring"
            details = (
                f"User flagged for monitoring based on AI analysis. Risk Score: {percent}. "
                f"Analysis: {analysis.analysis}"
            )

        monitor.record_behavior_action(item.action, "scheduler")
        logger.info("analysis_action_applied", user_id=item.user_id, action=item.action, risk_score=analysis.risk_score)
        self._send_alert(subject, headline, analysis.risk_score, details)

    @staticmethod
    def _scores_frame(results: List[UserAnalysis]) -> pd.DataFrame:
        return pd.DataFrame(
            [{"role": r.role.value, "score": r.result.risk_score} for r in results],
            columns=["role", "score"],
        )

    def build_summary(self, result: BatchAnalysisResult, label: str) -> Dict[str, Any]:
        df = self._scores_frame(result.analysis_results)
        analyzed = len(df)
        flagged = len(result.flagged)

        return {
            "totalSuspicious": flagged,
            "usersWithViolations": flagged,
            "blockedUsers": result.blocked_count,
            "monitoredUsers": result.monitored_count,
            "period": f"{label} - Last {result.window_days} days ({self.clock().date().isoformat()})",
            "userViolations": [
                {
                    "name": item.name,
                    "email": item.email,
                    "role": item.role.value,
                    "violationCount": 1,
                    "avgRiskScore": item.result.risk_score,
                    "action": item.action,
                    "analysis": item.result.analysis,
                }
                for item in result.flagged
            ],
            "aiInsights": {
                "totalUsersAnalyzed": analyzed,
                "averageRiskScore": float(df["score"].mean()) if analyzed else 0.0,
                "highRiskPercentage": round(flagged / analyzed * 100, 1) if analyzed else 0.0,
            },
            "roleAverages": (
                {role: float(score) for role, score in df.groupby("role")["score"].mean().items()}
                if analyzed else {}
            ),
            "failures": len(result.failures),
        }

    def analyze_trends(self, results: List[UserAnalysis]) -> Dict[str, Any]:
        """Mean score, three-bucket distribution and per-role means."""
        trends: Dict[str, Any] = {
            "averageRiskScore": 0.0,
            "riskScoreDistribution": {"low": 0, "medium": 0, "high": 0},
            "roleBasedRisk": {},
        }
        df = self._scores_frame(results)
        if df.empty:
            return trends

        scores = df["score"]
        trends["averageRiskScore"] = float(scores.mean())
        trends["riskScoreDistribution"] = {
            "low": int((scores < TREND_LOW_BOUND).sum()),
            "medium": int(((scores >= TREND_LOW_BOUND) & (scores < TREND_HIGH_BOUND)).sum()),
            "high": int((scores >= TREND_HIGH_BOUND).sum()),
        }
        per_role = df.groupby("role")["score"].agg(["count", "sum", "mean"])
        trends["roleBasedRisk"] = {
            role: {
                "count": int(row["count"]),
                "totalScore": float(row["sum"]),
                "averageScore": float(row["mean"]),
            }
            for role, row in per_role.iterrows()
        }
        return trends

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    def perform_health_check(self) -> HealthStatus:
        """
        Verify stores, credentials and sanity of recent volumes.

        Missing credentials and unreachable stores are critical; an empty
        last day and a high blocked-user count are warnings.
        """
        status = HealthStatus(timestamp=self.clock())
        try:
            if not (self.activity_store.ping() and self.user_store.ping()):
                status.add_issue("Store connection not ready", critical=True)

            if not self.analyzer.credential_configured:
                status.add_issue("Assessment API key not configured", critical=True)

            if not self.config.email_configured:
                status.add_issue("Email configuration incomplete", critical=True)

            recent_logs = self.activity_store.count(since=self.clock() - timedelta(hours=24))
            if recent_logs == 0:
                status.add_issue("No recent activity logs in last 24 hours")

            blocked_users = self.user_store.count(is_blocked=True)
            if blocked_users > self.config.BLOCKED_USERS_WARNING:
                status.add_issue(f"High number of blocked users: {blocked_users}")
        except Exception as e:
            logger.error("health_check_error", error=str(e), exc_info=True)
            status.add_issue(f"Health check error: {e}", critical=True)

        monitor.record_health(status.critical_issues)
        return status

    # ------------------------------------------------------------------
    # On-demand triggers
    # ------------------------------------------------------------------

    def trigger_weekly_analysis(self) -> BatchAnalysisResult:
        logger.info("manual_weekly_analysis_triggered")
        try:
            result = self.perform_weekly_analysis()
        except Exception as e:
            logger.error("manual_weekly_analysis_failed", error=str(e), exc_info=True)
            raise
        logger.info("manual_weekly_analysis_completed", flagged=len(result.flagged))
        return result

    def trigger_health_check(self) -> HealthStatus:
        logger.info("manual_health_check_triggered")
        status = self.perform_health_check()
        logger.info("manual_health_check_completed", healthy=status.is_healthy)
        return status
