"""
Insider Risk Monitoring System

Observability infrastructure with:
- Prometheus metrics (Counter, Histogram, Gauge)
- Structured logging with structlog
- Process health checks

Metric names follow Prometheus naming conventions with an insider_risk_ prefix.
"""

import time
import logging
import sys
import psutil
import platform
from typing import Dict, Any, Optional
from datetime import datetime, timezone

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
)


# ============================================================================
# Prometheus Metrics Configuration
# ============================================================================

# Custom registry for isolation
REGISTRY = CollectorRegistry()

risk_evaluations_total = Counter(
    'insider_risk_evaluations_total',
    'Deterministic risk evaluations performed',
    ['suspicious'],
    registry=REGISTRY
)

behavior_actions_total = Counter(
    'insider_risk_behavior_actions_total',
    'Consequences applied to user accounts',
    ['action', 'source'],
    registry=REGISTRY
)

ai_analyses_total = Counter(
    'insider_risk_ai_analyses_total',
    'User behavior analyses by scoring path',
    ['path', 'reason'],
    registry=REGISTRY
)

ai_available = Gauge(
    'insider_risk_ai_available',
    'Whether the external assessment path is enabled (1) or disabled (0)',
    registry=REGISTRY
)

job_runs_total = Counter(
    'insider_risk_job_runs_total',
    'Scheduled job executions by outcome',
    ['job', 'status'],
    registry=REGISTRY
)

job_duration_seconds = Histogram(
    'insider_risk_job_duration_seconds',
    'Scheduled job duration in seconds',
    ['job'],
    buckets=(0.01, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
    registry=REGISTRY
)

health_critical_issues = Gauge(
    'insider_risk_health_critical_issues',
    'Critical issues reported by the last health check',
    registry=REGISTRY
)

app_info = Info(
    'insider_risk_app',
    'Insider risk monitor application information',
    registry=REGISTRY
)


# ============================================================================
# Structured Logging Configuration
# ============================================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure structured logging with structlog."""

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if sys.stderr.isatty():
        # Pretty colored output for development
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer()
        ]
    else:
        # JSON output for production
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)


# ============================================================================
# Monitoring Manager
# ============================================================================

class MonitoringManager:
    """
    Central monitoring manager for the insider risk pipeline.

    Records pipeline metrics and reports process health.
    """

    def __init__(self, app_name: str = "insider-risk-monitor", version: str = "1.0.0"):
        self.app_name = app_name
        self.version = version
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.start_time = time.time()

        app_info.info({
            'app_name': app_name,
            'version': version,
            'python_version': platform.python_version(),
            'platform': platform.system(),
        })

        self.logger.info(
            "monitoring_initialized",
            app_name=app_name,
            version=version,
        )

    def record_risk_evaluation(self, suspicious: bool) -> None:
        """Record a deterministic risk evaluation."""
        risk_evaluations_total.labels(suspicious=str(suspicious).lower()).inc()

    def record_behavior_action(self, action: str, source: str) -> None:
        """Record a block or monitor consequence."""
        behavior_actions_total.labels(action=action, source=source).inc()

    def record_analysis(self, path: str, reason: str = "none") -> None:
        """Record which scoring path served an analysis."""
        ai_analyses_total.labels(path=path, reason=reason).inc()

    def set_ai_available(self, available: bool) -> None:
        ai_available.set(1 if available else 0)

    def record_job(self, job: str, status: str, duration: float) -> None:
        """Record a scheduled job execution."""
        job_runs_total.labels(job=job, status=status).inc()
        job_duration_seconds.labels(job=job).observe(duration)

        self.logger.info(
            "job_recorded",
            job=job,
            status=status,
            duration=duration,
        )

    def record_health(self, critical_issues: int) -> None:
        health_critical_issues.set(critical_issues)

    def health_check(self) -> Dict[str, Any]:
        """
        Report host process health.

        Returns:
            Health status dictionary with system metrics
        """
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')

            uptime_seconds = time.time() - self.start_time

            is_healthy = (
                cpu_percent < 90 and
                memory.percent < 90 and
                disk.percent < 90
            )

            health_status = {
                "status": "healthy" if is_healthy else "degraded",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "app_name": self.app_name,
                "version": self.version,
                "uptime_seconds": uptime_seconds,
                "system": {
                    "cpu_percent": cpu_percent,
                    "memory_percent": memory.percent,
                    "disk_percent": disk.percent,
                },
            }

            self.logger.info(
                "health_check_completed",
                status=health_status["status"],
                **health_status["system"]
            )

            return health_status

        except Exception as e:
            self.logger.error(
                "health_check_failed",
                error=str(e),
                exc_info=True
            )
            return {
                "status": "unhealthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error": str(e)
            }

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in exposition format."""
        return generate_latest(REGISTRY)


# Shared instance used by pipeline components
monitor = MonitoringManager()


def setup_monitoring(
    app_name: str = "insider-risk-monitor",
    version: str = "1.0.0",
    log_level: str = "INFO",
    log_file: Optional[str] = None
) -> MonitoringManager:
    """
    Initialize logging and return the shared monitoring manager.

    Args:
        app_name: Application name
        version: Application version
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
    """
    setup_logging(log_level=log_level, log_file=log_file)
    monitor.app_name = app_name
    monitor.version = version
    return monitor
