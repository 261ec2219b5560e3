"""
Pytest fixtures and configuration for insider-risk-monitor tests
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import AppConfig
from models_validation import ActivityLogEntry, AdditionalData, Role, User
from insider_risk.alerts import AlertSink, AlertSubject
from insider_risk.stores import InMemoryActivityStore, InMemoryUserStore

# Wednesday, inside work hours
FIXED_NOW = datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc)

WELL_FORMED_RESPONSE = """RISK_SCORE: 0.85
ANALYSIS: User downloaded an unusual volume of files outside normal hours.
RECOMMENDATIONS:
- Review recent downloads
- Interview the user's manager
- Restrict bulk export permissions
"""


class FakeClock:
    """Settable clock"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingAlertSink(AlertSink):
    """Keeps every alert and summary for assertions"""

    def __init__(self):
        self.alerts: List[Dict[str, Any]] = []
        self.summaries: List[Dict[str, Any]] = []

    def send_admin_alert(self, subject: AlertSubject, headline: str, risk_score: float, details: str) -> bool:
        self.alerts.append({
            "subject": subject,
            "headline": headline,
            "risk_score": risk_score,
            "details": details,
        })
        return True

    def send_summary(self, summary: Dict[str, Any]) -> bool:
        self.summaries.append(summary)
        return True

    @property
    def headlines(self) -> List[str]:
        return [a["headline"] for a in self.alerts]


class FakeAssessmentClient:
    """Stands in for AssessmentClient; replies or raises in order"""

    def __init__(self, responses: Optional[List[Any]] = None, configured: bool = True):
        self.responses = list(responses or [WELL_FORMED_RESPONSE])
        self.configured = configured
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock():
    """Clock fixed at Wednesday 2024-05-15 10:00 UTC"""
    return FakeClock()


@pytest.fixture
def config():
    """Default configuration isolated from the environment's credentials"""
    return AppConfig(
        _env_file=None,
        ANTHROPIC_API_KEY=None,
        EMAIL_USER=None,
        EMAIL_PASS=None,
        SCHEDULER_TIMEZONE="UTC",
    )


@pytest.fixture
def activity_store():
    return InMemoryActivityStore()


@pytest.fixture
def users():
    return [
        User(id="admin1", name="Ada Admin", email="ada@company.com", role=Role.ADMIN),
        User(id="mgr1", name="Max Manager", email="max@company.com", role=Role.MANAGER),
        User(id="analyst1", name="Ana Analyst", email="ana@company.com", role=Role.ANALYST),
        User(id="intern1", name="Ivan Intern", email="ivan@company.com", role=Role.INTERN),
    ]


@pytest.fixture
def user_store(users):
    return InMemoryUserStore(users)


@pytest.fixture
def alert_sink():
    return RecordingAlertSink()


@pytest.fixture
def fake_client():
    return FakeAssessmentClient()


@pytest.fixture
def make_entry(activity_store):
    """Insert an activity entry relative to FIXED_NOW"""

    def _make(
        user_id: str = "analyst1",
        action: str = "Viewed Report",
        minutes_ago: float = 0,
        ip_address: Optional[str] = "10.0.0.1",
        risk_score: float = 0.0,
        work_hours: Optional[bool] = None,
        role: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            user_id=user_id,
            role=role,
            action=action,
            timestamp=timestamp or FIXED_NOW - timedelta(minutes=minutes_ago),
            ip_address=ip_address,
            additional_data=AdditionalData(risk_score=risk_score, work_hours=work_hours),
        )
        return activity_store.insert(entry)

    return _make


@pytest.fixture
def make_client():
    """Build a fake assessment client with scripted replies"""

    def _make(*responses, configured: bool = True) -> FakeAssessmentClient:
        return FakeAssessmentClient(list(responses) or None, configured=configured)

    return _make


@pytest.fixture
def well_formed_response():
    return WELL_FORMED_RESPONSE
