#!/usr/bin/env python3
"""
Pydantic models for the insider risk pipeline
Users, activity log entries and the per-invocation result types
"""

import uuid
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def _ensure_aware(v: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC"""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class Role(str, Enum):
    """Fixed set of organizational roles"""
    ADMIN = "Admin"
    MANAGER = "Manager"
    ANALYST = "Analyst"
    INTERN = "Intern"


class RiskLevel(str, Enum):
    """Risk level categories for normalized scores"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RiskNote(BaseModel):
    """Entry in a user's risk history"""
    reason: str
    timestamp: datetime = Field(default_factory=utcnow)
    action: Literal["monitor", "block"]

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v):
        return _ensure_aware(v)


class User(BaseModel):
    """User record as held by the user store"""

    id: str = Field(..., min_length=1, max_length=100)
    name: str = ""
    email: str = ""
    role: Role = Role.INTERN
    is_blocked: bool = False
    blocked_at: Optional[datetime] = None
    risk_notes: List[RiskNote] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("blocked_at", "created_at")
    @classmethod
    def validate_timestamps(cls, v):
        """Store timestamps timezone-aware"""
        return _ensure_aware(v)

    class Config:
        validate_assignment = True


class AdditionalData(BaseModel):
    """Optional context recorded with an activity entry"""
    risk_score: float = Field(default=0.0, ge=0.0)
    details: Optional[str] = None
    work_hours: Optional[bool] = None
    download_count: Optional[int] = Field(default=None, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)

    class Config:
        frozen = True


class ActivityLogEntry(BaseModel):
    """Immutable record of a single user action"""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str = Field(..., min_length=1, max_length=100)
    role: Optional[str] = None
    action: str = Field(..., min_length=1, max_length=200)
    timestamp: datetime = Field(default_factory=utcnow)
    ip_address: Optional[str] = Field(None, max_length=64)
    additional_data: AdditionalData = Field(default_factory=AdditionalData)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v):
        """Store timestamps timezone-aware"""
        return _ensure_aware(v)

    @property
    def risk_score(self) -> float:
        return self.additional_data.risk_score

    class Config:
        frozen = True


class RiskAssessment(BaseModel):
    """Single-shot additive score from the deterministic scorer"""
    score: float = Field(default=0.0, ge=0.0)
    suspicious: bool = False
    reasons: List[str] = Field(default_factory=list)


class BehaviorEvaluation(BaseModel):
    """Decision produced by the behavior monitor"""
    should_block: bool = False
    should_notify: bool = False
    reason: str = ""
    action: Literal["monitor", "block"] = "monitor"


class AIAnalysisResult(BaseModel):
    """Normalized assessment of a user's activity window"""

    risk_score: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel = RiskLevel.LOW
    analysis: str = ""
    recommendations: List[str] = Field(default_factory=list)
    fallback_used: bool = False
    warnings: List[str] = Field(default_factory=list)
    analysis_method: Optional[str] = None
    ai_response: Optional[str] = None

    # Degradation flags
    quota_exceeded: bool = False
    api_key_error: bool = False
    rate_limited: bool = False
    ai_error: bool = False


class HealthStatus(BaseModel):
    """Aggregated result of an infrastructure health check"""
    is_healthy: bool = True
    issues: List[str] = Field(default_factory=list)
    critical_issues: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utcnow)

    def add_issue(self, issue: str, critical: bool = False) -> None:
        """Record an issue; critical issues also mark the check unhealthy"""
        self.issues.append(issue)
        if critical:
            self.is_healthy = False
            self.critical_issues += 1


class DownloadDecision(BaseModel):
    """Outcome of a guarded foreground download"""
    allowed: bool
    status: Literal["allowed", "blocked", "limit_exceeded"]
    message: str
    risk_score: float = 0.0
    download_count: int = 0
    limit: int = 0
    work_hours: bool = False
    reasons: List[str] = Field(default_factory=list)
    blocked_at: Optional[datetime] = None


class UserAnalysis(BaseModel):
    """Analyzer result for one user within a batch run"""
    user_id: str
    name: str = ""
    email: str = ""
    role: Role
    result: AIAnalysisResult
    action: Optional[Literal["block", "monitor"]] = None


class AnalysisFailure(BaseModel):
    """A user whose analysis or consequence application failed"""
    user_id: str
    stage: Literal["analysis", "consequences"]
    error: str


class BatchAnalysisResult(BaseModel):
    """Outcome of a weekly or monthly batch run"""
    window_days: int
    analysis_results: List[UserAnalysis] = Field(default_factory=list)
    flagged: List[UserAnalysis] = Field(default_factory=list)
    failures: List[AnalysisFailure] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)
    trends: Optional[Dict[str, Any]] = None

    @property
    def blocked_count(self) -> int:
        return sum(1 for item in self.flagged if item.action == "block")

    @property
    def monitored_count(self) -> int:
        return sum(1 for item in self.flagged if item.action == "monitor")


# Export all models
__all__ = [
    'utcnow',
    'Role',
    'RiskLevel',
    'RiskNote',
    'User',
    'AdditionalData',
    'ActivityLogEntry',
    'RiskAssessment',
    'BehaviorEvaluation',
    'AIAnalysisResult',
    'HealthStatus',
    'DownloadDecision',
    'UserAnalysis',
    'AnalysisFailure',
    'BatchAnalysisResult',
]
