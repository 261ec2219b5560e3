#!/usr/bin/env python3
"""
Configuration management for insider risk monitor
Handles environment variables, risk thresholds and role policy settings
"""

from typing import Optional, Dict, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

PLACEHOLDER_API_KEYS = {"", "your-anthropic-api-key-here"}


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "insider-risk-monitor"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Deterministic risk scorer
    OFF_HOURS_START: int = 6
    OFF_HOURS_END: int = 22
    RECENT_ACTIVITY_LIMIT: int = 10
    KNOWN_IP_MINIMUM: int = 3
    DOWNLOAD_TIER_MODERATE: int = 3
    DOWNLOAD_TIER_HIGH: int = 5
    DOWNLOAD_TIER_EXCESSIVE: int = 10
    DOWNLOAD_CRITICAL_VERY_HIGH: int = 10
    DOWNLOAD_CRITICAL_EXCESSIVE: int = 20
    SUSPICION_THRESHOLD: float = 12.0
    RISK_SCORE_CEILING: float = 20.0

    # Behavior monitor
    WORK_HOURS_START: int = 9
    WORK_HOURS_END: int = 17
    WORK_DAYS: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    ROLE_DOWNLOAD_LIMITS: Dict[str, int] = Field(
        default_factory=lambda: {"Manager": 10, "Analyst": 8, "Intern": 5}
    )
    DEFAULT_DOWNLOAD_LIMIT: int = 5
    ROLE_BLOCKING_THRESHOLDS: Dict[str, float] = Field(
        default_factory=lambda: {"Manager": 0.8, "Analyst": 0.8, "Intern": 1.5}
    )
    DEFAULT_BLOCKING_THRESHOLD: float = 1.0
    WEEKLY_VIOLATION_LIMIT: int = 3
    VIOLATION_RISK_CUTOFF: float = 0.7
    ALWAYS_NOTIFY_CUTOFF: float = 0.7
    DOWNLOAD_LIMIT_RISK_SCORE: float = 0.8

    # AI-assisted analyzer
    AI_HIGH_RISK_THRESHOLD: float = 0.8
    AI_MEDIUM_RISK_THRESHOLD: float = 0.6
    AI_LOW_RISK_THRESHOLD: float = 0.4
    ANTHROPIC_API_KEY: Optional[str] = None
    ASSESSMENT_MODEL: str = "claude-3-5-haiku-latest"
    ASSESSMENT_MAX_TOKENS: int = 1000
    ASSESSMENT_TEMPERATURE: float = 0.3
    ASSESSMENT_TIMEOUT_SECONDS: float = 30.0

    # Scheduler
    SCHEDULER_TIMEZONE: str = "UTC"
    WEEKLY_WINDOW_DAYS: int = 7
    MONTHLY_WINDOW_DAYS: int = 30
    BLOCKED_USERS_WARNING: int = 10

    # Alerting
    EMAIL_USER: Optional[str] = None
    EMAIL_PASS: Optional[str] = None
    ADMIN_EMAIL: Optional[str] = None

    # Monitoring
    ENABLE_METRICS: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @field_validator("WORK_HOURS_START", "WORK_HOURS_END", "OFF_HOURS_START", "OFF_HOURS_END")
    @classmethod
    def validate_hour(cls, v):
        """Hours are wall-clock hours of the day"""
        if not 0 <= v <= 23:
            raise ValueError("Hour must be between 0 and 23")
        return v

    @field_validator("WORK_DAYS")
    @classmethod
    def validate_work_days(cls, v):
        """Work days use Monday=0 .. Sunday=6"""
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Work days must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))

    @property
    def ai_credential_configured(self) -> bool:
        """True when a usable assessment API key is present"""
        return self.ANTHROPIC_API_KEY is not None and self.ANTHROPIC_API_KEY not in PLACEHOLDER_API_KEYS

    @property
    def email_configured(self) -> bool:
        """True when both email credentials are present"""
        return bool(self.EMAIL_USER) and bool(self.EMAIL_PASS)

    def risk_thresholds(self) -> Dict[str, float]:
        """Current high/medium/low analysis thresholds"""
        return {
            "highRisk": self.AI_HIGH_RISK_THRESHOLD,
            "mediumRisk": self.AI_MEDIUM_RISK_THRESHOLD,
            "lowRisk": self.AI_LOW_RISK_THRESHOLD,
        }


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get global configuration instance"""
    return config


def update_config(**kwargs):
    """Update configuration in place so running components see the new values"""
    for key, value in kwargs.items():
        if not hasattr(config, key):
            raise AttributeError(f"Unknown configuration key: {key}")
        setattr(config, key, value)


if __name__ == "__main__":
    # Print configuration for debugging
    print("Insider Risk Monitor Configuration")
    print("=" * 60)
    print(f"Environment: {config.ENVIRONMENT}")
    print(f"Debug Mode: {config.DEBUG}")
    print(f"Work Hours: {config.WORK_HOURS_START}-{config.WORK_HOURS_END}")
    print(f"AI Credential Configured: {config.ai_credential_configured}")
    print(f"Log Level: {config.LOG_LEVEL}")
    print(f"Metrics Enabled: {config.ENABLE_METRICS}")
    print("=" * 60)
