"""
External assessment client.

Thin wrapper around the Anthropic Messages API that sends the analysis
prompt and returns the raw text reply. SDK exceptions are translated into
the four categories the analyzer distinguishes: quota exceeded, invalid
credential, rate limited, and everything else.
"""

import logging
from typing import Optional

import anthropic

from config import PLACEHOLDER_API_KEYS, AppConfig, get_config

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a cybersecurity expert specializing in insider threat detection. "
    "Analyze user behavior patterns and provide risk assessment with specific recommendations."
)

# Substrings in a 400 response body that indicate an exhausted account
QUOTA_MARKERS = ("credit", "quota", "billing")

OVERLOADED_STATUS = 529


class AssessmentServiceError(Exception):
    """The external assessment call failed."""

    reason = "error"


class QuotaExceededError(AssessmentServiceError):
    """Account quota or request allowance exhausted."""

    reason = "quota_exceeded"


class InvalidCredentialError(AssessmentServiceError):
    """The configured API key was rejected."""

    reason = "invalid_credential"


class RateLimitedError(AssessmentServiceError):
    """Transient throttling distinct from quota exhaustion."""

    reason = "rate_limited"


def translate_error(error: Exception) -> AssessmentServiceError:
    """Map an anthropic SDK exception onto the assessment error taxonomy."""
    message = str(error)

    if isinstance(error, anthropic.RateLimitError):
        return QuotaExceededError(message)
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return InvalidCredentialError(message)
    if isinstance(error, anthropic.BadRequestError) and any(
        marker in message.lower() for marker in QUOTA_MARKERS
    ):
        return QuotaExceededError(message)
    if isinstance(error, anthropic.APIStatusError) and error.status_code == OVERLOADED_STATUS:
        return RateLimitedError(message)
    return AssessmentServiceError(message)


class AssessmentClient:
    """
    Sends analysis prompts to the external model.

    Retries are disabled in the SDK so that every failure reaches the
    analyzer's degradation policy exactly once.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[AppConfig] = None,
    ):
        self.config = config or get_config()
        self.api_key = api_key if api_key is not None else self.config.ANTHROPIC_API_KEY
        self._client: Optional[anthropic.Anthropic] = None
        if self.configured:
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.config.ASSESSMENT_TIMEOUT_SECONDS,
            )

    @property
    def configured(self) -> bool:
        """True if a usable API key is available."""
        return self.api_key is not None and self.api_key not in PLACEHOLDER_API_KEYS

    def complete(self, prompt: str) -> str:
        """
        Request an assessment for a prompt.

        Returns:
            The text of the model's reply

        Raises:
            AssessmentServiceError: Any failure, categorized by subclass
        """
        if self._client is None:
            raise InvalidCredentialError("Assessment client has no API key configured")

        try:
            message = self._client.messages.create(
                model=self.config.ASSESSMENT_MODEL,
                max_tokens=self.config.ASSESSMENT_MAX_TOKENS,
                temperature=self.config.ASSESSMENT_TEMPERATURE,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            translated = translate_error(e)
            logger.debug("Assessment request failed (%s): %s", translated.reason, e)
            raise translated from e

        return "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
