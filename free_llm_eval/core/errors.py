from __future__ import annotations

import re
from enum import Enum

PRIVACY_SETTINGS_URL = "https://openrouter.ai/settings/privacy"

_RATE_LIMIT_RE = re.compile(r"rate[\s_-]?limit", re.IGNORECASE)
_DATA_POLICY_RE = re.compile(
    r"data policy|free model publication|model training|training opt[\s-]?in",
    re.IGNORECASE,
)


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    DATA_POLICY_REQUIRED = "data_policy_required"
    UPSTREAM_ERROR = "upstream_error"
    STREAM_PARSE_ERROR = "stream_parse_error"
    TRANSPORT_ERROR = "transport_error"


class EvaluationError(Exception):
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UpstreamError(EvaluationError):
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status_code: int | None, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(UpstreamError):
    kind = ErrorKind.RATE_LIMITED


class DataPolicyError(UpstreamError):
    kind = ErrorKind.DATA_POLICY_REQUIRED


class StreamParseError(EvaluationError):
    kind = ErrorKind.STREAM_PARSE_ERROR


class TransportError(EvaluationError):
    kind = ErrorKind.TRANSPORT_ERROR


def classify_upstream_error(status_code: int, message: str) -> UpstreamError:
    """Map a failed upstream response to the matching error class."""
    if status_code == 429:
        return RateLimitError(status_code, f"Rate limited ({status_code}): {message}")
    if _DATA_POLICY_RE.search(message):
        return DataPolicyError(
            status_code,
            "Data policy error: this model requires enabling \"Free model publication\" "
            f"in your OpenRouter privacy settings. Visit {PRIVACY_SETTINGS_URL} "
            f"(upstream said: {message})",
        )
    if _RATE_LIMIT_RE.search(message):
        return RateLimitError(status_code, f"Rate limited ({status_code}): {message}")
    return UpstreamError(status_code, f"OpenRouter API error ({status_code}): {message}")
