"""Pipeline error taxonomy and the quota-error classifier."""

import json

# Substrings (lower-cased) that mark a provider quota / rate-limit failure
QUOTA_MARKERS = ("429", "quota", "resource_exhausted", "rate limit", "too many requests")


class PipelineError(Exception):
    """Base class for pipeline errors."""


class CooldownActiveError(PipelineError):
    """A run was refused because the provider cool-down is still active."""

    def __init__(self, message, seconds_remaining):
        super().__init__(message)
        self.seconds_remaining = seconds_remaining


class QuotaExhaustedError(PipelineError):
    """Every candidate model and every fallback provider hit its quota."""


class RequestCancelledError(PipelineError):
    """A queued request was cancelled before it started executing."""


class ProviderError(PipelineError):
    """A fallback provider returned a non-success response."""


class FallbackExhaustedError(PipelineError):
    """No fallback provider is configured, or all of them failed."""

    def __init__(self, message, failures=None):
        super().__init__(message)
        self.failures = failures or []


def error_text(error):
    """Best-effort message text for an exception or arbitrary error value."""
    if error is None:
        return ""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return str(error)


def is_quota_error(error):
    """True when the error text looks like a quota or rate-limit failure."""
    if isinstance(error, QuotaExhaustedError):
        return True
    text = error_text(error).lower()
    if not text:
        return False
    return any(marker in text for marker in QUOTA_MARKERS)
