import re
from typing import Any, Optional


DEFAULT_USER_ERROR_MESSAGE = "Something went wrong. Please try again."

# Messages matching any of these look like transport/infra noise and are never
# forwarded to the model or the end user.
_TECHNICAL_ERROR_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"aborterror",
        r"timeout",
        r"timed out",
        r"\b\d{3,}\s*ms\b",
        r"failed to fetch",
        r"fetch failed",
        r"network error",
        r"network request failed",
        r"connection (?:error|refused|reset|aborted)",
        r"max retries exceeded",
        r"socket hang up",
        r"http error",
        r"status code",
        r"internal server error",
        r"bad gateway",
        r"service unavailable",
        r"gateway timeout",
        r"traceback",
        r"\bECONNRESET\b",
        r"\bECONNREFUSED\b",
        r"\bETIMEDOUT\b",
        r"\bENOTFOUND\b",
        r"\bEAI_AGAIN\b",
    )
]


class ConciergeError(Exception):
    """Base class for errors raised by the concierge package."""


class ModelBackendError(ConciergeError):
    """A single model backend failed to produce a usable response."""


class ModelUnavailableError(ConciergeError):
    """Every backend in the model chain failed; the turn cannot be answered."""


class GatewayError(ConciergeError):
    """An external collaborator behind the HTTP gateway returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_technical_error_message(value: Any) -> bool:
    if not isinstance(value, str):
        return True
    message = value.strip()
    if not message:
        return True
    return any(pattern.search(message) for pattern in _TECHNICAL_ERROR_PATTERNS)


def resolve_safe_error_message(message: Any, fallback: str = DEFAULT_USER_ERROR_MESSAGE) -> str:
    """
    Return `message` when it is safe to surface, otherwise `fallback`.
    """
    safe_fallback = fallback.strip() if isinstance(fallback, str) and fallback.strip() else DEFAULT_USER_ERROR_MESSAGE
    if not isinstance(message, str) or not message.strip():
        return safe_fallback
    normalized = message.strip()
    return safe_fallback if is_technical_error_message(normalized) else normalized


def resolve_safe_error_from_exception(error: BaseException, fallback: str = DEFAULT_USER_ERROR_MESSAGE) -> str:
    return resolve_safe_error_message(str(error), fallback)
