from typing import Optional
from pydantic import BaseModel, ConfigDict

from axiomloop.domain.models.conversation import CANCELLED_MESSAGE


TIMEOUT_HINT = "The request took too long. Try a narrower question or retry."
TIMEOUT_MARKERS = ("timeout", "timed out")


class RequestCancelledError(Exception):
    """The in-flight request was stopped by the user, a newer request or its deadline"""

    def __init__(self, reason: str = CANCELLED_MESSAGE):
        super().__init__(reason)
        self.reason = reason


class RetriesExhaustedError(Exception):
    """Raised once every retry has failed"""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        message = f"Retries exhausted after {attempts} attempts"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class TransportError(Exception):
    """Network failure or non-2xx response from an agent endpoint"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ErrorBanner(BaseModel):
    """User-visible rendering of a transport error"""
    model_config = ConfigDict(frozen=True)

    message: str
    hint: Optional[str] = None


def describe_transport_error(error: BaseException) -> ErrorBanner:
    if isinstance(error, RetriesExhaustedError) and error.last_error is not None:
        message = str(error.last_error)
    else:
        message = str(error)
    message = message or "unknown error"

    lowered = message.lower()
    hint = TIMEOUT_HINT if any(marker in lowered for marker in TIMEOUT_MARKERS) else None
    return ErrorBanner(message=message, hint=hint)
