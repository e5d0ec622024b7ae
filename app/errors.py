import re
from typing import Optional


class ChatRelayError(Exception):
    """Base class for errors raised by the relay's own components."""


class ConfigError(ChatRelayError):
    """Startup configuration is incomplete; the process must not serve requests."""


class Unauthenticated(ChatRelayError):
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)
        self.message = message


class ValidationFailure(ChatRelayError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreFailure(ChatRelayError):
    """Any error from the record store. Never retried."""

    def __init__(self, message: str, *, operation: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.status = status


class CompletionFailure(ChatRelayError):
    """Upstream completion call failed; the message carries the upstream detail."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class InvalidCredential(CompletionFailure):
    pass


_CREDENTIAL_PATTERN = re.compile(r"API[_ ]KEY", re.IGNORECASE)


def completion_failure_from_text(text: str, *, status: Optional[int] = None) -> CompletionFailure:
    """Build the right CompletionFailure subtype for an upstream error text."""
    if _CREDENTIAL_PATTERN.search(text or ""):
        return InvalidCredential(text, status=status)
    return CompletionFailure(text, status=status)
