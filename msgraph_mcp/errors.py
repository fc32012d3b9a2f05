# errors.py
# - Closed error taxonomy shared by the Graph client, validators and tools
# - Every message is safe to show to the tool caller as-is

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    RATE_LIMIT = "RateLimitError"
    AUTHENTICATION = "AuthenticationError"
    GRAPH_API = "GraphAPIError"
    TOKEN_STORAGE = "TokenStorageError"


class GraphMCPError(Exception):
    """Base for all errors that may cross the tool boundary"""
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GraphMCPError):
    kind = ErrorKind.VALIDATION


class RateLimitError(GraphMCPError):
    """Local token bucket exhausted.

    retry_after_ms is the authoritative wait; the seconds in the message are for display.
    """
    kind = ErrorKind.RATE_LIMIT

    def __init__(self, message: str, retry_after_ms: int):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class AuthenticationError(GraphMCPError):
    kind = ErrorKind.AUTHENTICATION


class GraphAPIError(GraphMCPError):
    kind = ErrorKind.GRAPH_API

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TokenStorageError(GraphMCPError):
    kind = ErrorKind.TOKEN_STORAGE
