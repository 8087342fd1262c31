from __future__ import annotations

import socket
from typing import Optional, Set

import httpx

OFFLINE_MESSAGE = "You're offline. Check your connection and try again."

# (any-of groups, message): a rule matches when every group has one substring
# present in the lowercased error text. First match wins.
AUTH_ERROR_RULES = [
    ((("invalid login", "invalid credentials"),), "Email or password is incorrect."),
    ((("email rate limit", "too many"),), "Too many attempts. Try again in a minute."),
    ((("user already registered", "already exists"),), "That email is already registered."),
    ((("password",), ("weak",)), "Password is too weak. Try a longer one with numbers and symbols."),
    ((("email not confirmed",),), "Please confirm your email, then sign in."),
]

_OFFLINE_TYPES = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.NetworkError,
    ConnectionError,
    socket.gaierror,
    TimeoutError,
)


class InvoiceDeskError(Exception):
    """Base class for every error raised by invoicedesk."""


class ConfigurationError(InvoiceDeskError):
    pass


class NotAuthenticatedError(InvoiceDeskError):
    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class RecordNotFound(InvoiceDeskError, LookupError):
    pass


class BackendError(InvoiceDeskError):
    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PaymentServiceError(InvoiceDeskError):
    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ---------- Classification ----------

def is_offline_error(exc: Optional[BaseException], _seen: Optional[Set[int]] = None) -> bool:
    """True when `exc`, or any error it wraps, means the device cannot reach the network."""
    if exc is None:
        return False
    seen = _seen if _seen is not None else set()
    if id(exc) in seen:
        return False
    seen.add(id(exc))

    if isinstance(exc, _OFFLINE_TYPES):
        return True
    return is_offline_error(exc.__cause__, seen) or is_offline_error(exc.__context__, seen)


def _message_of(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


def friendly_message(exc: BaseException) -> str:
    if is_offline_error(exc):
        return OFFLINE_MESSAGE
    return _message_of(exc)


def map_auth_error(context: str, exc: BaseException) -> str:
    if is_offline_error(exc):
        return OFFLINE_MESSAGE
    text = _message_of(exc).lower()
    for groups, message in AUTH_ERROR_RULES:
        if all(any(n in text for n in group) for group in groups):
            return message
    return f"{context}: {_message_of(exc)}"
