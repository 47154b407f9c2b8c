"""Turn raw exceptions into messages fit for an inline banner or snackbar."""

import re
from typing import Optional

import httpx

from feedesk.core.exceptions import UpstreamUnavailable

OFFLINE = "You appear to be offline. Check your connection and try again."
SERVER_DOWN = "The server is not responding right now. Please try again shortly."
TIMEOUT = "The request took too long. Please try again."
UNAUTHORIZED = "Your session has expired. Please sign in again."
FORBIDDEN = "You don't have permission to do that."
NOT_FOUND = "We couldn't find what you were looking for."
TOO_MANY_REQUESTS = "Too many requests. Please wait a moment and try again."
SERVER_ERROR = "Something went wrong on our side. Please try again."
FALLBACK = "Something went wrong. Please try again."

_PREFIX_RE = re.compile(r"^(?:[A-Za-z_]*(?:Exception|Error)):\s*")

_OFFLINE_MARKERS = (
    "socketexception",
    "failed host lookup",
    "connection refused",
    "no address associated",
    "network is unreachable",
    "name or service not known",
)


def raw_message(error) -> str:
    """Plain message with leading 'SomethingException:' prefixes stripped."""
    msg = getattr(error, "message", None)
    if not isinstance(msg, str):
        msg = str(error)
    return _PREFIX_RE.sub("", msg.strip(), count=1).strip()


def _classify(raw: str, error) -> str:
    lower = raw.lower()

    if isinstance(error, httpx.ConnectError) or any(m in lower for m in _OFFLINE_MARKERS):
        return OFFLINE
    if isinstance(error, httpx.TimeoutException) or "timeout" in lower or "timed out" in lower:
        return TIMEOUT
    if "connection closed" in lower or "connection reset" in lower:
        return SERVER_DOWN
    if isinstance(error, (httpx.TransportError, UpstreamUnavailable)):
        return SERVER_DOWN

    status_code = getattr(error, "status_code", None)
    if status_code == 401 or "not authenticated" in lower:
        return UNAUTHORIZED
    if status_code == 403 or "forbidden" in lower:
        return FORBIDDEN
    if status_code == 404 or "not found" in lower:
        return NOT_FOUND
    if status_code == 429 or "too many requests" in lower:
        return TOO_MANY_REQUESTS
    if (
        (status_code is not None and status_code >= 500)
        or "internal server" in lower
        or "bad gateway" in lower
        or "service unavailable" in lower
    ):
        return SERVER_ERROR

    if "Traceback" in raw or 'File "' in raw:
        return FALLBACK
    if raw and len(raw) < 100 and "\n" not in raw:
        return raw
    return FALLBACK


def sanitize_error(error, fallback: Optional[str] = None, debug: bool = False) -> str:
    """Return a clean, user-visible message for any error.

    A short, single-line server message is passed through verbatim. Known
    transport and HTTP failure patterns map to fixed friendly strings. With
    ``debug`` the raw detail is appended, truncated to 120 characters.
    """
    raw = raw_message(error)
    friendly = fallback or _classify(raw, error)
    if debug:
        trimmed = raw if len(raw) <= 120 else raw[:120] + "…"
        return f"{friendly}\n[{trimmed}]"
    return friendly
