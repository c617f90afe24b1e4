"""Viewer context captured from request headers at session start."""

import re

from fastapi import Request

_TABLET_RE = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.IGNORECASE)
_MOBILE_RE = re.compile(
    r"mobile|android|iphone|ipod|blackberry|iemobile|opera mini", re.IGNORECASE
)

# First match wins; Edge and Opera also advertise Chrome.
_BROWSERS: tuple[tuple[str, str], ...] = (
    ("edg/", "Edge"),
    ("opr/", "Opera"),
    ("opera/", "Opera"),
    ("firefox/", "Firefox"),
    ("chrome/", "Chrome"),
    ("safari/", "Safari"),
)

# Android reports Linux and iOS reports "like Mac OS X".
_SYSTEMS: tuple[tuple[str, str], ...] = (
    ("android", "Android"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("windows", "Windows"),
    ("mac", "macOS"),
    ("linux", "Linux"),
)


def client_ip(request: Request) -> str | None:
    """Extract client IP from the request, honouring X-Forwarded-For."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


def detect_device_type(user_agent: str) -> str:
    if _TABLET_RE.search(user_agent):
        return "tablet"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def detect_browser(user_agent: str) -> str:
    ua = user_agent.lower()
    for marker, name in _BROWSERS:
        if marker in ua:
            return name
    return "Unknown"


def detect_os(user_agent: str) -> str:
    ua = user_agent.lower()
    for marker, name in _SYSTEMS:
        if marker in ua:
            return name
    return "Unknown"


def session_context(request: Request) -> dict[str, str | None]:
    """Column values for the session's request-context fields."""
    user_agent = request.headers.get("User-Agent", "")
    referrer = request.headers.get("Referer") or request.headers.get("Referrer")
    return {
        "ip_address": client_ip(request),
        "user_agent": user_agent or None,
        "device_type": detect_device_type(user_agent) if user_agent else None,
        "browser": detect_browser(user_agent) if user_agent else None,
        "os": detect_os(user_agent) if user_agent else None,
        "referrer": referrer or None,
    }
