"""
Server-side user agent parsing.

Fills device type, browser and OS for visits whose client did not report
them. Pattern matching only; no external database.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UAClass(str, Enum):
    """User agent classification."""

    BOT = "bot"
    REAL = "real"
    UNKNOWN = "unknown"


BOT_PATTERNS: tuple[str, ...] = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "wget",
    "curl",
    "python-requests",
    "go-http-client",
    "java/",
    "libwww",
    "httpclient",
    "headlesschrome",
    "facebookexternalhit",
    "slurp",
    "baiduspider",
)

REAL_BROWSER_PATTERNS: tuple[str, ...] = (
    "mozilla/5.0",
    "chrome/",
    "firefox/",
    "safari/",
    "edge/",
    "opera/",
    "msie",
    "trident/",
)

# Order matters: several browsers embed the tokens of the ones below them.
BROWSER_PATTERNS: tuple[tuple[str, str], ...] = (
    ("yabrowser/", "Yandex"),
    ("edg/", "Edge"),
    ("edge/", "Edge"),
    ("opr/", "Opera"),
    ("opera", "Opera"),
    ("samsungbrowser/", "Samsung Internet"),
    ("firefox/", "Firefox"),
    ("fxios/", "Firefox"),
    ("crios/", "Chrome"),
    ("chrome/", "Chrome"),
    ("safari/", "Safari"),
    ("msie", "Internet Explorer"),
    ("trident/", "Internet Explorer"),
)

# iOS before macOS and Android before Linux: their UAs contain both tokens.
OS_PATTERNS: tuple[tuple[str, str], ...] = (
    ("windows", "Windows"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("ipod", "iOS"),
    ("android", "Android"),
    ("cros", "Chrome OS"),
    ("mac os x", "macOS"),
    ("macintosh", "macOS"),
    ("linux", "Linux"),
)


@dataclass(frozen=True)
class UserAgentInfo:
    ua_class: UAClass
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None


def classify_user_agent(user_agent: str | None) -> UAClass:
    """Classify a user agent string as bot, real browser, or unknown."""
    if not user_agent:
        return UAClass.UNKNOWN

    ua_lower = user_agent.lower()

    for pattern in BOT_PATTERNS:
        if pattern in ua_lower:
            return UAClass.BOT

    for pattern in REAL_BROWSER_PATTERNS:
        if pattern in ua_lower:
            return UAClass.REAL

    return UAClass.UNKNOWN


def _first_match(ua_lower: str, patterns: tuple[tuple[str, str], ...]) -> str | None:
    for token, name in patterns:
        if token in ua_lower:
            return name
    return None


def detect_device_type(user_agent: str | None) -> str | None:
    """Return "bot", "tablet", "mobile" or "desktop"; None for an empty UA."""
    if not user_agent:
        return None
    ua_lower = user_agent.lower()
    if classify_user_agent(user_agent) is UAClass.BOT:
        return "bot"
    if "ipad" in ua_lower or "tablet" in ua_lower:
        return "tablet"
    if "android" in ua_lower and "mobile" not in ua_lower:
        return "tablet"
    if "mobi" in ua_lower or "iphone" in ua_lower or "ipod" in ua_lower:
        return "mobile"
    return "desktop"


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    """Parse a raw user agent into the visit's client dimensions."""
    ua_class = classify_user_agent(user_agent)
    if not user_agent:
        return UserAgentInfo(ua_class=ua_class)

    ua_lower = user_agent.lower()
    return UserAgentInfo(
        ua_class=ua_class,
        device_type=detect_device_type(user_agent),
        browser=_first_match(ua_lower, BROWSER_PATTERNS),
        os=_first_match(ua_lower, OS_PATTERNS),
    )
