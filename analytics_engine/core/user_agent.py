"""
Best-effort user agent parsing.

The rule tables are evaluated top to bottom and the first match wins, so more
specific tokens must come before the tokens they contain (Edge and Chrome both
advertise ``Chrome/``; iOS advertises ``like Mac OS X``; Android advertises
``Linux``). Anything that matches nothing falls back to the defaults below.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_DEVICE_TYPE = "desktop"
UNKNOWN = "unknown"
BROWSER_VERSION_MAX_LENGTH = 20


@dataclass(frozen=True)
class ClientInfo:
    device_type: str = DEFAULT_DEVICE_TYPE
    browser: str = UNKNOWN
    browser_version: str = ""
    os: str = UNKNOWN


# (device type, pattern)
DEVICE_RULES = (
    ("tablet", re.compile(r"iPad|Tablet|PlayBook|Kindle|Silk/")),
    ("tablet", re.compile(r"Android(?!.*Mobile)")),
    ("mobile", re.compile(r"Mobile|iPhone|iPod|Android|Windows Phone")),
)

# (browser name, pattern capturing the version in group 1)
BROWSER_RULES = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([0-9.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([0-9.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([0-9.]+)")),
    ("Safari", re.compile(r"Version/([0-9.]+).*Safari/")),
    ("Safari", re.compile(r"Safari/([0-9.]+)")),
)

# (operating system, pattern)
OS_RULES = (
    ("Windows", re.compile(r"Windows")),
    ("iOS", re.compile(r"iPhone|iPad|iPod|\biOS\b")),
    ("Android", re.compile(r"Android")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("Linux", re.compile(r"Linux|X11")),
)


def _detect_device(user_agent: str) -> str:
    for device_type, pattern in DEVICE_RULES:
        if pattern.search(user_agent):
            return device_type
    return DEFAULT_DEVICE_TYPE


def _detect_browser(user_agent: str) -> tuple:
    for name, pattern in BROWSER_RULES:
        match = pattern.search(user_agent)
        if match:
            return name, match.group(1)[:BROWSER_VERSION_MAX_LENGTH]
    return UNKNOWN, ""


def _detect_os(user_agent: str) -> str:
    for name, pattern in OS_RULES:
        if pattern.search(user_agent):
            return name
    return UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> ClientInfo:
    """Split a user agent string into device type, browser, version and OS. Never raises."""
    if not user_agent or not isinstance(user_agent, str):
        return ClientInfo()

    browser, version = _detect_browser(user_agent)
    return ClientInfo(
        device_type=_detect_device(user_agent),
        browser=browser,
        browser_version=version,
        os=_detect_os(user_agent),
    )
