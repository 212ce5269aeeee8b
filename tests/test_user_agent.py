"""Tests for the table-driven user agent parser."""

import pytest

from analytics_engine.core.user_agent import ClientInfo, parse_user_agent

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.2210.91"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
SAFARI_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Safari/605.1.15"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
ANDROID_PHONE = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
ANDROID_TABLET = (
    "Mozilla/5.0 (Linux; Android 13; SM-X200) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.mark.parametrize("user_agent, expected", [
    (CHROME_WINDOWS, ClientInfo("desktop", "Chrome", "120.0.0.0", "Windows")),
    (EDGE_WINDOWS, ClientInfo("desktop", "Edge", "120.0.2210.91", "Windows")),
    (SAFARI_IPHONE, ClientInfo("mobile", "Safari", "17.1", "iOS")),
    (SAFARI_IPAD, ClientInfo("tablet", "Safari", "17.1", "iOS")),
    (SAFARI_MAC, ClientInfo("desktop", "Safari", "17.1", "macOS")),
    (FIREFOX_LINUX, ClientInfo("desktop", "Firefox", "121.0", "Linux")),
    (ANDROID_PHONE, ClientInfo("mobile", "Chrome", "120.0.0.0", "Android")),
    (ANDROID_TABLET, ClientInfo("tablet", "Chrome", "120.0.0.0", "Android")),
])
def test_known_browsers(user_agent, expected):
    assert parse_user_agent(user_agent) == expected


def test_edge_wins_over_chrome_token():
    assert parse_user_agent(EDGE_WINDOWS).browser == "Edge"


def test_ios_is_not_reported_as_macos():
    # iOS agents advertise "like Mac OS X"
    assert parse_user_agent(SAFARI_IPHONE).os == "iOS"


@pytest.mark.parametrize("user_agent", [None, "", 42, "curl/8.4.0"])
def test_unrecognised_input_falls_back_to_defaults(user_agent):
    info = parse_user_agent(user_agent)
    assert info.device_type == "desktop"
    assert info.browser == "unknown"
    assert info.browser_version == ""
    assert info.os == "unknown"
