import pytest

from services.analytics import detect_device, normalize_country, normalize_platform, normalize_referrer


@pytest.mark.parametrize(
    "user_agent,expected",
    [
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0", "desktop"),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) Safari/605.1.15", "desktop"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) Mobile/15E148", "mobile"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Chrome/120.0 Mobile Safari/537.36", "mobile"),
        ("Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) Safari/604.1", "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; SM-X200) Chrome/120.0 Safari/537.36", "tablet"),
        ("curl/8.4.0", None),
        ("", None),
        (None, None),
    ],
)
def test_detect_device(user_agent, expected):
    assert detect_device(user_agent) == expected


def test_unknown_platforms_fall_back_to_other():
    assert normalize_platform("Twitter") == "twitter"
    assert normalize_platform("myspace") == "other"
    assert normalize_platform(None) == "other"


def test_country_and_referrer_normalization():
    assert normalize_country("de") == "DE"
    assert normalize_country("XX") is None
    assert normalize_country("Germany") is None
    assert normalize_referrer("https://news.example.com/story?id=1") == "news.example.com"
    assert normalize_referrer("") is None
