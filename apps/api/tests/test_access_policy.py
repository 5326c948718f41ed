from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from services.access_policy import AccessState, evaluate_access, is_expired


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _link(**overrides):
    values = {"is_hidden": False, "is_active": True, "expires_at": None}
    values.update(overrides)
    return SimpleNamespace(**values)


def test_link_without_expiry_is_accessible():
    assert evaluate_access(_link(), NOW) == AccessState.ACCESSIBLE
    assert is_expired(_link(), NOW) is False


def test_link_expires_exactly_at_deadline():
    link = _link(expires_at=NOW)
    assert is_expired(link, NOW) is True
    assert is_expired(link, NOW - timedelta(microseconds=1)) is False
    assert evaluate_access(link, NOW) == AccessState.EXPIRED


def test_one_hour_link_is_expired_two_hours_later():
    link = _link(expires_at=NOW + timedelta(hours=1))
    assert evaluate_access(link, NOW) == AccessState.ACCESSIBLE
    assert evaluate_access(link, NOW + timedelta(hours=2)) == AccessState.EXPIRED


def test_hidden_and_inactive_take_precedence_over_expiry():
    past = NOW - timedelta(days=1)
    assert evaluate_access(_link(is_hidden=True, is_active=False, expires_at=past), NOW) == AccessState.HIDDEN
    assert evaluate_access(_link(is_active=False, expires_at=past), NOW) == AccessState.INACTIVE


def test_naive_expiry_is_treated_as_utc():
    naive = (NOW + timedelta(minutes=5)).replace(tzinfo=None)
    link = _link(expires_at=naive)
    assert evaluate_access(link, NOW) == AccessState.ACCESSIBLE
    assert evaluate_access(link, NOW + timedelta(minutes=5)) == AccessState.EXPIRED
