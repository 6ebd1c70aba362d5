from datetime import date, timedelta

from pharmacy.models.drug import is_expired, is_low_stock, is_near_expiry

TODAY = date(2026, 3, 15)


def test_expired_from_expiry_day_onwards():
    assert is_expired(TODAY, today=TODAY)
    assert is_expired(TODAY - timedelta(days=1), today=TODAY)
    assert not is_expired(TODAY + timedelta(days=1), today=TODAY)


def test_near_expiry_window_is_thirty_days():
    assert is_near_expiry(TODAY + timedelta(days=1), today=TODAY)
    assert is_near_expiry(TODAY + timedelta(days=30), today=TODAY)
    assert not is_near_expiry(TODAY + timedelta(days=31), today=TODAY)


def test_expired_batch_is_not_near_expiry():
    assert not is_near_expiry(TODAY, today=TODAY)
    assert not is_near_expiry(TODAY - timedelta(days=5), today=TODAY)


def test_low_stock_includes_threshold():
    assert is_low_stock(10, 10)
    assert is_low_stock(0, 10)
    assert not is_low_stock(11, 10)
    assert is_low_stock(0, 0)
