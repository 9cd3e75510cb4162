from datetime import timedelta
from decimal import Decimal

from src.application.price_trends import summarize

from conftest import NOW


def test_empty_window():
    assert summarize([]) is None


def test_trend_statistics(ledger, add_ingredient):
    add_ingredient("onion")
    for day, price in enumerate(["100", "110", "99"]):
        ledger.record_price("onion", price, recorded_at=NOW + timedelta(days=day))

    trend = summarize(ledger.get_history("onion"), Decimal("10"))

    assert trend.samples == 3
    assert (trend.first_price, trend.last_price) == (Decimal("100"), Decimal("99"))
    assert (trend.min_price, trend.max_price) == (Decimal("99"), Decimal("110"))
    assert trend.average_price == Decimal("103.00")
    assert trend.net_change_percentage == Decimal("-1.00")
    # change percentages are +10 and -10
    assert trend.volatility == Decimal("10.00")
    assert trend.large_moves == 2
    assert trend.to_dict()["last_recorded_at"] == NOW + timedelta(days=2)


def test_single_sample_has_no_volatility(ledger, add_ingredient):
    add_ingredient("onion")
    ledger.record_price("onion", "100", recorded_at=NOW)
    trend = summarize(ledger.get_history("onion"))
    assert trend.volatility == Decimal("0.00")
    assert trend.large_moves == 0
