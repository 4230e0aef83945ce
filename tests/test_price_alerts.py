import asyncio
import math
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.errors import ConversionUnavailable
from core.models import Currency, PriceAlert, ThresholdType
from core.providers import Quote
from rules.price_alerts import convert_price, crosses_threshold, evaluate


class _Rates:
    def __init__(self, rates: Optional[dict] = None, error: Optional[Exception] = None) -> None:
        self.rates = rates or {}
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    async def __call__(self, from_currency: str, to_currency: str) -> Optional[float]:
        self.calls.append((from_currency, to_currency))
        if self.error is not None:
            raise self.error
        return self.rates.get((from_currency, to_currency))


def _alert(threshold: float, kind: ThresholdType, currency: Currency = Currency.ETH) -> PriceAlert:
    return PriceAlert(
        id=1,
        user_id="user-1",
        collection_name="Cool Cats",
        threshold_price=threshold,
        threshold_type=kind,
        currency=currency,
    )


def _quote(price: float, currency: str = "ETH") -> Quote:
    return Quote(collection_name="Cool Cats", price=price, currency=currency, source="test")


def test_below_threshold_is_inclusive() -> None:
    assert crosses_threshold(0.2, ThresholdType.BELOW, 0.2) is True
    assert crosses_threshold(0.19, ThresholdType.BELOW, 0.2) is True
    assert crosses_threshold(0.2000001, ThresholdType.BELOW, 0.2) is False


def test_above_threshold_is_inclusive() -> None:
    assert crosses_threshold(5.01, "above", 5) is True
    assert crosses_threshold(5, "above", 5) is True
    assert crosses_threshold(4.99, "above", 5) is False


def test_same_currency_skips_the_rate_lookup() -> None:
    rates = _Rates()
    triggered = asyncio.run(evaluate(_alert(0.2, ThresholdType.BELOW), _quote(0.2), rates))
    assert triggered is True
    assert rates.calls == []


def test_usd_quote_is_converted_before_comparing() -> None:
    rates = _Rates({("USD", "ETH"): 1 / 2500})
    alert = _alert(1.0, ThresholdType.BELOW)

    assert asyncio.run(evaluate(alert, _quote(2600, "USD"), rates)) is False
    assert asyncio.run(evaluate(alert, _quote(2400, "USD"), rates)) is True
    assert rates.calls == [("USD", "ETH"), ("USD", "ETH")]


@pytest.mark.parametrize("rate, expected", [(2600.0, False), (2400.0, True)])
def test_eth_quote_against_usd_threshold(rate: float, expected: bool) -> None:
    alert = _alert(2500, ThresholdType.BELOW, Currency.USD)
    rates = _Rates({("ETH", "USD"): rate})
    assert asyncio.run(evaluate(alert, _quote(1.0, "ETH"), rates)) is expected


@pytest.mark.parametrize(
    "rates",
    [
        _Rates({}),
        _Rates({("USD", "ETH"): float("nan")}),
        _Rates({("USD", "ETH"): 0.0}),
        _Rates({("USD", "ETH"): -1.0}),
        _Rates(error=RuntimeError("rate service down")),
        _Rates(error=asyncio.TimeoutError()),
    ],
)
def test_unusable_conversion_never_triggers(rates: _Rates) -> None:
    alert = _alert(1_000_000, ThresholdType.BELOW)
    assert asyncio.run(evaluate(alert, _quote(1.0, "USD"), rates)) is False


def test_convert_price_raises_conversion_unavailable() -> None:
    with pytest.raises(ConversionUnavailable) as excinfo:
        asyncio.run(convert_price(10.0, "AVAX", "ETH", _Rates({})))
    assert excinfo.value.from_currency == "AVAX"
    assert excinfo.value.to_currency == "ETH"


def test_convert_price_multiplies_by_rate() -> None:
    converted = asyncio.run(convert_price(2.0, "ETH", "USD", _Rates({("ETH", "USD"): 2500.0})))
    assert converted == 5000.0


def test_non_finite_quote_never_triggers() -> None:
    rates = _Rates()
    assert asyncio.run(evaluate(_alert(1.0, ThresholdType.ABOVE), _quote(math.inf), rates)) is False
    assert asyncio.run(evaluate(_alert(1.0, ThresholdType.BELOW), _quote(math.nan), rates)) is False
