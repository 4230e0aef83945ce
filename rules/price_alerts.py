"""Threshold matching for price alerts, including cross-currency quotes."""

from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable, Optional

from core.errors import ConversionUnavailable
from core.models import Currency, PriceAlert, ThresholdType
from core.providers import Quote

LOGGER = logging.getLogger(__name__)

RateLookup = Callable[[str, str], Awaitable[Optional[float]]]


def crosses_threshold(price: float, threshold_type: ThresholdType | str, threshold: float) -> bool:
    """Inclusive comparison: a price equal to the threshold crosses it."""

    kind = ThresholdType(threshold_type)
    if kind is ThresholdType.BELOW:
        return price <= threshold
    return price >= threshold


async def convert_price(price: float, from_currency: str, to_currency: str, rate_lookup: RateLookup) -> float:
    """Express ``price`` in ``to_currency``.

    Raises :class:`ConversionUnavailable` when the lookup fails or returns
    something that is not a usable rate.
    """

    if from_currency == to_currency:
        return price
    try:
        rate = await rate_lookup(from_currency, to_currency)
    except ConversionUnavailable:
        raise
    except Exception as exc:
        raise ConversionUnavailable(from_currency, to_currency, str(exc) or type(exc).__name__) from exc
    if rate is None:
        raise ConversionUnavailable(from_currency, to_currency, "no rate")
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        raise ConversionUnavailable(from_currency, to_currency, f"invalid rate {rate!r}") from None
    if not math.isfinite(rate) or rate <= 0:
        raise ConversionUnavailable(from_currency, to_currency, f"invalid rate {rate!r}")
    return price * rate


async def evaluate(alert: PriceAlert, quote: Quote, rate_lookup: RateLookup) -> bool:
    """Decide whether ``quote`` triggers ``alert``.

    A quote that cannot be converted into the alert's currency never
    triggers; the alert is simply evaluated again on the next cycle.
    """

    if not math.isfinite(quote.price):
        LOGGER.warning("Ignoring non-finite quote %s for %s", quote.price, quote.collection_name)
        return False
    target = Currency(alert.currency).value
    try:
        price_to_compare = await convert_price(quote.price, quote.currency, target, rate_lookup)
    except ConversionUnavailable as exc:
        LOGGER.warning("Alert %s not evaluated: %s", alert.id, exc)
        return False
    return crosses_threshold(price_to_compare, alert.threshold_type, alert.threshold_price)


__all__ = ["RateLookup", "crosses_threshold", "convert_price", "evaluate"]
