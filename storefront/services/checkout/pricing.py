"""
Checkout pricing: shipping quotes, order totals and gateway amounts.

All store amounts are integers in major currency units (naira). The gateway
works in minor units (kobo), converted with half-up rounding.
"""

import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.checkout import ShippingQuote
from storefront.schemas.orders import OrderItem, OrderTotals
from storefront.services.orders.enums import ShippingTier

logger = get_logger(__name__)

MINOR_UNITS_PER_MAJOR = 100

# tier -> (minimum charge, charge per kg, label)
DOMESTIC_RATES: dict[ShippingTier, tuple[int, int, str]] = {
    ShippingTier.STANDARD: (2500, 500, "Standard Delivery (5-7 days)"),
    ShippingTier.EXPRESS: (5000, 800, "Express Delivery (2-3 days)"),
    ShippingTier.OVERNIGHT: (8000, 1200, "Next Day Delivery"),
}

# Base charge per destination country, standard tier
INTERNATIONAL_BASE_RATES: dict[str, int] = {
    "ghana": 15000,
    "benin": 15000,
    "togo": 15000,
    "cameroon": 18000,
    "kenya": 20000,
    "south africa": 22000,
    "united kingdom": 30000,
    "united states": 35000,
    "canada": 35000,
}
INTERNATIONAL_DEFAULT_RATE = 40000

INTERNATIONAL_TIERS: dict[ShippingTier, tuple[Decimal, str]] = {
    ShippingTier.STANDARD: (Decimal("1.0"), "International Standard (10-15 days)"),
    ShippingTier.EXPRESS: (Decimal("1.5"), "International Express (5-7 days)"),
    ShippingTier.OVERNIGHT: (Decimal("2.0"), "International Priority (3-5 days)"),
}


class PricingError(ValueError):
    """Raised when an amount cannot be priced."""

    pass


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quote_shipping(
    country: str,
    state: str,
    tier: ShippingTier,
    total_weight_kg: Union[float, Decimal] = 0,
    home_country: Optional[str] = None,
) -> ShippingQuote:
    """
    Price delivery to a destination for a tier.

    Domestic orders pay the larger of the tier minimum and the per-kg charge;
    international orders pay a fixed per-country base scaled by the tier.

    Args:
        country: Destination country name
        state: Destination state or region
        tier: Delivery speed
        total_weight_kg: Combined cart weight
        home_country: Domestic country, defaults to the configured one

    Returns:
        Shipping cost and label
    """
    home = (home_country or get_settings().home_country).strip().lower()
    destination = country.strip().lower()
    weight = Decimal(str(total_weight_kg or 0))
    if weight < 0:
        raise PricingError("Total weight cannot be negative")

    if destination == home:
        minimum, per_kg, label = DOMESTIC_RATES[tier]
        cost = max(minimum, _round_half_up(weight * per_kg))
    else:
        base = INTERNATIONAL_BASE_RATES.get(destination, INTERNATIONAL_DEFAULT_RATE)
        multiplier, label = INTERNATIONAL_TIERS[tier]
        cost = _round_half_up(Decimal(base) * multiplier)

    logger.debug(
        "Shipping quoted",
        country=country,
        state=state,
        tier=tier.value,
        weight_kg=float(weight),
        cost=cost,
    )
    return ShippingQuote(tier=tier, cost=cost, label=label)


def compute_totals(
    items: Iterable[OrderItem],
    shipping: int,
    fees: int = 0,
    currency: Optional[str] = None,
) -> OrderTotals:
    """
    Compute order totals with integer arithmetic.

    ``grand_total`` is exactly ``subtotal + shipping + fees``.
    """
    subtotal = sum(item.line_total for item in items)
    return OrderTotals(
        subtotal=subtotal,
        shipping=shipping,
        fees=fees,
        grand_total=subtotal + shipping + fees,
        currency=(currency or get_settings().store_currency).upper(),
    )


def to_minor_units(amount: Union[int, Decimal, str]) -> int:
    """
    Convert a major-unit amount to integer minor units (kobo), half-up.

    Raises:
        PricingError: If the amount is not a number
    """
    try:
        major = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise PricingError(f"Invalid amount: {amount!r}") from e
    return _round_half_up(major * MINOR_UNITS_PER_MAJOR)


def from_minor_units(amount: Optional[int]) -> Optional[Decimal]:
    """Convert gateway minor units back to major units."""
    if amount is None:
        return None
    return Decimal(amount) / MINOR_UNITS_PER_MAJOR


def generate_payment_reference(
    prefix: Optional[str] = None, now_ms: Optional[int] = None
) -> str:
    """Merchant payment reference ``<prefix>_<epoch-millis>``."""
    prefix = prefix or get_settings().payment_reference_prefix
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{prefix}_{now_ms}"
