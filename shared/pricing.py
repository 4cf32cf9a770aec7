"""
pricing.py - Order Pricing Calculator

PURPOSE:
    Pure, side-effect-free pricing rules shared by the cart service (price
    preview during checkout) and the order service (authoritative pricing
    when an order is stored).

RULES:
    - GST: subtotal * rate / 100, rounded half-up to whole rupees (default 18%)
    - GST breakdown: CGST is half the GST rounded half-up, SGST is the rest
    - Shipping: free at or above ₹499, otherwise ₹49
        + ₹10 per started 0.5 kg above 2 kg
        + ₹20 when the delivery distance exceeds 500 km
    - Final total: subtotal + gst + shipping - discount, never below zero

USAGE:
    summary = price_summary(1200, discount=100)
    summary.total          # 1200 + 216 + 0 - 100 = 1316
    format_inr(summary.total)  # "₹1,316"
"""

import math
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Union

Amount = Union[int, float, Decimal]

DEFAULT_GST_RATE = 18
FREE_SHIPPING_THRESHOLD = 499
BASE_SHIPPING_COST = 49

# Surcharges applied below the free-shipping threshold
HEAVY_ITEM_WEIGHT_KG = 2
WEIGHT_STEP_KG = 0.5
WEIGHT_STEP_COST = 10
LONG_DISTANCE_KM = 500
LONG_DISTANCE_COST = 20


def _round_half_up(value: Amount) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def gst_amount(subtotal: Amount, rate: Amount = DEFAULT_GST_RATE) -> int:
    """GST on `subtotal` at `rate` percent, rounded half-up to an integer."""
    return _round_half_up(Decimal(str(subtotal)) * Decimal(str(rate)) / 100)


@dataclass(frozen=True)
class GstBreakdown:
    total: int
    cgst: int
    sgst: int
    rate: Amount
    base_amount: Amount
    total_with_gst: Amount


def gst_breakdown(amount: Amount, rate: Amount = DEFAULT_GST_RATE) -> GstBreakdown:
    """Split GST into its central (CGST) and state (SGST) halves."""
    total = gst_amount(amount, rate)
    cgst = _round_half_up(Decimal(total) / 2)
    return GstBreakdown(
        total=total,
        cgst=cgst,
        sgst=total - cgst,
        rate=rate,
        base_amount=amount,
        total_with_gst=amount + total,
    )


def shipping_cost(
    subtotal: Amount,
    free_threshold: Amount = FREE_SHIPPING_THRESHOLD,
    base_cost: Amount = BASE_SHIPPING_COST,
    weight: float = 0,
    distance: float = 0,
) -> Amount:
    """Shipping charge for an order of `subtotal`.

    `weight` is in kilograms and `distance` in kilometres; both only matter
    when the order does not qualify for free shipping.
    """
    if subtotal >= free_threshold:
        return 0

    cost = base_cost
    if weight > HEAVY_ITEM_WEIGHT_KG:
        cost += math.ceil((weight - HEAVY_ITEM_WEIGHT_KG) / WEIGHT_STEP_KG) * WEIGHT_STEP_COST
    if distance > LONG_DISTANCE_KM:
        cost += LONG_DISTANCE_COST
    return cost


def final_total(subtotal: Amount, gst: Amount, shipping: Amount, discount: Amount = 0) -> Amount:
    """Amount payable. A discount larger than the order brings it to zero, not below."""
    return max(subtotal + gst + shipping - discount, 0)


@dataclass(frozen=True)
class PriceSummary:
    subtotal: Amount
    gst: int
    shipping: Amount
    discount: Amount
    total: Amount

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def price_summary(
    subtotal: Amount,
    discount: Amount = 0,
    gst_rate: Amount = DEFAULT_GST_RATE,
    free_threshold: Amount = FREE_SHIPPING_THRESHOLD,
    base_shipping: Amount = BASE_SHIPPING_COST,
    weight: float = 0,
    distance: float = 0,
) -> PriceSummary:
    """Compute every pricing line for a cart or order subtotal."""
    gst = gst_amount(subtotal, gst_rate)
    shipping = shipping_cost(subtotal, free_threshold, base_shipping, weight=weight, distance=distance)
    return PriceSummary(
        subtotal=subtotal,
        gst=gst,
        shipping=shipping,
        discount=discount,
        total=final_total(subtotal, gst, shipping, discount),
    )


def format_inr(amount: Amount) -> str:
    """Format an amount as Indian rupees with lakh/crore digit grouping.

    >>> format_inr(1234567)
    '₹12,34,567'
    >>> format_inr(499.5)
    '₹499.5'
    """
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, _, fraction = f"{abs(value):.2f}".partition(".")
    fraction = fraction.rstrip("0")

    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])

    formatted = f"{sign}₹{whole}"
    if fraction:
        formatted += f".{fraction}"
    return formatted
