# backend/tutorbook/services/pricing_service.py
"""
Session pricing.

Prices are hourly rate x duration, rounded half-up to the cent. The
platform fee is a percentage of the price taken from settings.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..core.config import settings
from ..core.enums import SessionMedium
from ..models.tutor import Tutor
from ..utils.time_grid import UNIT_MINUTES

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    return int((quantize_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def session_price(hourly_rate: Decimal, duration_mins: int) -> Decimal:
    return quantize_money(Decimal(hourly_rate) * Decimal(duration_mins) / Decimal(60))


def unit_price(hourly_rate: Decimal) -> Decimal:
    """Price of one 30-minute unit at ``hourly_rate``."""
    return session_price(hourly_rate, UNIT_MINUTES)


def platform_fee(price: Decimal, percentage: Optional[Decimal] = None) -> Decimal:
    pct = settings.platform_fee_percentage if percentage is None else Decimal(percentage)
    return quantize_money(Decimal(price) * pct / Decimal(100))


@dataclass(frozen=True)
class PriceQuote:
    hourly_rate: Decimal
    price: Decimal
    platform_fee: Decimal

    @property
    def price_cents(self) -> int:
        return to_cents(self.price)


def quote(tutor: Tutor, medium: SessionMedium, duration_mins: int) -> PriceQuote:
    rate = tutor.hourly_rate_for(medium)
    price = session_price(rate, duration_mins)
    return PriceQuote(hourly_rate=rate, price=price, platform_fee=platform_fee(price))
