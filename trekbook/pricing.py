from datetime import date
from typing import Optional

from pydantic import BaseModel

FESTIVAL_MONTHS = (8, 9, 10)  # Dashain & Tihar
FESTIVAL_DISCOUNT = 0.20
COMMISSION_RATE = 0.30


class Quote(BaseModel):
    attraction_price: float
    guide_fee: float
    total: float
    festival: bool
    high_altitude: bool = False


def _money(x: float) -> float:
    return round(float(x), 2)


def is_festival_season(d: date) -> bool:
    return d.month in FESTIVAL_MONTHS


def attraction_price(base_price: float, festival: bool) -> float:
    # 20% OFF en temporada de festival (no es recargo)
    factor = 1.0 - FESTIVAL_DISCOUNT if festival else 1.0
    return _money(max(0.0, base_price) * factor)


def guide_commission(amount: float) -> float:
    return _money(max(0.0, amount) * COMMISSION_RATE)


def booking_total(base_price: float, has_guide: bool, trek_date: date) -> float:
    """Price charged to the tourist.

    The guide commission is added on top of the (possibly discounted)
    attraction price, it is not deducted from it.
    """
    price = attraction_price(base_price, is_festival_season(trek_date))
    if has_guide:
        price += guide_commission(price)
    return _money(price)


def commission_part(total_price: float) -> float:
    """Guide fee contained in a total built by booking_total() with a guide."""
    return _money(max(0.0, total_price) * COMMISSION_RATE / (1.0 + COMMISSION_RATE))


def quote(
    base_price: float, has_guide: bool, trek_date: Optional[date], high_altitude: bool = False
) -> Quote:
    festival = bool(trek_date) and is_festival_season(trek_date)
    price = attraction_price(base_price, festival)
    fee = guide_commission(price) if has_guide else 0.0
    return Quote(
        attraction_price=price, guide_fee=fee, total=_money(price + fee),
        festival=festival, high_altitude=high_altitude,
    )
