"""
Rental pricing.

Pure functions: no session, no Flask context. Amounts are Decimal
quantized to cents, the same way sale totals are handled.
"""
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from campstore.exceptions import InvalidQuantityError, ValidationError

CENTS = Decimal('0.01')
DAYS_PER_WEEK = 7
SECONDS_PER_DAY = 86400


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def price_rental_line(
    daily_rate,
    weekly_rate,
    days: int,
    quantity: int = 1
) -> Decimal:
    """
    Price one rental line.

    With a weekly rate and a period of at least a week, every started week
    is billed at the weekly rate. Otherwise each day is billed at the
    daily rate.

    Examples:
        price_rental_line(1000, 6000, 7, 1)  -> 6000.00
        price_rental_line(1000, 6000, 6, 1)  -> 6000.00  (6 x 1000)
        price_rental_line(1000, 6000, 10, 1) -> 12000.00 (2 weeks)
    """
    if days is None or int(days) < 1:
        raise InvalidQuantityError('Rental days must be at least 1', field='rental_days')
    if quantity is None or int(quantity) < 1:
        raise InvalidQuantityError('Quantity must be at least 1')

    days = int(days)
    quantity = int(quantity)

    if weekly_rate is not None and days >= DAYS_PER_WEEK:
        weeks = math.ceil(days / DAYS_PER_WEEK)
        amount = weeks * _to_decimal(weekly_rate) * quantity
    else:
        amount = days * _to_decimal(daily_rate) * quantity

    return amount.quantize(CENTS)


def compute_rental_days(
    start: Union[date, datetime],
    end: Union[date, datetime]
) -> int:
    """
    Number of billable days between two dates.

    Partial days round up. The same day counts as one day.
    An end before the start is rejected.
    """
    if start is None or end is None:
        raise ValidationError('Rental start and end dates are required', field='rental_period')

    if isinstance(start, datetime) != isinstance(end, datetime):
        # Compare on calendar days when the inputs are mixed
        start = start.date() if isinstance(start, datetime) else start
        end = end.date() if isinstance(end, datetime) else end

    delta = end - start
    seconds = delta.total_seconds()
    if seconds < 0:
        raise ValidationError('Rental end date must not be before the start date', field='end_date')

    days = math.ceil(seconds / SECONDS_PER_DAY)
    return max(days, 1)


def estimate_line(daily_rate, weekly_rate: Optional[Decimal], days: int, quantity: int) -> dict:
    """Pricing breakdown used by the cart for display."""
    amount = price_rental_line(daily_rate, weekly_rate, days, quantity)
    weekly_applied = weekly_rate is not None and days >= DAYS_PER_WEEK
    return {
        'days': days,
        'quantity': quantity,
        'weekly_rate_applied': weekly_applied,
        'weeks': math.ceil(days / DAYS_PER_WEEK) if weekly_applied else 0,
        'amount': amount
    }
