"""Raw base-unit amount arithmetic.

Amounts travel as integer strings. They are compared as Python ints so that
18-decimal values never lose precision; floats are never involved.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Union

from .models import Fee

Number = Union[int, Decimal]

def parse_amount(value: str) -> Number:
    """Parse a raw amount; non-integer strings fall back to Decimal, garbage to 0."""
    text = (value or "").strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return 0
    return parsed if parsed.is_finite() else 0


def sum_fee_amounts(fees: Iterable[Fee]) -> int:
    """Sum fee amounts, skipping any fee that is not an integer string."""
    total = 0
    for fee in fees:
        try:
            total += int(fee.amount)
        except (TypeError, ValueError):
            continue
    return total
