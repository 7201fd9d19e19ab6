"""
Fixed-point helpers shared by every model that carries a currency amount.

Amounts travel over the wire as JSON numbers but are held internally as
Decimal quantized to cents, so repeated recomputation never drifts.
"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Convert a float/int/str/Decimal to a cent-quantized Decimal."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        raw = value
    else:
        # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
        try:
            raw = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    return raw.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Convert to Decimal without quantizing (used for invoice quantities)."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def _as_date(value: Any) -> Any:
    # Stored dates may arrive as full ISO timestamps ("2024-01-15T00:00:00.000Z")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


Money = Annotated[
    Decimal,
    BeforeValidator(to_money),
    PlainSerializer(float, return_type=float, when_used="json"),
]

Quantity = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(float, return_type=float, when_used="json"),
]

IsoDate = Annotated[date, BeforeValidator(_as_date)]


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """quantity * unit_price, quantized to cents."""
    return to_money(to_decimal(quantity) * to_money(unit_price))
