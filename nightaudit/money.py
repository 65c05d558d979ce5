# nightaudit/money.py
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def q2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value or 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def money(value) -> float:
    return float(q2(to_decimal(value)))
