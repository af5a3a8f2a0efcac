# money.py
# Helpers de valores monetários (Decimal) e conversão de centavos BRL

from __future__ import annotations
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal, None]

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    """Converte para Decimal; None/NaN/infinito/lixo viram zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return ZERO
    if not d.is_finite():
        return ZERO
    return d


def is_finite_number(value: Number) -> bool:
    if value is None:
        return False
    try:
        return Decimal(str(value)).is_finite()
    except (InvalidOperation, ValueError):
        return False


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_brl_to_cents(text: str) -> int:
    """'R$ 1.234,56' -> 123456. Mantém só os dígitos."""
    digits = re.sub(r"\D", "", text or "")
    return int(digits) if digits else 0


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


def fmt_money(v: Number) -> str:
    return f"R$ {round_money(v):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
