"""
Arithmétique monétaire en centimes entiers (pas de float chaîné).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() évite d'hériter des artefacts binaires du float (ex: 0.1 + 0.2)
    return Decimal(str(value))


def to_cents(value: Any) -> int:
    """Convertit un montant décimal (float|int|str|Decimal) en centimes arrondis."""
    return int((_to_decimal(value) * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> float:
    """Expose un montant en centimes sous forme décimale (2 chiffres)."""
    return float((Decimal(cents) / _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP))


def percentage_of(cents: int, percentage: Any) -> int:
    """Retourne round_half_up(cents × percentage / 100) en centimes."""
    raw = Decimal(cents) * _to_decimal(percentage) / _HUNDRED
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def divide(cents: int, divisor: int) -> int:
    """Division entière arrondie au centime le plus proche."""
    return int((Decimal(cents) / Decimal(divisor)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def within(a: Any, b: Any, epsilon: float) -> bool:
    return abs(_to_decimal(a) - _to_decimal(b)) <= _to_decimal(epsilon)
