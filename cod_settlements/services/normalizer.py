"""Normalizer utility functions shared by the settlement services.

Destination text arrives from shops and carriers in every shape:
"Asunción", " ASUNCION ", "asuncion\t".  Money arrives as floats, strings
or Decimals.  These helpers give one canonical form for each.
"""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

CENT = Decimal("0.01")

_WHITESPACE = re.compile(r"\s+")


def normalize_location_text(text: Optional[str]) -> str:
    """Case-fold, strip accents and collapse whitespace.

    Args:
        text: A city, zone name or zone code as typed by a human.

    Returns:
        Comparable text, e.g. ``"  San  Lorenzo "`` -> ``"san lorenzo"``
        and ``"Asunción"`` -> ``"asuncion"``.  ``None`` becomes ``""``.
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", stripped).strip().casefold()


def to_money(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Convert a numeric value to a Decimal rounded half-up to cents.

    Floats are converted through ``str`` so ``0.1`` stays ``0.10``.

    Raises:
        ValueError: If the value is not numeric.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """Return ``percent``% of ``amount``, rounded to cents."""
    return to_money(Decimal(amount) * Decimal(percent) / Decimal(100))
