"""Money and weight parsing utilities.

Free-text prices and weights arrive with either a comma or a period as the
decimal separator ("12,50", "12.50", "0,2"). Everything is parsed with
Decimal and converted to integer minor units (cents, grams) before it reaches
pricing or carrier code.
"""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

NUMBER_PATTERN = re.compile(r"^\d+(?:[.,]\d+)?$")


def _parse_decimal(value, label: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValueError(f'{label} invalide')

    if isinstance(value, int):
        decimal_value = Decimal(value)
    elif isinstance(value, Decimal):
        decimal_value = value
    else:
        cleaned = str(value).strip().replace(' ', '')
        if cleaned.startswith('-'):
            raise ValueError(f'{label} ne peut pas etre negatif')
        if not NUMBER_PATTERN.match(cleaned):
            raise ValueError(f'{label} invalide')
        try:
            decimal_value = Decimal(cleaned.replace(',', '.'))
        except (InvalidOperation, ValueError):
            raise ValueError(f'{label} invalide')

    if not decimal_value.is_finite():
        raise ValueError(f'{label} invalide')
    if decimal_value < 0:
        raise ValueError(f'{label} ne peut pas etre negatif')
    return decimal_value


def parse_money_to_cents(value) -> int:
    """
    Parse a major-unit amount ("19,99", "19.99", 19) into integer cents.

    Integers are taken as major units. Rounds half up to the cent.

    Raises:
        ValueError: if the value is empty, malformed, non-finite or negative.
    """
    amount = _parse_decimal(value, 'Montant')
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def parse_weight_to_grams(value) -> int:
    """Parse a weight in kilograms ("0,2", "1.1", 2) into integer grams."""
    weight = _parse_decimal(value, 'Poids')
    return int((weight * 1000).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def parse_cents(value) -> int:
    """Parse a value that is already expressed in cents (e.g. a query string)."""
    if isinstance(value, bool):
        raise ValueError('Montant invalide')
    if isinstance(value, int):
        cents = value
    else:
        cleaned = str(value if value is not None else '').strip()
        if not cleaned.isdigit():
            raise ValueError('Montant invalide')
        cents = int(cleaned)
    if cents < 0:
        raise ValueError('Montant ne peut pas etre negatif')
    return cents


def format_cents(cents: int) -> str:
    """Provider wire format for an amount: 1799 -> "17.99"."""
    cents = max(int(cents), 0)
    return f"{cents // 100}.{cents % 100:02d}"


def format_grams_as_kg(grams: int) -> str:
    """Carrier wire format for a weight: 1100 -> "1.100"."""
    grams = max(int(grams), 0)
    return f"{grams // 1000}.{grams % 1000:03d}"


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half up, for non-negative operands."""
    return (2 * numerator + denominator) // (2 * denominator)
