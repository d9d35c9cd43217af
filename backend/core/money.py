"""
Monetary precision helpers.

All stored amounts are integers in minor units (paisa for NPR). Decimals are
quantized with ROUND_HALF_EVEN before conversion, and converted back only for
presentation.
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Annotated, Union

from pydantic import BeforeValidator

from .config import settings

Amount = Union[Decimal, str, int, float]

# Currency minor unit exponents (how many decimal places)
CURRENCY_EXPONENT = {
    "NPR": 2,  # Nepalese Rupee (paisa)
    "INR": 2,  # Indian Rupee (paise)
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "JPY": 0,
    "KWD": 3,
}


def currency_exponent(currency: str = None) -> int:
    """
    Get the number of decimal places for a currency.

    >>> currency_exponent("NPR")
    2
    >>> currency_exponent("JPY")
    0
    """
    currency = (currency or settings.currency).upper()
    return CURRENCY_EXPONENT.get(currency, 2)


def quantize(amount: Amount, currency: str = None) -> Decimal:
    """
    Round to currency decimals using banker's rounding.

    >>> quantize("10.125", "NPR")
    Decimal('10.12')
    """
    if isinstance(amount, float):
        # Convert float to string first to avoid binary artefacts
        amount = str(amount)
    try:
        amount_decimal = Decimal(amount)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid monetary amount: {amount!r}")
    if not amount_decimal.is_finite():
        raise ValueError(f"Invalid monetary amount: {amount!r}")
    step = Decimal(10) ** -currency_exponent(currency)
    return amount_decimal.quantize(step, rounding=ROUND_HALF_EVEN)


def to_minor(amount: Amount, currency: str = None) -> int:
    """
    Convert to minor units after quantization.

    >>> to_minor("360")
    36000
    >>> to_minor("10.125")
    1012
    """
    quantized = quantize(amount, currency)
    exponent = currency_exponent(currency)
    return int((quantized * (10 ** exponent)).to_integral_value())


def from_minor(minor: int, currency: str = None) -> Decimal:
    """
    Convert from minor units to a Decimal for display.

    >>> from_minor(36000)
    Decimal('360.00')
    """
    exponent = currency_exponent(currency)
    return (Decimal(minor) / (10 ** exponent)).quantize(
        Decimal(10) ** -exponent
    )


def format_money(minor: int, currency: str = None) -> str:
    """
    >>> format_money(480000, "NPR")
    'NPR 4,800.00'
    """
    currency = (currency or settings.currency).upper()
    exponent = currency_exponent(currency)
    return f"{currency} {from_minor(minor, currency):,.{exponent}f}"


def _minor_to_major(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return from_minor(value)
    return value


# Response-model field type for amounts read from minor-unit columns
MinorUnits = Annotated[Decimal, BeforeValidator(_minor_to_major)]
