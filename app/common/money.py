"""
Decimal helpers for monetary values.

All settlement arithmetic goes through ``Decimal``; floats are converted via
their string form so ``10.005`` stays ``10.005`` instead of
``10.00499999...``.
"""
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_DOWN, ROUND_HALF_UP
from typing import Literal, NamedTuple, Optional, Union

Number = Union[Decimal, int, float, str]
TruncateMode = Literal["round", "floor"]

ZERO = Decimal("0")
CENT = Decimal("0.01")


class TaxSplit(NamedTuple):
    net_amount: Decimal
    tax_amount: Decimal


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """Convert ``value`` to a finite Decimal, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    if not number.is_finite():
        return None
    return number


def truncate_to_decimals(value: Optional[Number], decimals: int = 2, mode: TruncateMode = "round") -> str:
    """
    Cut ``value`` down to ``decimals`` places and render it with exactly that
    many places.

    ``round`` resolves ties toward positive infinity (2.345 -> 2.35,
    -2.345 -> -2.34); ``floor`` always goes down, which is what user-entered
    amounts use so nobody is credited more than they typed.

    Returns an empty string when ``value`` is not numeric. Callers have to
    check for that before doing arithmetic with the result.
    """
    number = to_decimal(value)
    if number is None:
        return ""
    exponent = Decimal(1).scaleb(-decimals)
    if mode == "floor":
        rounding = ROUND_FLOOR
    elif mode == "round":
        rounding = ROUND_HALF_UP if number >= 0 else ROUND_HALF_DOWN
    else:
        raise ValueError(f"Unknown truncate mode: {mode}")
    result = number.quantize(exponent, rounding=rounding)
    if result == 0:
        result = abs(result)  # no "-0.00"
    return f"{result:.{decimals}f}"


def truncate_amount(value: Optional[Number], decimals: int = 2, mode: TruncateMode = "round") -> Decimal:
    """Same as ``truncate_to_decimals`` but returns a Decimal; raises ValueError on non-numeric input."""
    text = truncate_to_decimals(value, decimals, mode)
    if text == "":
        raise ValueError(f"Not a numeric amount: {value!r}")
    return Decimal(text)


def localized_format(value: Optional[Number], decimals: int = 2) -> str:
    """Truncate and render with German grouping: 1234.5 -> '1.234,50'."""
    text = truncate_to_decimals(value, decimals)
    if text == "":
        return ""
    rendered = f"{Decimal(text):,.{decimals}f}"
    return rendered.translate(str.maketrans({",": ".", ".": ","}))


def format_euro(value: Optional[Number], decimals: int = 2) -> str:
    """German formatted amount with the euro suffix used in documents and mails."""
    return localized_format(value, decimals) + " €"


def inclusive_tax_split(gross_amount: Number, tax_rate_percent: Number) -> TaxSplit:
    """
    Extract the tax already contained in ``gross_amount``.

    The net part is derived from the truncated tax so that
    ``net_amount + tax_amount == truncate(gross_amount)``.
    """
    gross = to_decimal(gross_amount)
    rate = to_decimal(tax_rate_percent)
    if gross is None or rate is None:
        raise ValueError("Gross amount and tax rate must be numeric")
    raw_tax = gross - gross / (1 + rate / 100)
    tax_amount = truncate_amount(raw_tax)
    net_amount = truncate_amount(gross - tax_amount)
    return TaxSplit(net_amount=net_amount, tax_amount=tax_amount)


def percentage_fee(amount: Number, percent: Optional[Number], fixed: Optional[Number]) -> Decimal:
    """``amount * percent / 100 + fixed`` truncated to cents."""
    base = to_decimal(amount)
    rate = to_decimal(percent)
    flat = to_decimal(fixed)
    if base is None or rate is None or flat is None:
        raise ValueError("Amount, fee percentage and fixed fee must be numeric")
    return truncate_amount(base * rate / 100 + flat)
