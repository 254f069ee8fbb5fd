# amounts.py
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

from .errors import ValidationError


def parse_amount(raw: Union[str, int], field: str = "amount") -> int:
    """
    Parse a base-unit token amount.

    Accepts an int or a base-10 integer string ("10000000000000000000").
    Floats, signs other than a leading '+', decimal points and exponents
    are rejected so that nothing ever passes through binary floating point.
    """
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        s = raw.strip()
        if s.startswith("+"):
            s = s[1:]
        if not s.isdigit():
            raise ValidationError(f"{field} must be a non-negative integer string, got {raw!r}")
        value = int(s)
    else:
        raise ValidationError(f"{field} must be an integer, got {type(raw).__name__}")
    if value < 0:
        raise ValidationError(f"{field} must be non-negative")
    return value


def to_token_units(amount: int, decimals: int = 18) -> Decimal:
    # exact: enough precision for any uint256
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(amount) / (Decimal(10) ** decimals)


def format_amount(amount: Union[str, int], decimals: int = 18, places: int = 2) -> str:
    """Display string in whole token units, rounded down to `places` fraction digits."""
    units = to_token_units(int(amount), decimals)
    q = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        ctx.prec = 100
        shown = units.quantize(q, rounding=ROUND_DOWN)
    text = f"{shown:,f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_gas_price(wei: int) -> str:
    gwei = to_token_units(int(wei), 9)
    return f"{gwei.quantize(Decimal('0.01'), rounding=ROUND_DOWN)} Gwei"
