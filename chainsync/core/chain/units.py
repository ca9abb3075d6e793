"""Conversion between decimal display amounts and integer base units."""

from decimal import Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from ...constants import DEFAULT_TOKEN_DECIMALS, find_asset_by_address, get_asset
from ...errors import ValidationError


def parse_amount(amount: Union[str, int, Decimal], field_name: str = "amount") -> Decimal:
    """Parse a user-entered amount. Only finite, positive values pass."""

    if isinstance(amount, float):
        # Floats cannot carry exact token amounts
        amount = repr(amount)
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}", field_name=field_name)
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}", field_name=field_name)
    if value <= 0:
        raise ValidationError("Amount must be greater than zero", field_name=field_name)
    return value


def to_base_units(amount: Union[str, int, Decimal], decimals: int) -> int:
    """
    Scale a decimal amount to integer base units.

    ``to_base_units("12.5", 6) == 12500000``. Amounts with more fractional
    digits than ``decimals`` are rejected rather than truncated.
    """
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        whole = scaled.to_integral_value()
    if scaled != whole:
        raise ValidationError(
            f"Amount {amount} has more than {decimals} decimal places",
            field_name="amount",
        )
    return int(whole)


def from_base_units(value: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(int(value)).scaleb(-decimals)


def format_units(value: int, decimals: int) -> str:
    """Render base units as a plain decimal string without exponent or trailing zeros."""
    amount = from_base_units(value, decimals)
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def resolve_decimals(
    token_address: Optional[str] = None,
    symbol: Optional[str] = None,
    decimals: Optional[int] = None,
) -> int:
    """Explicit decimals win, then the asset table by symbol, then by address."""
    if decimals is not None:
        if decimals < 0 or decimals > 77:
            raise ValidationError(f"Invalid token decimals: {decimals}", field_name="decimals")
        return decimals

    asset = get_asset(symbol)
    if asset:
        return asset["decimals"]

    asset = find_asset_by_address(token_address)
    if asset:
        return asset["decimals"]

    return DEFAULT_TOKEN_DECIMALS
