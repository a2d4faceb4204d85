"""Fixed-point conversions between on-chain encodings and display values — no I/O.

Every function here is total over its documented domain: missing or malformed
input degrades to ``"N/A"`` (display helpers) or ``None`` / ``0`` (numeric
helpers) rather than raising.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Context, Decimal, DecimalException
from typing import Union

RAY = 10**27
WAD = 10**18
BPS_DENOMINATOR = 10_000
MAX_UINT256 = 2**256 - 1

ORACLE_PRICE_DECIMALS = 8
HEALTH_FACTOR_DECIMALS = 18

DEFAULT_TOKEN_DISPLAY_DECIMALS = 4
USD_DISPLAY_DECIMALS = 2
PERCENTAGE_DISPLAY_DECIMALS = 2

NOT_AVAILABLE = "N/A"

# uint256 values need 78 significant digits.
_CTX = Context(prec=100)

RawAmount = Union[int, str, None]


def _to_int(value: RawAmount) -> int | None:
    """Coerce an on-chain integer (int, decimal or 0x-hex string) to ``int``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    except (AttributeError, ValueError):
        return None


def to_actual_balance(scaled_amount: RawAmount, index: RawAmount) -> int:
    """Convert a scaled balance to actual units: ``scaled * index // RAY``.

    Truncates toward zero. Inputs outside the non-negative domain yield 0.
    """
    scaled = _to_int(scaled_amount)
    idx = _to_int(index)
    if scaled is None or idx is None or scaled <= 0 or idx <= 0:
        return 0
    return scaled * idx // RAY


def ray_rate_to_bps(rate_ray: RawAmount) -> int | None:
    rate = _to_int(rate_ray)
    if rate is None or rate < 0:
        return None
    return rate * BPS_DENOMINATOR // RAY


def annual_rate_to_percent(rate_ray: RawAmount) -> str:
    """Format a RAY nominal annual rate as a percentage, e.g. ``"3.25%"``."""
    bps = ray_rate_to_bps(rate_ray)
    if bps is None:
        return NOT_AVAILABLE
    return bps_to_percent(bps)


def bps_to_percent(bps: RawAmount) -> str:
    """Format basis points as a percentage, e.g. ``7500`` → ``"75.00%"``."""
    value = _to_int(bps)
    if value is None or value < 0:
        return NOT_AVAILABLE
    pct = _CTX.divide(Decimal(value), Decimal(100))
    return f"{pct:.{PERCENTAGE_DISPLAY_DECIMALS}f}%"


def format_token_amount(
    raw_amount: RawAmount,
    token_decimals: int,
    display_decimals: int = DEFAULT_TOKEN_DISPLAY_DECIMALS,
) -> str:
    """Render a fixed-point integer as a decimal string.

    The value is truncated to ``display_decimals``. A positive value that
    would render as all zeros is shown as ``"< 0.0001"`` (for 4 decimals).
    """
    raw = _to_int(raw_amount)
    if raw is None or token_decimals < 0 or display_decimals < 0:
        return NOT_AVAILABLE

    value = Decimal(raw).scaleb(-token_decimals, _CTX)
    smallest = Decimal(1).scaleb(-display_decimals)
    if 0 < value < smallest:
        return f"< {smallest:.{display_decimals}f}"

    quantum = Decimal(1).scaleb(-display_decimals)
    truncated = value.quantize(quantum, rounding=ROUND_DOWN, context=_CTX)
    return f"{truncated:.{display_decimals}f}"


def format_usd(raw_usd: RawAmount, decimals: int = ORACLE_PRICE_DECIMALS) -> str:
    """Render an oracle-denominated USD amount with 2 decimals."""
    return format_token_amount(raw_usd, decimals, USD_DISPLAY_DECIMALS)


def parse_units(text: str | None, decimals: int) -> int | None:
    """Parse user-entered decimal text into a raw fixed-point integer.

    Returns ``None`` for empty or malformed text. Digits beyond ``decimals``
    are truncated. Negative values are returned as-is so callers can reject
    them with a specific reason.
    """
    if text is None:
        return None
    text = text.strip()
    if not text:
        return None
    try:
        value = Decimal(text)
        if not value.is_finite():
            return None
        scaled = value.scaleb(decimals, _CTX).to_integral_value(
            rounding=ROUND_DOWN, context=_CTX
        )
    except DecimalException:
        return None
    return int(scaled)


def ratio_from_wad(raw: RawAmount) -> Decimal | None:
    """1e18-scaled ratio to ``Decimal``."""
    value = _to_int(raw)
    if value is None:
        return None
    return Decimal(value).scaleb(-HEALTH_FACTOR_DECIMALS, _CTX)


def short_hash(value: str, head: int = 6, tail: int = 4) -> str:
    """Shorten a hash or address for display: ``0x1234...abcd``."""
    if len(value) <= head + tail:
        return value
    return f"{value[:head]}...{value[-tail:]}"
