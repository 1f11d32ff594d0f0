"""Amount, lock id and duration formatting helpers."""

import re
from typing import Union

_AMOUNT_RE = re.compile(r"^(\d*)(?:\.(\d*))?$")


def format_units(value: int, decimals: int) -> str:
    """Render an integer token amount as a decimal string.

    Trailing zeros of the fractional part are dropped, ``1500000`` with six
    decimals renders as ``"1.5"`` and ``1000000`` as ``"1"``.
    """
    negative = value < 0
    digits = str(abs(value)).rjust(decimals + 1, "0") if decimals > 0 else str(abs(value))
    if decimals > 0:
        whole, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    else:
        whole, fraction = digits, ""
    rendered = f"{whole}.{fraction}" if fraction else whole
    return f"-{rendered}" if negative else rendered


def parse_units(amount: str, decimals: int) -> int:
    """Parse a human decimal string into an integer token amount.

    Raises:
        ValueError: if the string is not a plain non-negative decimal or has
            more fractional digits than ``decimals``.
    """
    text = amount.strip()
    match = _AMOUNT_RE.match(text)
    if not text or not match or text == ".":
        raise ValueError(f"Invalid amount: {amount!r}")
    whole, fraction = match.group(1) or "0", match.group(2) or ""
    if len(fraction) > decimals:
        raise ValueError(f"Amount {amount!r} has more than {decimals} decimals")
    return int(whole) * 10 ** decimals + int(fraction.ljust(decimals, "0") or "0")


def decimal_places(amount: str) -> int:
    """Number of digits after the decimal point in ``amount``."""
    parts = amount.strip().split(".")
    return len(parts[1]) if len(parts) > 1 else 0


def parse_uint(value: Union[str, int]) -> int:
    """Parse a decimal or 0x-prefixed hex string into a non-negative int."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid unsigned integer: {value!r}")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        number = int(text, 16) if text.lower().startswith("0x") else int(text, 10)
    if number < 0:
        raise ValueError(f"Invalid unsigned integer: {value!r}")
    return number


def format_lock_id(lock_id: Union[str, int]) -> str:
    """Render a lock id as a 0x-prefixed, 64 hex digit string."""
    return "0x" + format(parse_uint(lock_id), "x").rjust(64, "0")


def allocator_id_from_lock_id(lock_id: Union[str, int]) -> int:
    """Extract the 92-bit allocator id packed into a lock id."""
    return (parse_uint(lock_id) >> 160) & ((1 << 92) - 1)


def format_time_remaining(expiry_timestamp: int, now: int) -> str:
    """Human-readable time until ``expiry_timestamp``.

    ``"Ready"`` once the timestamp has passed; otherwise the two or three
    most significant units, e.g. ``"1h 0m 0s"`` or ``"2d 3h 15m"``.
    """
    diff = int(expiry_timestamp) - int(now)
    if diff <= 0:
        return "Ready"

    days, rest = divmod(diff, 24 * 60 * 60)
    hours, rest = divmod(rest, 60 * 60)
    minutes, seconds = divmod(rest, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_reset_period(seconds: int) -> str:
    """Human-readable reset period or finalization threshold."""
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60} minutes"
    if seconds < 86400:
        return f"{seconds // 3600} hours"
    return f"{seconds // 86400} days"
