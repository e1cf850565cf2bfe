"""Human readable byte counts."""

import math
import re

UINT = re.compile(r"^[0-9]+$")

IEC_PREFIXES = ["K", "M", "G", "T", "P", "E"]


def parse_uint(value):
    """Returns `value` as int if it looks like an unsigned integer, else None.

    Accepts ints and digit-only strings. Booleans, negative numbers, floats
    and anything with whitespace or signs are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and UINT.match(value):
        return int(value)
    return None


def _round_up(value: float, digits: int) -> float:
    scale = 10**digits
    return math.ceil(value * scale - 1e-9) / scale


def format_iec(num: int) -> str:
    """Formats like `numfmt --to=iec --suffix=B`.

    Scaled values are rounded away from zero and keep one decimal
    while they are below 10.
    """
    if num < 1024:
        return f"{num}B"

    scaled = float(num)
    unit = -1
    while scaled >= 1024 and unit < len(IEC_PREFIXES) - 1:
        scaled /= 1024
        unit += 1

    if scaled < 10:
        rounded = _round_up(scaled, 1)
        if rounded < 10:
            return f"{rounded:.1f}{IEC_PREFIXES[unit]}B"
        scaled = rounded

    rounded = math.ceil(scaled - 1e-9)
    if rounded >= 1024 and unit < len(IEC_PREFIXES) - 1:
        return f"1.0{IEC_PREFIXES[unit + 1]}B"
    return f"{rounded}{IEC_PREFIXES[unit]}B"


def format_bytes(value, iec=True) -> str:
    num = parse_uint(value if isinstance(value, int) else str(value))
    if num is None:
        num = 0
    if iec:
        return format_iec(num)
    return f"{num}B"
