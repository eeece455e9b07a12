"""
number_parsing.py
Turns the amount strings found in statements ("1,000", "(250)", "3.2亿",
"¥ 12,500.00 万元") into floats.

Strict on purpose: a cell is an amount only if, once currency symbols,
grouping commas and a magnitude suffix are removed, what remains is a plain
decimal number. "FY2020" or "Note 12" are not amounts.
"""

import math
import numbers
import re
from typing import Optional

# Checked in this order
MAGNITUDES = (
    ("亿", 1e8),
    ("万", 1e4),
)

_UNICODE_SPACES = re.compile(r"[\u200b\xa0\u202f\u2009\u3000]")
_CURRENCY = re.compile(r"(?i)(rmb|cny|usd|inr|rs\.?|[¥￥$€£₹])")
_SUFFIX = re.compile(r"(亿元|万元|亿|万|元)$")
_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

# Used for scanning free text: optional sign / opening paren, digits with
# grouping commas, optional decimals, optional magnitude suffix.
AMOUNT_PATTERN = re.compile(
    r"(?P<neg>[-(（])?\s*(?:¥|￥|RMB|USD|\$)?\s*"
    r"(?P<num>\d[\d,]*(?:\.\d+)?)\s*(?P<unit>亿元|万元|亿|万|元)?"
)


def magnitude_of(text: str) -> float:
    for marker, factor in MAGNITUDES:
        if marker in text:
            return factor
    return 1.0


def parse_amount(value) -> Optional[float]:
    """Return a finite float for an amount-like value, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    s = _UNICODE_SPACES.sub("", value).strip()
    if not s:
        return None

    negative = False
    if (s.startswith("(") and s.endswith(")")) or (s.startswith("（") and s.endswith("）")):
        negative = True
        s = s[1:-1].strip()

    s = _CURRENCY.sub("", s).strip()
    if s.endswith("%"):
        s = s[:-1].strip()

    factor = 1.0
    suffix = _SUFFIX.search(s)
    if suffix:
        factor = magnitude_of(suffix.group(1))
        s = s[:suffix.start()].strip()

    s = s.replace(",", "").replace(" ", "")
    if not _PLAIN_NUMBER.match(s):
        return None

    number = float(s) * factor
    if negative:
        number = -number
    return number if math.isfinite(number) else None

