from __future__ import annotations

import re

# Everything that is not a digit or a decimal point is dropped, so
# "€1,234.56" reads as 1234.56 and "€12.50 - €15" as 12.5015.
_NON_NUMERIC_RE = re.compile(r"[^\d.]")
_LEADING_NUMBER_RE = re.compile(r"\d+(?:\.\d*)?|\.\d+")

DEFAULT_CURRENCY = "€"


def parse_price(text: str | None) -> float:
    """Read a numeric amount out of a loosely formatted price string.

    Only the leading number of the stripped text counts ("1.2.3" -> 1.2).
    Anything unreadable is 0.0.
    """
    if not text:
        return 0.0
    cleaned = _NON_NUMERIC_RE.sub("", text)
    m = _LEADING_NUMBER_RE.match(cleaned)
    if not m:
        return 0.0
    return float(m.group(0))


def format_price(amount: float, *, symbol: str = DEFAULT_CURRENCY) -> str:
    return f"{symbol}{amount:.2f}"
