"""PAIA monetary values.

PAIA transmits money as ``"<amount> <currency>"``, for instance ``"0.80 USD"``,
with exactly two decimal digits and a three letter currency code.
"""

import re
from decimal import Decimal
from typing import Union

MONEY_PATTERN = re.compile(r"(\d+\.\d{2}) ([A-Z]{3})")


def parse_money(value: str) -> Union[int, str]:
    """Convert a PAIA money string into minor units (cents).

    Values that do not follow the money grammar are returned unchanged, so
    whoever formats the amount decides how to treat them.

    >>> parse_money("12.50 EUR")
    1250
    >>> parse_money("bad")
    'bad'
    """
    if not isinstance(value, str):
        return value
    match = MONEY_PATTERN.fullmatch(value)
    if not match:
        return value
    return int(Decimal(match.group(1)) * 100)
