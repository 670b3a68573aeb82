import html
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import bleach


MAX_SANITIZE_PASSES = 5


def sanitize_text(value: Optional[str]) -> str:
    """Sanitize a user-supplied label (description, category, name) for storage.

    - Removes NULL bytes
    - Decodes HTML entities first, so "&lt;script&gt;" is seen as a tag
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Undoes bleach's entity escaping so "Food & Dining" is stored verbatim
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    for _ in range(MAX_SANITIZE_PASSES):
        cleaned = html.unescape(bleach.clean(_unescape_fully(val), tags=set(), strip=True))
        if cleaned == val:
            break
        val = cleaned
    return val.strip()



def _unescape_fully(value: str) -> str:
    # "&amp;lt;" decodes to "&lt;" on the first pass
    for _ in range(MAX_SANITIZE_PASSES):
        decoded = html.unescape(value)
        if decoded == value:
            break
        value = decoded
    return value


# Business rule: amount stored rounded to 2 decimals
def round_amount(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def money(value) -> float:
    """Convert a summed Numeric (Decimal, float or None) into a 2-decimal float for reports."""
    if value is None:
        return 0.0
    return float(round_amount(Decimal(str(value))))


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
