# shelfprice/utils/parsing.py

"""Lenient parsers for scraped and oracle-produced values."""

import math
import re
from datetime import datetime, timezone

_AMOUNT_RE = re.compile(r"-?\d+(?:[.,]\d+)?")

_DATE_FORMATS: tuple[str, ...] = ("%d.%m.%Y", "%d.%m.%y", "%d/%m/%Y")


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_amount(value: object) -> float | None:
    """Extract a number from ``value``.

    Accepts ints/floats as-is and strings such as ``"2,10 лв."`` or
    ``"-15%"``.  Returns ``None`` when nothing numeric is present or the
    number is not finite (JSON ``1e999`` and ``Infinity`` decode to inf).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        match = _AMOUNT_RE.search(str(value))
        if match is None:
            return None
        amount = float(match.group(0).replace(",", "."))
    return amount if math.isfinite(amount) else None


def round_money(value: float) -> float:
    """Round a currency amount to two decimals."""
    return round(value, 2)


def complete_currencies(
    price_bgn: float, price_eur: float, rate: float,
) -> tuple[float, float] | None:
    """Fill a missing currency from the other one; ``None`` if both missing."""
    if price_bgn > 0 and price_eur > 0:
        return price_bgn, price_eur
    if price_bgn > 0:
        return price_bgn, round_money(price_bgn / rate)
    if price_eur > 0:
        return round_money(price_eur * rate), price_eur
    return None


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 or ``dd.mm.yyyy`` value into a naive UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            else:
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
