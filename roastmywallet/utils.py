"""
Calendar and money helpers shared by the quota gate and the aggregator.

All datetimes in the database are naive UTC.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m/%d/%y",
    "%d-%m-%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_start(moment: datetime) -> datetime:
    """First instant of the calendar month containing `moment`."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def shift_months(moment: datetime, months: int) -> datetime:
    """First instant of the month `months` away from the month of `moment`."""
    index = moment.year * 12 + (moment.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1)


def month_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def parse_date(value) -> Optional[datetime]:
    """Best-effort parse of an ISO string or a common statement date format.

    Returns a naive UTC datetime, or None if nothing matched.
    """
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str) or not value.strip():
        return None
    else:
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def dollars_to_cents(value) -> Optional[int]:
    """Convert a dollar amount (number or string) to integer cents.

    Currency symbols, thousands separators and whitespace are stripped.
    Returns None when the value does not parse.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        text = str(value)
    else:
        text = "".join(ch for ch in str(value) if ch.isdigit() or ch in ".-")
    if not text or text in ("-", ".", "-."):
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def coerce_cents(value) -> Optional[int]:
    """Interpret a model-reported cents value; floats are rounded half-up."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
