"""Portal date parsing: ISO strings, epoch seconds or milliseconds, and a few display formats."""
import math
import re
from datetime import date, datetime, timezone
from typing import Any

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_FORMATS = ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%d-%m-%Y", "%d/%m/%Y", "%d %b %Y", "%d %B %Y", "%b %d, %Y", "%B %d, %Y")


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def normalize_date(value: Any) -> str:
    """Return an ISO YYYY-MM-DD date, falling back to today when unparseable."""
    if value is None or isinstance(value, bool):
        return _today()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return _today()
        seconds = value / 1000 if value > 1e10 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()
        except (OverflowError, OSError, ValueError):
            return _today()
    text = str(value).strip()
    if _ISO_DATE_RE.match(text):
        return text
    if text.isdigit():
        return normalize_date(int(text))
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return _today()
