"""Date parsing and formatting for the ``date`` transform.

Naive datetimes are local wall-clock time throughout. Date-only strings
(``YYYY-MM-DD``) are built as local calendar dates so that formatting them
back never shifts the day, whatever the host's UTC offset.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Optional

from rating_orchestrator.utils.conditions import to_number

_DATE_ONLY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

_FALLBACK_FORMATS = (
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)


def _from_millis(millis: float) -> Optional[datetime]:
    if math.isnan(millis) or math.isinf(millis):
        return None
    try:
        return datetime.fromtimestamp(millis / 1000)
    except (OverflowError, OSError, ValueError):
        return None


def parse_date(raw: Any, input_format: Optional[str] = None) -> Optional[datetime]:
    """Parse ``raw`` into a datetime, or ``None`` if it cannot be read.

    Args:
        raw: Source value, usually a string.
        input_format: ``timestamp`` or ``epoch`` (both epoch milliseconds);
            anything else means ISO-8601 or a common US-style date string.
    """
    if input_format in ("timestamp", "epoch"):
        return _from_millis(to_number(raw))

    text = str(raw).strip()
    match = _DATE_ONLY_RE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _local(dt: datetime) -> datetime:
    """Wall-clock view of ``dt`` in the host timezone."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def _epoch_millis(dt: datetime) -> int:
    return int(math.floor(dt.timestamp() * 1000))


def to_iso_utc(dt: datetime) -> str:
    """``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    utc = dt.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def format_date(dt: datetime, fmt: str) -> str:
    """Render ``dt`` with one of the named formats or ``YYYY``/``MM``/``DD`` tokens."""
    local = _local(dt)
    yr, mo, dy = str(local.year), f"{local.month:02d}", f"{local.day:02d}"

    if fmt == "YYYY-MM-DD":
        return f"{yr}-{mo}-{dy}"
    if fmt == "MM/DD/YYYY":
        return f"{mo}/{dy}/{yr}"
    if fmt == "DD/MM/YYYY":
        return f"{dy}/{mo}/{yr}"
    if fmt == "MM-DD-YYYY":
        return f"{mo}-{dy}-{yr}"
    if fmt == "ISO":
        return to_iso_utc(dt)
    if fmt == "timestamp":
        return str(_epoch_millis(dt))
    if fmt == "epoch":
        return str(_epoch_millis(dt) // 1000)
    # first occurrence of each token only
    return fmt.replace("YYYY", yr, 1).replace("MM", mo, 1).replace("DD", dy, 1)
