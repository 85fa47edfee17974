from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as dt_parser


def to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_tags(raw) -> list[str]:
    """Trimmed, de-duplicated tag names in first-seen order.

    Accepts a comma separated string or a list of names.
    """
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        tokens = [str(item) for item in raw if item is not None]
    else:
        tokens = str(raw).split(",")
    names = [token.strip() for token in tokens]
    return list(dict.fromkeys(name for name in names if name))


def parse_iso_datetime(value: str | None) -> datetime | None:
    text = (value or "").strip()
    if not text:
        return None
    parsed = dt_parser.isoparse(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clamp_int(value, default: int, minimum: int, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number
