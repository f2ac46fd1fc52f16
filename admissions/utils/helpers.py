"""Shared request-parsing helpers for blueprints.

parse_datetime_input:  ISO date/datetime → aware datetime (raises ValueError)
parse_bool:            JSON/query truthiness with a default
"""
from datetime import date, datetime, timezone


def parse_datetime_input(value):
    """Parse an ISO date or datetime string, raising ValueError on bad input.

    Naive values are interpreted as UTC. Supports YYYY-MM-DD,
    YYYY-MM-DDTHH:MM[:SS][+TZ] and datetime/date objects.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError("Invalid date format. Use ISO 8601 (YYYY-MM-DD[THH:MM:SS]).") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_bool(value, default=False):
    """Interpret JSON booleans and common string forms ("true", "1", "yes")."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
