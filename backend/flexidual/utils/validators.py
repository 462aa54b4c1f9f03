"""Validation utilities for request payloads."""
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flexidual.utils.errors import ValidationError


class Validator:
    """Validation helper class."""

    @staticmethod
    def require_fields(data: Optional[Dict], required_fields: List[str]) -> Dict[str, Any]:
        """Ensure a JSON body is present and carries the required fields."""
        if not isinstance(data, dict):
            raise ValidationError("JSON body is required")

        missing = [field for field in required_fields if data.get(field) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
        return data

    @staticmethod
    def parse_datetime(value: Any, field: str) -> datetime:
        """Parse an ISO-8601 string or epoch milliseconds into naive UTC."""
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # epoch milliseconds
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            except ValueError:
                raise ValidationError(f"{field} must be an ISO-8601 datetime")
        else:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def parse_date(value: Any, field: str) -> date:
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            raise ValidationError(f"{field} must be a YYYY-MM-DD date")

    @staticmethod
    def parse_time(value: Any, field: str) -> time:
        if isinstance(value, time):
            return value
        try:
            return time.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"{field} must be an HH:MM time")

    @staticmethod
    def validate_timezone(name: str) -> str:
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone: {name}")
        return name

    @staticmethod
    def validate_window(start: datetime, end: datetime) -> None:
        """Sessions must end strictly after they start."""
        if end <= start:
            raise ValidationError("End time must be after start time")

    @staticmethod
    def validate_weekdays(days: Any) -> List[int]:
        """Weekdays are 0=Sunday .. 6=Saturday."""
        if not isinstance(days, (list, tuple, set)) or not days:
            raise ValidationError("At least one weekday must be selected")
        result = set()
        for day in days:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise ValidationError("Weekdays must be integers between 0 (Sunday) and 6 (Saturday)")
            result.add(day)
        return sorted(result)

    @staticmethod
    def validate_int_list(values: Any, field: str) -> List[int]:
        if values is None:
            return []
        if not isinstance(values, list):
            raise ValidationError(f"{field} must be a list")
        result = []
        for value in values:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{field} must contain integer ids")
            if value not in result:
                result.append(value)
        return result
