"""Recurrence expansion: weekday set + time of day + range -> occurrences."""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from datetime import timezone as dt_timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from flexidual.utils.errors import ValidationError
from flexidual.utils.validators import Validator


def weekday_index(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def smart_start(day: date, selected_days: Iterable[int]) -> date:
    """First date on or after ``day`` that falls on a selected weekday.

    Returns ``day`` itself when its weekday is selected, otherwise the next
    selected weekday later in the same week, wrapping to the smallest
    selected weekday of the following week.
    """
    days = sorted(set(selected_days))
    if not days:
        raise ValidationError("At least one weekday must be selected")

    current = weekday_index(day)
    if current in days:
        return day

    later = [d for d in days if d > current]
    if later:
        delta = later[0] - current
    else:
        delta = (7 - current) + days[0]
    return day + timedelta(days=delta)


@dataclass
class Occurrence:
    start: datetime
    end: datetime


@dataclass
class RecurrenceRule:
    """A weekly pattern anchored on a date, in the class's local timezone."""
    anchor_date: date
    weekdays: List[int]
    start_time: time
    end_time: time
    count: Optional[int] = None
    until: Optional[date] = None
    interval_weeks: int = 1
    timezone: str = 'UTC'

    def validate(self) -> None:
        self.weekdays = Validator.validate_weekdays(self.weekdays)
        Validator.validate_timezone(self.timezone)
        if self.end_time <= self.start_time:
            raise ValidationError("End time must be after start time")
        if self.count is not None and self.count < 1:
            raise ValidationError("Occurrence count must be positive")
        if self.until is not None and self.until < self.anchor_date:
            raise ValidationError("Recurrence end date is before the anchor date")
        if self.interval_weeks < 1:
            raise ValidationError("Interval must be at least one week")

    def to_dict(self) -> dict:
        return {
            'anchor_date': self.anchor_date.isoformat(),
            'weekdays': list(self.weekdays),
            'start_time': self.start_time.strftime('%H:%M'),
            'end_time': self.end_time.strftime('%H:%M'),
            'count': self.count,
            'until': self.until.isoformat() if self.until else None,
            'interval_weeks': self.interval_weeks,
            'timezone': self.timezone
        }

    @classmethod
    def from_payload(cls, data: dict, default_timezone: str = 'UTC') -> 'RecurrenceRule':
        Validator.require_fields(data, ['anchor_date', 'weekdays', 'start_time', 'end_time'])
        if data.get('count') is not None and (isinstance(data['count'], bool)
                                              or not isinstance(data['count'], int)):
            raise ValidationError("count must be an integer")
        interval = data.get('interval_weeks', 1)
        if isinstance(interval, bool) or not isinstance(interval, int):
            raise ValidationError("interval_weeks must be an integer")
        return cls(
            anchor_date=Validator.parse_date(data['anchor_date'], 'anchor_date'),
            weekdays=data['weekdays'],
            start_time=Validator.parse_time(data['start_time'], 'start_time'),
            end_time=Validator.parse_time(data['end_time'], 'end_time'),
            count=data.get('count'),
            until=Validator.parse_date(data['until'], 'until') if data.get('until') else None,
            interval_weeks=interval,
            timezone=data.get('timezone') or default_timezone
        )


def _to_utc(day: date, at: time, zone: ZoneInfo) -> datetime:
    local = datetime.combine(day, at).replace(tzinfo=zone)
    return local.astimezone(dt_timezone.utc).replace(tzinfo=None)


def expand(rule: RecurrenceRule, max_occurrences: int = 52) -> List[Occurrence]:
    """Materialize the rule into concrete UTC windows, first one at the smart start."""
    rule.validate()
    if rule.count is not None and rule.count > max_occurrences:
        raise ValidationError(f"A series is limited to {max_occurrences} occurrences")

    limit = rule.count or max_occurrences
    if rule.count is None and rule.until is not None:
        # walk one past the cap so an oversized range is detected
        limit = max_occurrences + 1
    zone = ZoneInfo(rule.timezone)
    first = smart_start(rule.anchor_date, rule.weekdays)
    week_origin = first - timedelta(days=weekday_index(first))
    selected = set(rule.weekdays)

    occurrences = []
    day = first
    last_day = first + timedelta(weeks=rule.interval_weeks * limit + 1)
    while len(occurrences) < limit and day <= last_day:
        if rule.until is not None and day > rule.until:
            break
        week_number = (day - week_origin).days // 7
        if weekday_index(day) in selected and week_number % rule.interval_weeks == 0:
            occurrences.append(Occurrence(
                start=_to_utc(day, rule.start_time, zone),
                end=_to_utc(day, rule.end_time, zone)
            ))
        day += timedelta(days=1)

    if len(occurrences) > max_occurrences:
        raise ValidationError(f"The range until {rule.until.isoformat()} exceeds {max_occurrences} occurrences")
    return occurrences
