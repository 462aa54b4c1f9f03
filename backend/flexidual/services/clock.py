"""Injectable time source.

Every derived state (live flag, promoted status, heartbeat staleness) is a
function of "now", so the clock lives in ``app.extensions`` where tests can
swap in a ``FixedClock``.
"""
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context

EXTENSION_KEY = 'flexidual.clock'


def utcnow() -> datetime:
    """Naive UTC now, the representation every model column uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


def init_clock(app, clock=None) -> None:
    app.extensions[EXTENSION_KEY] = clock or SystemClock()


def get_clock():
    if has_app_context():
        clock = current_app.extensions.get(EXTENSION_KEY)
        if clock is not None:
            return clock
    return SystemClock()
