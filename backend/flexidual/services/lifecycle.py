"""Session lifecycle: time-derived status and explicit transitions.

``derive_status`` and ``derive_view`` are pure functions of stored fields
and "now". They never write, so any number of readers can call them
concurrently. Only the explicit transitions below persist anything.

    scheduled -> active -> completed
    scheduled -> cancelled
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from flexidual import db
from flexidual.models.class_session import ClassSession, SessionStatus
from flexidual.services.clock import get_clock
from flexidual.utils.errors import InvalidTransition

TERMINAL_STATES = {SessionStatus.COMPLETED, SessionStatus.CANCELLED}


@dataclass(frozen=True)
class SessionView:
    """Effective lifecycle state of a session at a given instant."""
    status: SessionStatus
    is_live: bool
    completed_at: Optional[datetime]


def derive_status(session: ClassSession, now: datetime) -> SessionStatus:
    """Effective status with lazy promotion applied."""
    stored = session.status
    if stored in TERMINAL_STATES:
        return stored
    if now >= session.scheduled_end:
        return SessionStatus.COMPLETED
    if stored == SessionStatus.ACTIVE or now >= session.scheduled_start:
        return SessionStatus.ACTIVE
    return SessionStatus.SCHEDULED


def is_live(session: ClassSession, now: datetime) -> bool:
    """Active and inside [scheduled_start, scheduled_end)."""
    return (derive_status(session, now) == SessionStatus.ACTIVE
            and session.scheduled_start <= now < session.scheduled_end)


def derive_view(session: ClassSession, now: datetime) -> SessionView:
    status = derive_status(session, now)
    completed_at = session.completed_at
    if status == SessionStatus.COMPLETED and completed_at is None:
        # auto-completion is stamped with the scheduled end, not the read time
        completed_at = session.scheduled_end
    return SessionView(status=status, is_live=is_live(session, now), completed_at=completed_at)


class LifecycleService:
    """Explicit, persisted transitions on a single session."""

    @staticmethod
    def view(session: ClassSession, now: datetime = None) -> SessionView:
        return derive_view(session, now or get_clock().now())

    @staticmethod
    def persist_promotion(session: ClassSession, now: datetime = None, commit: bool = True) -> SessionView:
        """Write the derived state back. Only mutating endpoints call this."""
        view = derive_view(session, now or get_clock().now())
        changed = (session.status != view.status
                   or bool(session.is_live) != view.is_live
                   or session.completed_at != view.completed_at)
        if changed:
            current_app.logger.info(
                'Session %s promoted %s -> %s', session.id, session.status.value, view.status.value
            )
            session.status = view.status
            session.is_live = view.is_live
            session.completed_at = view.completed_at
            if commit:
                db.session.commit()
        return view

    @staticmethod
    def ensure_editable(session: ClassSession, now: datetime) -> None:
        """Times and lessons may change only while scheduled."""
        status = derive_status(session, now)
        if status != SessionStatus.SCHEDULED:
            raise InvalidTransition(f"Cannot edit a {status.value} session", status.value)

    @staticmethod
    def cancel(session: ClassSession, reason: str = None, now: datetime = None,
               commit: bool = True) -> ClassSession:
        now = now or get_clock().now()
        status = derive_status(session, now)
        if status != SessionStatus.SCHEDULED:
            message = "Live sessions must be ended, not cancelled" \
                if status == SessionStatus.ACTIVE else f"Cannot cancel a {status.value} session"
            raise InvalidTransition(message, status.value)

        session.status = SessionStatus.CANCELLED
        session.is_live = False
        session.cancelled_at = now
        if reason:
            session.cancellation_reason = reason
            session.description = f"{session.description or ''}\n\nCancellation reason: {reason}".strip()

        current_app.logger.info('Session %s cancelled', session.id)
        if commit:
            db.session.commit()
        return session

    @staticmethod
    def start(session: ClassSession, now: datetime = None) -> SessionView:
        """Teacher opens the room; allowed from the early join window on."""
        now = now or get_clock().now()
        status = derive_status(session, now)
        if status not in (SessionStatus.SCHEDULED, SessionStatus.ACTIVE):
            raise InvalidTransition(f"Cannot start a {status.value} session", status.value)

        early = timedelta(minutes=current_app.config.get('JOIN_EARLY_MINUTES', 10))
        if now < session.scheduled_start - early:
            raise InvalidTransition("Session cannot be started yet", status.value)

        session.status = SessionStatus.ACTIVE
        session.is_live = is_live(session, now)
        db.session.commit()
        current_app.logger.info('Session %s started', session.id)
        return derive_view(session, now)

    @staticmethod
    def end(session: ClassSession, now: datetime = None) -> SessionView:
        """End a live session. Routes active -> completed."""
        now = now or get_clock().now()
        status = derive_status(session, now)

        if status == SessionStatus.COMPLETED and session.status != SessionStatus.COMPLETED:
            # window already over: persist the auto-completion as is
            return LifecycleService.persist_promotion(session, now)
        if status != SessionStatus.ACTIVE:
            raise InvalidTransition(f"Cannot end a {status.value} session", status.value)

        session.status = SessionStatus.COMPLETED
        session.is_live = False
        session.completed_at = now
        db.session.commit()
        current_app.logger.info('Session %s completed', session.id)
        return derive_view(session, now)
