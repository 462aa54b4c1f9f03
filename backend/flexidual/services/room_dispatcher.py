"""Maps a room name to a rendering strategy and hands out joins.

Sessions are resolved by their stored ``room_name``. The legacy
``class-<id>-lesson-<id>`` parser is only a fallback; anything that cannot
be resolved either way is dispatched with the generic native strategy.
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from flask import current_app

from flexidual.models.class_session import ClassSession, SessionStatus, SessionType
from flexidual.models.user import User
from flexidual.services.clock import get_clock
from flexidual.services.lifecycle import TERMINAL_STATES, derive_status, derive_view
from flexidual.services.room_names import parse_legacy_room_name
from flexidual.services.session_store import SessionStore
from flexidual.services.video_backend import get_video_backend
from flexidual.utils.errors import DispatchFailure, InvalidTransition
from flexidual.utils.helpers import isoformat


class DispatchStrategy(enum.Enum):
    NATIVE = 'native'
    EXTERNAL_PORTAL = 'external_portal'
    GENERIC = 'generic'


@dataclass
class Dispatch:
    strategy: DispatchStrategy
    room_name: Optional[str] = None
    session: Optional[ClassSession] = None
    portal: Optional[Dict[str, Any]] = None
    legacy: bool = False

    def to_dict(self, now: datetime = None) -> Dict[str, Any]:
        data = {
            'strategy': self.strategy.value,
            'room_name': self.room_name,
            'legacy': self.legacy,
            'session_id': self.session.id if self.session else None
        }
        if self.session is not None and now is not None:
            view = derive_view(self.session, now)
            data['status'] = view.status.value
            data['is_live'] = view.is_live
        if self.portal is not None:
            data['portal'] = self.portal
        return data


class RoomDispatcher:
    """Room resolution and join dispatch."""

    @staticmethod
    def for_session(session: ClassSession, legacy: bool = False) -> Dispatch:
        if session.session_type == SessionType.EXTERNAL_PORTAL:
            config = current_app.config
            class_group = session.class_group
            # the room name is deliberately not forwarded to the portal
            return Dispatch(
                strategy=DispatchStrategy.EXTERNAL_PORTAL,
                session=session,
                legacy=legacy,
                portal={
                    'url': config['EXTERNAL_PORTAL_URL'],
                    'frame': {
                        'allow': config.get('EXTERNAL_PORTAL_PERMISSIONS', 'camera; microphone'),
                        'sandbox': 'allow-scripts allow-same-origin allow-forms allow-popups'
                    },
                    'header': {
                        'portal_title': config.get('EXTERNAL_PORTAL_TITLE'),
                        'title': session.title or (class_group.name if class_group else None),
                        'class_name': class_group.name if class_group else None,
                        'starts_at': isoformat(session.scheduled_start),
                        'ends_at': isoformat(session.scheduled_end)
                    }
                }
            )
        return Dispatch(
            strategy=DispatchStrategy.NATIVE,
            room_name=session.room_name,
            session=session,
            legacy=legacy
        )

    @staticmethod
    def _legacy_lookup(room_name: str, now: datetime) -> Optional[ClassSession]:
        ref = parse_legacy_room_name(room_name)
        if ref is None:
            return None

        candidates = [s for s in SessionStore.list_by_class(ref.class_id) if ref.lesson_id in s.lesson_ids]
        if not candidates:
            return None
        for candidate in candidates:
            if derive_status(candidate, now) == SessionStatus.ACTIVE:
                return candidate
        return candidates[-1]

    @staticmethod
    def resolve(room_name: str, now: datetime = None) -> Dispatch:
        now = now or get_clock().now()

        session = SessionStore.get_by_room_name(room_name)
        if session is not None:
            return RoomDispatcher.for_session(session)

        session = RoomDispatcher._legacy_lookup(room_name, now)
        if session is not None:
            current_app.logger.info('Room %s resolved through legacy pattern', room_name)
            return RoomDispatcher.for_session(session, legacy=True)

        current_app.logger.debug('Room %s not linked to a session, using generic strategy', room_name)
        return Dispatch(strategy=DispatchStrategy.GENERIC, room_name=room_name)

    @staticmethod
    def ensure_joinable(session: ClassSession, now: datetime) -> None:
        """Cancelled/completed sessions and unopened windows reject joins."""
        status = derive_status(session, now)
        if status in TERMINAL_STATES:
            raise InvalidTransition(f"Session is {status.value}; joining is closed", status.value)

        early = timedelta(minutes=current_app.config.get('JOIN_EARLY_MINUTES', 10))
        if status == SessionStatus.SCHEDULED and now < session.scheduled_start - early:
            raise InvalidTransition("Session has not opened yet", status.value)

    @staticmethod
    def join(room_name: str, user: User, now: datetime = None) -> Dict[str, Any]:
        now = now or get_clock().now()
        dispatch = RoomDispatcher.resolve(room_name, now)

        if dispatch.session is not None:
            RoomDispatcher.ensure_joinable(dispatch.session, now)

        result = dispatch.to_dict(now)
        if dispatch.strategy == DispatchStrategy.EXTERNAL_PORTAL:
            return result

        try:
            ticket = get_video_backend().join(
                dispatch.room_name,
                identity=user.subject,
                name=user.name,
                role=user.role.value
            )
        except DispatchFailure as e:
            current_app.logger.error('Dispatch to room %s failed: %s', dispatch.room_name, e.message)
            raise

        result['ticket'] = ticket.to_dict()
        return result
