"""Persistence gateway for class sessions.

Reads return stored rows untouched; promoting derived state is the
caller's job (see ``lifecycle``).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from flexidual import db
from flexidual.models.class_session import ClassSession
from flexidual.utils.errors import NotFound, ValidationError

IMMUTABLE_FIELDS = {'id', 'class_id', 'session_type', 'room_name'}


class SessionStore:
    """CRUD and indexed queries over ``ClassSession``."""

    @staticmethod
    def get(session_id: int) -> ClassSession:
        session = db.session.get(ClassSession, session_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        return session

    @staticmethod
    def find(session_id: int) -> Optional[ClassSession]:
        return db.session.get(ClassSession, session_id)

    @staticmethod
    def get_by_room_name(room_name: str) -> Optional[ClassSession]:
        return ClassSession.query.filter_by(room_name=room_name).first()

    @staticmethod
    def list_by_class(class_id: int) -> List[ClassSession]:
        return ClassSession.query.filter_by(class_id=class_id) \
            .order_by(ClassSession.scheduled_start).all()

    @staticmethod
    def list_by_time_range(start: Optional[datetime], end: Optional[datetime],
                           class_ids: Optional[List[int]] = None) -> List[ClassSession]:
        """Sessions whose start falls in [start, end]."""
        query = ClassSession.query
        if start is not None:
            query = query.filter(ClassSession.scheduled_start >= start)
        if end is not None:
            query = query.filter(ClassSession.scheduled_start <= end)
        if class_ids is not None:
            if not class_ids:
                return []
            query = query.filter(ClassSession.class_id.in_(class_ids))
        return query.order_by(ClassSession.scheduled_start).all()

    @staticmethod
    def list_by_recurrence_parent(parent_id: int) -> List[ClassSession]:
        return ClassSession.query.filter_by(recurrence_parent_id=parent_id) \
            .order_by(ClassSession.scheduled_start).all()

    @staticmethod
    def insert(session: ClassSession, commit: bool = True) -> ClassSession:
        if session.scheduled_end <= session.scheduled_start:
            raise ValidationError("End time must be after start time")
        db.session.add(session)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return session

    @staticmethod
    def patch(session_id: int, fields: Dict[str, Any], commit: bool = True) -> ClassSession:
        """Apply a partial update and re-check the window invariant."""
        blocked = IMMUTABLE_FIELDS.intersection(fields)
        if blocked:
            raise ValidationError(f"Immutable field(s): {', '.join(sorted(blocked))}")

        session = SessionStore.get(session_id)
        for key, value in fields.items():
            if key == 'lesson_ids':
                session.set_lessons(value)
            elif hasattr(session, key):
                setattr(session, key, value)
            else:
                raise ValidationError(f"Unknown session field: {key}")

        if session.scheduled_end <= session.scheduled_start:
            db.session.rollback()
            raise ValidationError("End time must be after start time")

        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return session
