"""Scheduled class session model."""
import enum
from typing import List
from flexidual import db
from flexidual.models.base import BaseModel
from flexidual.utils.helpers import isoformat


class SessionType(enum.Enum):
    """How participants are dispatched into the session."""
    NATIVE = 'native'
    EXTERNAL_PORTAL = 'external_portal'


class SessionStatus(enum.Enum):
    """Stored lifecycle state. Reads derive the effective state from time."""
    SCHEDULED = 'scheduled'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class SessionLesson(db.Model):
    """Ordered lesson reference of a session."""

    __tablename__ = 'session_lessons'

    session_id = db.Column(db.Integer, db.ForeignKey('class_sessions.id'), primary_key=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lessons.id'), primary_key=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    lesson = db.relationship('Lesson')


class ClassSession(BaseModel):
    """One scheduled occurrence of a class meeting."""

    __tablename__ = 'class_sessions'

    class_id = db.Column(db.Integer, db.ForeignKey('classes.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Time window [scheduled_start, scheduled_end), naive UTC
    scheduled_start = db.Column(db.DateTime, nullable=False, index=True)
    scheduled_end = db.Column(db.DateTime, nullable=False)
    timezone = db.Column(db.String(64), nullable=False, default='UTC')

    # Room identity, stable for the lifetime of the session
    room_name = db.Column(db.String(191), unique=True, nullable=False, index=True)
    session_type = db.Column(db.Enum(SessionType), nullable=False, default=SessionType.NATIVE)

    # Lifecycle
    status = db.Column(db.Enum(SessionStatus), nullable=False, default=SessionStatus.SCHEDULED, index=True)
    is_live = db.Column(db.Boolean, default=False, nullable=False)  # cache only
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Recurrence linkage; the anchor instance points at itself
    is_recurring = db.Column(db.Boolean, default=False, nullable=False)
    recurrence_parent_id = db.Column(db.Integer, db.ForeignKey('class_sessions.id'), nullable=True, index=True)
    recurrence_rule = db.Column(db.JSON, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    lesson_links = db.relationship('SessionLesson', order_by='SessionLesson.position',
                                   cascade='all, delete-orphan', lazy='selectin')
    attendance_records = db.relationship('AttendanceRecord', backref='session', lazy='dynamic')

    __table_args__ = (
        db.CheckConstraint('scheduled_end > scheduled_start', name='ck_session_window'),
    )

    @property
    def lesson_ids(self) -> List[int]:
        return [link.lesson_id for link in self.lesson_links]

    def set_lessons(self, lesson_ids: List[int]) -> None:
        """Replace the ordered lesson references."""
        self.lesson_links = [
            SessionLesson(lesson_id=lesson_id, position=position)
            for position, lesson_id in enumerate(lesson_ids)
        ]

    @property
    def duration_seconds(self) -> float:
        return (self.scheduled_end - self.scheduled_start).total_seconds()

    def to_dict(self, view=None):
        """Convert to dictionary. ``view`` is a derived lifecycle view."""
        data = {
            'id': self.id,
            'class_id': self.class_id,
            'title': self.title,
            'description': self.description,
            'lesson_ids': self.lesson_ids,
            'scheduled_start': isoformat(self.scheduled_start),
            'scheduled_end': isoformat(self.scheduled_end),
            'timezone': self.timezone,
            'room_name': self.room_name,
            'session_type': self.session_type.value,
            'status': self.status.value,
            'is_live': bool(self.is_live),
            'completed_at': isoformat(self.completed_at),
            'cancelled_at': isoformat(self.cancelled_at),
            'is_recurring': self.is_recurring,
            'recurrence_parent_id': self.recurrence_parent_id,
            'recurrence_rule': self.recurrence_rule
        }
        if view is not None:
            data['stored_status'] = self.status.value
            data['status'] = view.status.value
            data['is_live'] = view.is_live
            data['completed_at'] = isoformat(view.completed_at)
        return data

    def __repr__(self):
        return f'<ClassSession {self.room_name}>'
