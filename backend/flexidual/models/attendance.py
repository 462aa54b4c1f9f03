"""Attendance intervals for (session, student) pairs."""
from flexidual import db
from flexidual.models.base import BaseModel
from flexidual.utils.helpers import isoformat


class AttendanceRecord(BaseModel):
    """One presence interval of a student in a session."""

    __tablename__ = 'attendance_records'

    session_id = db.Column(db.Integer, db.ForeignKey('class_sessions.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    joined_at = db.Column(db.DateTime, nullable=False)
    left_at = db.Column(db.DateTime, nullable=True)
    last_heartbeat_at = db.Column(db.DateTime, nullable=False)
    duration_seconds = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized for audit
    room_name = db.Column(db.String(191), nullable=False)
    session_date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD

    close_reason = db.Column(db.String(20), nullable=True)  # leave, timeout, session_end
    clock_skew = db.Column(db.Boolean, default=False, nullable=False)

    student = db.relationship('User')

    @property
    def is_open(self) -> bool:
        return self.left_at is None

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'student_id': self.student_id,
            'joined_at': isoformat(self.joined_at),
            'left_at': isoformat(self.left_at),
            'last_heartbeat_at': isoformat(self.last_heartbeat_at),
            'duration_seconds': self.duration_seconds,
            'room_name': self.room_name,
            'session_date': self.session_date,
            'close_reason': self.close_reason,
            'clock_skew': self.clock_skew
        }

    def __repr__(self):
        return f'<AttendanceRecord {self.student_id}-{self.session_id}>'


class AttendanceOpenSlot(db.Model):
    """Open pointer: at most one open record per (session, student)."""

    __tablename__ = 'attendance_open_slots'

    session_id = db.Column(db.Integer, db.ForeignKey('class_sessions.id'), primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    record_id = db.Column(db.Integer, db.ForeignKey('attendance_records.id'), nullable=False, unique=True)

    record = db.relationship('AttendanceRecord')
