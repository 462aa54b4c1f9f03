"""Heartbeat-driven attendance intervals.

Records are upserted by (session, student). ``AttendanceOpenSlot`` is the
open pointer of a pair, so a heartbeat never scans for an unterminated
record and a unique key makes a second open record impossible. Watermarks
and close times only ever move forward.
"""
import enum
import io
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd
from flask import current_app
from sqlalchemy.exc import IntegrityError

from flexidual import db
from flexidual.models.attendance import AttendanceOpenSlot, AttendanceRecord
from flexidual.models.class_session import ClassSession, SessionStatus
from flexidual.services.clock import get_clock
from flexidual.services.lifecycle import derive_view
from flexidual.services.session_store import SessionStore
from flexidual.utils.errors import ClockSkew, InvalidTransition, ValidationError


class AttendanceStatus(enum.Enum):
    PRESENT = 'present'
    PARTIAL = 'partial'
    MISSED = 'missed'


def interval_seconds(start: datetime, end: datetime) -> int:
    if end < start:
        raise ClockSkew(start, end)
    return int((end - start).total_seconds())


def classify(attended_seconds: float, scheduled_seconds: float,
             present_ratio: float, partial_ratio: float) -> AttendanceStatus:
    """Duration ratio against the scheduled length; thresholds are policy."""
    if attended_seconds <= 0 or scheduled_seconds <= 0:
        return AttendanceStatus.MISSED
    ratio = attended_seconds / scheduled_seconds
    if ratio >= present_ratio:
        return AttendanceStatus.PRESENT
    if ratio >= partial_ratio:
        return AttendanceStatus.PARTIAL
    return AttendanceStatus.MISSED


class AttendanceService:
    """Attendance recorder."""

    @staticmethod
    def _timeout() -> timedelta:
        return timedelta(seconds=current_app.config.get('HEARTBEAT_TIMEOUT_SECONDS', 180))

    @staticmethod
    def _tolerance() -> timedelta:
        return timedelta(seconds=current_app.config.get('HEARTBEAT_REORDER_TOLERANCE_SECONDS', 5))

    @staticmethod
    def _check_not_future(timestamp: datetime, now: datetime) -> None:
        if timestamp > now + AttendanceService._tolerance():
            raise ValidationError("timestamp is ahead of the server clock")

    @staticmethod
    def _session_date(session: ClassSession, at: datetime) -> str:
        local = at.replace(tzinfo=ZoneInfo('UTC')).astimezone(ZoneInfo(session.timezone or 'UTC'))
        return local.date().isoformat()

    @staticmethod
    def _measure(record: AttendanceRecord, end: datetime) -> int:
        try:
            return interval_seconds(record.joined_at, end)
        except ClockSkew as e:
            current_app.logger.warning('Clock skew on attendance record %s: %s', record.id, e.message)
            record.clock_skew = True
            return 0

    @staticmethod
    def _close(slot: AttendanceOpenSlot, left_at: datetime, reason: str) -> AttendanceRecord:
        record = slot.record
        # never move time backward
        if left_at < record.last_heartbeat_at:
            left_at = record.last_heartbeat_at
        record.duration_seconds = AttendanceService._measure(record, left_at)
        record.left_at = max(left_at, record.joined_at)
        record.close_reason = reason
        db.session.delete(slot)
        return record

    @staticmethod
    def _open_slot(session_id: int, student_id: int) -> Optional[AttendanceOpenSlot]:
        return db.session.get(AttendanceOpenSlot, (session_id, student_id))

    @staticmethod
    def _last_closed(session_id: int, student_id: int) -> Optional[AttendanceRecord]:
        return AttendanceRecord.query.filter(
            AttendanceRecord.session_id == session_id,
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.left_at.isnot(None)
        ).order_by(AttendanceRecord.left_at.desc()).first()

    @staticmethod
    def _check_window(session: ClassSession, timestamp: datetime, now: datetime) -> None:
        view = derive_view(session, now)
        if view.status == SessionStatus.CANCELLED:
            raise InvalidTransition("Session was cancelled", view.status.value)
        early = timedelta(minutes=current_app.config.get('JOIN_EARLY_MINUTES', 10))
        if view.status == SessionStatus.COMPLETED or timestamp >= session.scheduled_end:
            raise InvalidTransition("Session is over", SessionStatus.COMPLETED.value)
        if timestamp < session.scheduled_start - early:
            raise InvalidTransition("Session has not opened yet", view.status.value)

    @staticmethod
    def on_heartbeat(session_id: int, student_id: int, timestamp: datetime = None,
                     _retry: bool = True) -> AttendanceRecord:
        """Open the pair's interval or extend it."""
        now = get_clock().now()
        timestamp = timestamp or now
        session = SessionStore.get(session_id)
        AttendanceService._check_not_future(timestamp, now)
        AttendanceService._check_window(session, timestamp, now)

        slot = AttendanceService._open_slot(session_id, student_id)
        if slot is not None:
            record = slot.record
            if timestamp - record.last_heartbeat_at > AttendanceService._timeout():
                # stale interval: close it where the student was last seen
                AttendanceService._close(slot, record.last_heartbeat_at, 'timeout')
                db.session.flush()
            else:
                if timestamp < record.joined_at:
                    current_app.logger.warning(
                        'Heartbeat for record %s predates join (%s < %s)',
                        record.id, timestamp.isoformat(), record.joined_at.isoformat()
                    )
                    record.clock_skew = True
                elif timestamp > record.last_heartbeat_at:
                    record.last_heartbeat_at = timestamp
                    record.duration_seconds = AttendanceService._measure(record, timestamp)
                db.session.commit()
                return record
        else:
            last = AttendanceService._last_closed(session_id, student_id)
            if last is not None and timestamp <= last.left_at + AttendanceService._tolerance():
                # duplicate or reordered delivery of an already closed interval
                return last

        record = AttendanceRecord(
            session_id=session_id,
            student_id=student_id,
            joined_at=timestamp,
            last_heartbeat_at=timestamp,
            duration_seconds=0,
            room_name=session.room_name,
            session_date=AttendanceService._session_date(session, timestamp)
        )
        try:
            db.session.add(record)
            db.session.flush()
            db.session.add(AttendanceOpenSlot(session_id=session_id, student_id=student_id, record_id=record.id))
            db.session.commit()
        except IntegrityError:
            # another writer opened the pair first; extend theirs instead
            db.session.rollback()
            if not _retry:
                raise
            return AttendanceService.on_heartbeat(session_id, student_id, timestamp, _retry=False)

        current_app.logger.info('Student %s joined session %s', student_id, session_id)
        return record

    @staticmethod
    def on_leave(session_id: int, student_id: int, timestamp: datetime = None) -> Optional[AttendanceRecord]:
        """Close the open interval. Duplicate leaves are no-ops.

        The close time never passes the server clock or the scheduled end.
        """
        now = get_clock().now()
        timestamp = timestamp or now
        AttendanceService._check_not_future(timestamp, now)
        session = SessionStore.get(session_id)

        slot = AttendanceService._open_slot(session_id, student_id)
        if slot is None:
            return AttendanceService._last_closed(session_id, student_id)

        record = AttendanceService._close(slot, min(timestamp, now, session.scheduled_end), 'leave')
        db.session.commit()
        current_app.logger.info('Student %s left session %s after %ss', student_id, session_id,
                                record.duration_seconds)
        return record

    @staticmethod
    def on_timeout(session_id: int, student_id: int) -> Optional[AttendanceRecord]:
        """Server-side close at the last heartbeat."""
        slot = AttendanceService._open_slot(session_id, student_id)
        if slot is None:
            return None
        record = AttendanceService._close(slot, slot.record.last_heartbeat_at, 'timeout')
        db.session.commit()
        return record

    @staticmethod
    def sweep_stale(now: datetime = None) -> int:
        """Close every open interval whose watermark is older than the timeout."""
        now = now or get_clock().now()
        cutoff = now - AttendanceService._timeout()
        stale = AttendanceOpenSlot.query.join(AttendanceRecord, AttendanceOpenSlot.record_id == AttendanceRecord.id) \
            .filter(AttendanceRecord.last_heartbeat_at < cutoff).all()
        for slot in stale:
            AttendanceService._close(slot, slot.record.last_heartbeat_at, 'timeout')
        db.session.commit()
        if stale:
            current_app.logger.info('Closed %d stale attendance intervals', len(stale))
        return len(stale)

    @staticmethod
    def finalize_session(session: ClassSession, now: datetime = None) -> int:
        """Close the session's open intervals when it is ended."""
        now = now or get_clock().now()
        timeout = AttendanceService._timeout()
        slots = AttendanceOpenSlot.query.filter_by(session_id=session.id).all()
        for slot in slots:
            watermark = slot.record.last_heartbeat_at
            left_at = watermark if now - watermark > timeout else min(now, session.scheduled_end)
            AttendanceService._close(slot, left_at, 'session_end')
        db.session.commit()
        return len(slots)

    @staticmethod
    def summarize(session_id: int, now: datetime = None) -> Dict:
        """Present/partial/missed counts against the class roster."""
        now = now or get_clock().now()
        config = current_app.config
        present_ratio = config.get('ATTENDANCE_PRESENT_RATIO', 0.5)
        partial_ratio = config.get('ATTENDANCE_PARTIAL_RATIO', 0.1)

        session = SessionStore.get(session_id)
        view = derive_view(session, now)
        scheduled_seconds = session.duration_seconds

        attended: Dict[int, int] = {}
        provisional = set()
        for record in session.attendance_records.all():
            if record.is_open:
                seconds = max(0, int((record.last_heartbeat_at - record.joined_at).total_seconds()))
                provisional.add(record.student_id)
            else:
                seconds = record.duration_seconds
            attended[record.student_id] = attended.get(record.student_id, 0) + seconds

        roster = session.class_group.students if session.class_group else []
        roster_ids = {student.id for student in roster}
        counts = {status.value: 0 for status in AttendanceStatus}
        students = []
        for student in sorted(roster, key=lambda s: s.name):
            seconds = attended.get(student.id, 0)
            status = classify(seconds, scheduled_seconds, present_ratio, partial_ratio)
            counts[status.value] += 1
            students.append({
                'student_id': student.id,
                'name': student.name,
                'attended_seconds': seconds,
                'ratio': round(seconds / scheduled_seconds, 4) if scheduled_seconds else 0,
                'status': status.value,
                'provisional': student.id in provisional
            })

        return {
            'session_id': session.id,
            'room_name': session.room_name,
            'status': view.status.value,
            'scheduled_seconds': int(scheduled_seconds),
            'thresholds': {'present': present_ratio, 'partial': partial_ratio},
            'counts': counts,
            'students': students,
            'unrostered_student_ids': sorted(set(attended) - roster_ids)
        }

    @staticmethod
    def student_history(student_id: int) -> List[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(student_id=student_id) \
            .order_by(AttendanceRecord.joined_at.desc()).all()

    @staticmethod
    def export_summary_csv(session_id: int, now: datetime = None) -> str:
        summary = AttendanceService.summarize(session_id, now)
        df = pd.DataFrame(summary['students'], columns=[
            'student_id', 'name', 'attended_seconds', 'ratio', 'status', 'provisional'
        ])
        buffer = io.StringIO()
        df.to_csv(buffer, index=False)
        return buffer.getvalue()
