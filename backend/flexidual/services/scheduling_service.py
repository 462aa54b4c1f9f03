"""Scheduling operations: single sessions, series, edits and transitions."""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from flexidual import db
from flexidual.models.class_group import ClassGroup
from flexidual.models.class_session import ClassSession, SessionStatus, SessionType
from flexidual.models.lesson import Lesson
from flexidual.models.user import User, UserRole
from flexidual.services.attendance_service import AttendanceService
from flexidual.services.clock import get_clock
from flexidual.services.lifecycle import LifecycleService, derive_status, derive_view
from flexidual.services.recurrence import RecurrenceRule, expand
from flexidual.services.room_names import generate_room_name
from flexidual.services.session_store import SessionStore
from flexidual.utils.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from flexidual.utils.validators import Validator

SCOPES = ('this', 'following', 'series')


class SchedulingService:
    """Service for scheduling class sessions."""

    @staticmethod
    def load_class(class_id: int) -> ClassGroup:
        class_group = db.session.get(ClassGroup, class_id)
        if class_group is None:
            raise NotFound("Class not found")
        return class_group

    @staticmethod
    def ensure_can_manage(user: User, class_group: ClassGroup) -> None:
        if not class_group.is_managed_by(user):
            raise Forbidden("Only administrators or the class teacher can manage this schedule")

    @staticmethod
    def validate_lessons(class_group: ClassGroup, lesson_ids: List[int]) -> List[int]:
        for lesson_id in lesson_ids:
            lesson = db.session.get(Lesson, lesson_id)
            if lesson is None:
                raise NotFound(f"Lesson {lesson_id} not found")
            if lesson.curriculum_id != class_group.curriculum_id:
                raise ValidationError("Lesson does not belong to this class's curriculum")
        return lesson_ids

    @staticmethod
    def parse_session_type(value: Optional[str]) -> SessionType:
        if value is None:
            return SessionType.NATIVE
        try:
            return SessionType(value)
        except ValueError:
            raise ValidationError(f"Unknown session type: {value}")

    @staticmethod
    def create_session(user: User, class_id: int, start: datetime, end: datetime,
                       lesson_ids: List[int] = None, session_type: SessionType = SessionType.NATIVE,
                       title: str = None, description: str = None, timezone: str = None) -> ClassSession:
        """Schedule a one-off session."""
        class_group = SchedulingService.load_class(class_id)
        SchedulingService.ensure_can_manage(user, class_group)
        Validator.validate_window(start, end)
        lesson_ids = SchedulingService.validate_lessons(class_group, lesson_ids or [])

        session = ClassSession(
            class_id=class_id,
            title=title,
            description=description,
            scheduled_start=start,
            scheduled_end=end,
            timezone=Validator.validate_timezone(timezone or current_app.config['DEFAULT_TIMEZONE']),
            room_name=generate_room_name(class_id, lesson_ids, start),
            session_type=session_type,
            status=SessionStatus.SCHEDULED,
            is_recurring=False,
            created_by=user.id
        )
        session.set_lessons(lesson_ids)
        SessionStore.insert(session)
        current_app.logger.info('Session %s scheduled for class %s', session.id, class_id)
        return session

    @staticmethod
    def create_series(user: User, class_id: int, rule: RecurrenceRule, lesson_ids: List[int] = None,
                      session_type: SessionType = SessionType.NATIVE, title: str = None,
                      description: str = None) -> Tuple[ClassSession, List[ClassSession]]:
        """Materialize a recurrence rule; every instance points at the anchor."""
        class_group = SchedulingService.load_class(class_id)
        SchedulingService.ensure_can_manage(user, class_group)
        lesson_ids = SchedulingService.validate_lessons(class_group, lesson_ids or [])

        occurrences = expand(rule, current_app.config.get('RECURRENCE_MAX_OCCURRENCES', 52))
        if not occurrences:
            raise ValidationError("No valid occurrences generated")

        sessions = []
        anchor = None
        for occurrence in occurrences:
            session = ClassSession(
                class_id=class_id,
                title=title,
                description=description,
                scheduled_start=occurrence.start,
                scheduled_end=occurrence.end,
                timezone=rule.timezone,
                room_name=generate_room_name(class_id, lesson_ids, occurrence.start),
                session_type=session_type,
                status=SessionStatus.SCHEDULED,
                is_recurring=True,
                created_by=user.id
            )
            session.set_lessons(lesson_ids)
            SessionStore.insert(session, commit=False)
            if anchor is None:
                anchor = session
                anchor.recurrence_rule = rule.to_dict()
            session.recurrence_parent_id = anchor.id
            sessions.append(session)

        db.session.commit()
        current_app.logger.info('Series %s created with %d sessions for class %s',
                                anchor.id, len(sessions), class_id)
        return anchor, sessions

    @staticmethod
    def scope_members(session: ClassSession, scope: str) -> List[ClassSession]:
        """Instances addressed by an edit/cancel scope, grouped by recurrence parent."""
        if scope not in SCOPES:
            raise ValidationError(f"Scope must be one of: {', '.join(SCOPES)}")
        if scope == 'this' or session.recurrence_parent_id is None:
            return [session]

        members = SessionStore.list_by_recurrence_parent(session.recurrence_parent_id)
        if scope == 'following':
            members = [m for m in members if m.scheduled_start >= session.scheduled_start]
        return members

    @staticmethod
    def update_session(user: User, session_id: int, changes: Dict[str, Any], scope: str = 'this') -> Dict:
        """Edit times, lessons or metadata of one instance or part of its series."""
        now = get_clock().now()
        session = SessionStore.get(session_id)
        class_group = SchedulingService.load_class(session.class_id)
        SchedulingService.ensure_can_manage(user, class_group)

        new_start = changes.get('scheduled_start', session.scheduled_start)
        new_end = changes.get('scheduled_end', session.scheduled_end)
        Validator.validate_window(new_start, new_end)
        shift = new_start - session.scheduled_start
        duration = new_end - new_start

        restricted = any(key in changes for key in ('scheduled_start', 'scheduled_end', 'lesson_ids'))
        if 'lesson_ids' in changes:
            SchedulingService.validate_lessons(class_group, changes['lesson_ids'])
        metadata = {key: changes[key] for key in ('title', 'description') if key in changes}

        members = SchedulingService.scope_members(session, scope)
        if scope == 'this' and restricted:
            LifecycleService.ensure_editable(session, now)

        updated, skipped = [], []
        for member in members:
            fields = dict(metadata)
            if restricted:
                if derive_status(member, now) != SessionStatus.SCHEDULED:
                    skipped.append(member.id)
                    continue
                member_start = member.scheduled_start + shift
                fields['scheduled_start'] = member_start
                fields['scheduled_end'] = member_start + duration
                if 'lesson_ids' in changes:
                    fields['lesson_ids'] = changes['lesson_ids']
            if fields:
                SessionStore.patch(member.id, fields, commit=False)
                updated.append(member.id)

        db.session.commit()
        return {'scope': scope, 'updated': updated, 'skipped': skipped}

    @staticmethod
    def cancel_session(user: User, session_id: int, scope: str = 'this', reason: str = None) -> Dict:
        now = get_clock().now()
        session = SessionStore.get(session_id)
        SchedulingService.ensure_can_manage(user, SchedulingService.load_class(session.class_id))

        if scope == 'this':
            LifecycleService.cancel(session, reason, now)
            return {'scope': scope, 'cancelled': [session.id], 'skipped': []}

        cancelled, skipped = [], []
        for member in SchedulingService.scope_members(session, scope):
            if derive_status(member, now) != SessionStatus.SCHEDULED:
                skipped.append(member.id)
                continue
            LifecycleService.cancel(member, reason, now, commit=False)
            cancelled.append(member.id)
        db.session.commit()
        return {'scope': scope, 'cancelled': cancelled, 'skipped': skipped}

    @staticmethod
    def reschedule(user: User, session_id: int, start: datetime, end: datetime) -> ClassSession:
        """New scheduled instance replacing a cancelled one."""
        now = get_clock().now()
        original = SessionStore.get(session_id)
        SchedulingService.ensure_can_manage(user, SchedulingService.load_class(original.class_id))
        status = derive_status(original, now)
        if status != SessionStatus.CANCELLED:
            raise InvalidTransition("Only cancelled sessions can be rescheduled", status.value)
        Validator.validate_window(start, end)

        keep_link = current_app.config.get('RESCHEDULE_KEEPS_RECURRENCE_LINK', True)
        parent_id = original.recurrence_parent_id if keep_link else None

        session = ClassSession(
            class_id=original.class_id,
            title=original.title,
            description=original.description,
            scheduled_start=start,
            scheduled_end=end,
            timezone=original.timezone,
            room_name=generate_room_name(original.class_id, original.lesson_ids, start),
            session_type=original.session_type,
            status=SessionStatus.SCHEDULED,
            is_recurring=parent_id is not None,
            recurrence_parent_id=parent_id,
            created_by=user.id
        )
        session.set_lessons(original.lesson_ids)
        SessionStore.insert(session)
        current_app.logger.info('Session %s rescheduled as %s', original.id, session.id)
        return session

    @staticmethod
    def start_session(user: User, session_id: int):
        session = SessionStore.get(session_id)
        SchedulingService.ensure_can_manage(user, SchedulingService.load_class(session.class_id))
        return session, LifecycleService.start(session)

    @staticmethod
    def end_session(user: User, session_id: int):
        """Complete a live session and finalize its attendance."""
        now = get_clock().now()
        session = SessionStore.get(session_id)
        SchedulingService.ensure_can_manage(user, SchedulingService.load_class(session.class_id))
        view = LifecycleService.end(session, now)
        closed = AttendanceService.finalize_session(session, now)
        return session, view, closed

    @staticmethod
    def session_status(key: str) -> Dict:
        """Join status by room name, falling back to a numeric id."""
        now = get_clock().now()
        session = SessionStore.get_by_room_name(key)
        if session is None and key.isdigit():
            session = SessionStore.find(int(key))
        if session is None:
            raise NotFound("Session not found")

        config = current_app.config
        view = derive_view(session, now)
        window_start = session.scheduled_start - timedelta(minutes=config.get('JOIN_EARLY_MINUTES', 10))
        window_end = session.scheduled_end + timedelta(minutes=config.get('JOIN_LATE_MINUTES', 5))
        return {
            'session_id': session.id,
            'room_name': session.room_name,
            'status': view.status.value,
            'is_live': view.is_live,
            'start': session.scheduled_start.isoformat(),
            'end': session.scheduled_end.isoformat(),
            'join_window': {'opens': window_start.isoformat(), 'closes': window_end.isoformat()},
            'can_join': view.status in (SessionStatus.SCHEDULED, SessionStatus.ACTIVE)
                        and window_start <= now < session.scheduled_end
        }

    @staticmethod
    def visible_classes(user: User, teacher_id: int = None) -> List[ClassGroup]:
        query = ClassGroup.query.filter_by(is_active=True)
        if user.is_admin():
            if teacher_id:
                query = query.filter_by(teacher_id=teacher_id)
            return query.all()
        if user.role in (UserRole.TEACHER, UserRole.TUTOR):
            return query.filter((ClassGroup.teacher_id == user.id) | (ClassGroup.tutor_id == user.id)).all()
        return list(user.enrolled_classes.filter_by(is_active=True))

    @staticmethod
    def my_schedule(user: User, start: datetime = None, end: datetime = None,
                    status: str = None, teacher_id: int = None) -> List[Dict]:
        """Role-aware schedule with derived statuses, sorted by start."""
        now = get_clock().now()
        classes = {c.id: c for c in SchedulingService.visible_classes(user, teacher_id)}
        sessions = SessionStore.list_by_time_range(start, end, list(classes))

        items = []
        for session in sessions:
            view = derive_view(session, now)
            if status and view.status.value != status:
                continue
            class_group = classes[session.class_id]
            data = session.to_dict(view)
            data.update({
                'class_name': class_group.name,
                'curriculum_title': class_group.curriculum.title if class_group.curriculum else None,
                'teacher_name': class_group.teacher.name if class_group.teacher else None
            })
            items.append(data)
        return items

    @staticmethod
    def used_lessons(class_id: int) -> List[int]:
        SchedulingService.load_class(class_id)
        used = []
        for session in SessionStore.list_by_class(class_id):
            for lesson_id in session.lesson_ids:
                if lesson_id not in used:
                    used.append(lesson_id)
        return used
