"""Shared fixtures: an in-memory app on a pinned clock with a fake room service."""
from datetime import datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from flexidual import create_app, db
from flexidual.models import (
    CampusAssignment, ClassGroup, ClassSession, Curriculum, Lesson,
    SessionStatus, SessionType, TeacherAssignment, User, UserRole
)
from flexidual.services.clock import FixedClock
from flexidual.services.room_names import generate_room_name
from flexidual.services.session_store import SessionStore
from flexidual.services.video_backend import VideoBackend
from flexidual.utils.errors import DispatchFailure, RoomFull

# Monday 2025-03-03 08:00 UTC
NOW = datetime(2025, 3, 3, 8, 0)


class FakeVideoBackend(VideoBackend):
    """In-process room service."""

    server_url = 'wss://video.test'

    def __init__(self):
        self.rooms = {}
        self.full = set()
        self.failing = False

    def ensure_room(self, room_name):
        if self.failing:
            raise DispatchFailure("Video back-end unreachable")
        if room_name in self.full:
            raise RoomFull(f"Room {room_name} is full")
        return self.rooms.setdefault(room_name, {'name': room_name, 'num_participants': 0})

    def issue_token(self, room_name, identity, name, role):
        return f'token:{room_name}:{identity}:{role}'


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def video():
    return FakeVideoBackend()


@pytest.fixture
def app(clock, video):
    """Create test app."""
    app = create_app('testing', clock=clock, video_backend=video)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def _user(subject, role, **profile):
    user = User(subject=subject, email=f'{subject}@flexidual.test', name=subject.title(),
                role=role, **profile)
    db.session.add(user)
    return user


@pytest.fixture
def data(app):
    """One campus, one curriculum, one class with two rostered students."""
    admin = _user('admin', UserRole.ADMIN)
    teacher = _user('teacher', UserRole.TEACHER, campus_id='north')
    other_teacher = _user('other-teacher', UserRole.TEACHER, campus_id='north')
    alice = _user('alice', UserRole.STUDENT, campus_id='north', grade_code='05', group_code='05-A')
    bob = _user('bob', UserRole.STUDENT, campus_id='north', grade_code='05', group_code='05-A')
    carol = _user('carol', UserRole.STUDENT, campus_id='north', grade_code='05', group_code='05-A')
    db.session.flush()

    curriculum = Curriculum(title='Math 5', code='MATH-05')
    db.session.add(curriculum)
    db.session.flush()
    lessons = [Lesson(curriculum_id=curriculum.id, title=f'Lesson {i}', order=i) for i in range(1, 4)]
    db.session.add_all(lessons)
    db.session.add(CampusAssignment(curriculum_id=curriculum.id, campus_id='north', grade_codes=['05']))
    db.session.add(TeacherAssignment(teacher_id=teacher.id, campus_id='north', curriculum_id=curriculum.id,
                                     assigned_group_codes=['A'], assigned_grades=[]))

    class_group = ClassGroup(name='Math 5A', curriculum_id=curriculum.id, teacher_id=teacher.id,
                             campus_id='north', group_code='A')
    class_group.students = [alice, bob]
    db.session.add(class_group)
    db.session.commit()

    return {
        'admin': admin,
        'teacher': teacher,
        'other_teacher': other_teacher,
        'alice': alice,
        'bob': bob,
        'carol': carol,
        'curriculum': curriculum,
        'lessons': lessons,
        'class': class_group
    }


@pytest.fixture
def make_session(data):
    """Insert a session directly, bypassing the scheduling rules."""
    def factory(start=NOW + timedelta(hours=1), minutes=60, lesson_ids=None,
                session_type=SessionType.NATIVE, status=SessionStatus.SCHEDULED, **extra):
        lesson_ids = lesson_ids if lesson_ids is not None else [data['lessons'][0].id]
        session = ClassSession(
            class_id=data['class'].id,
            title='Math 5A',
            scheduled_start=start,
            scheduled_end=start + timedelta(minutes=minutes),
            room_name=extra.pop('room_name', None) or generate_room_name(data['class'].id, lesson_ids, start),
            session_type=session_type,
            status=status,
            **extra
        )
        session.set_lessons(lesson_ids)
        return SessionStore.insert(session)
    return factory


@pytest.fixture
def auth_headers(app):
    """Bearer headers for a user, with the claims the identity provider sets."""
    def factory(user):
        token = create_access_token(
            identity=user.subject,
            additional_claims={'role': user.role.value, 'campus_id': user.campus_id}
        )
        return {'Authorization': f'Bearer {token}'}
    return factory
