"""Models package with all models."""
from .base import BaseModel
from .user import User, UserRole
from .curriculum import Curriculum, CampusAssignment, TeacherAssignment
from .lesson import Lesson
from .class_group import ClassGroup, class_students
from .class_session import ClassSession, SessionLesson, SessionStatus, SessionType
from .attendance import AttendanceRecord, AttendanceOpenSlot

__all__ = [
    'BaseModel', 'User', 'UserRole',
    'Curriculum', 'CampusAssignment', 'TeacherAssignment',
    'Lesson', 'ClassGroup', 'class_students',
    'ClassSession', 'SessionLesson', 'SessionStatus', 'SessionType',
    'AttendanceRecord', 'AttendanceOpenSlot'
]
