"""User model mirrored from the identity provider."""
from enum import Enum
from flexidual import db
from flexidual.models.base import BaseModel


class UserRole(Enum):
    """User roles enumeration."""
    STUDENT = 'student'
    TEACHER = 'teacher'
    TUTOR = 'tutor'
    ADMIN = 'admin'
    SUPERADMIN = 'superadmin'


class User(BaseModel):
    """Local profile for an identity-provider subject."""

    __tablename__ = 'users'

    # Identity provider subject (opaque)
    subject = db.Column(db.String(255), unique=True, nullable=False, index=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.STUDENT)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Student profile used by the campus/grade/group matching
    campus_id = db.Column(db.String(64), nullable=True, index=True)
    grade_code = db.Column(db.String(32), nullable=True)
    group_code = db.Column(db.String(32), nullable=True)

    def is_staff(self) -> bool:
        """Check if user can manage classes."""
        return self.role in [UserRole.TEACHER, UserRole.TUTOR, UserRole.ADMIN, UserRole.SUPERADMIN]

    def is_admin(self) -> bool:
        return self.role in [UserRole.ADMIN, UserRole.SUPERADMIN]

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'id': self.id,
            'subject': self.subject,
            'email': self.email,
            'name': self.name,
            'role': self.role.value,
            'campus_id': self.campus_id,
            'grade_code': self.grade_code,
            'group_code': self.group_code,
            'is_active': self.is_active
        }

    def __repr__(self):
        return f'<User {self.email}>'
