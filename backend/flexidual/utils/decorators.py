"""Authorization decorators and identity helpers.

The identity provider is external: a verified JWT carries the opaque
subject as its identity plus ``role`` and ``campus_id`` claims. Nothing in
here validates or caches credentials beyond what Flask-JWT-Extended does.
"""
from dataclasses import dataclass
from functools import wraps
from typing import Optional

from flask import current_app
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from flexidual.models.user import User, UserRole
from flexidual.utils.errors import NotFound
from flexidual.utils.helpers import error_response

STAFF_ROLES = {UserRole.TEACHER, UserRole.TUTOR, UserRole.ADMIN, UserRole.SUPERADMIN}
ADMIN_ROLES = {UserRole.ADMIN, UserRole.SUPERADMIN}


@dataclass(frozen=True)
class Identity:
    """What the identity collaborator tells us about the caller."""
    subject: str
    role: Optional[UserRole]
    campus_id: Optional[str]


def current_identity() -> Identity:
    """Build the caller identity from the verified JWT."""
    claims = get_jwt()
    raw_role = claims.get(current_app.config.get('JWT_ROLE_CLAIM', 'role'))
    try:
        role = UserRole(raw_role) if raw_role else None
    except ValueError:
        role = None
    return Identity(
        subject=str(get_jwt_identity()),
        role=role,
        campus_id=claims.get(current_app.config.get('JWT_CAMPUS_CLAIM', 'campus_id'))
    )


def current_user() -> User:
    """Local user row for the caller."""
    user = User.query.filter_by(subject=str(get_jwt_identity())).first()
    if not user:
        raise NotFound("User not found")
    return user


def _role_required(allowed, message):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            verify_jwt_in_request()
            identity = current_identity()

            if identity.role not in allowed:
                return error_response(message, 403)

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def staff_required(f):
    """Decorator to require teacher, tutor or admin role."""
    return _role_required(STAFF_ROLES, "Teacher access required")(f)


def admin_required(f):
    """Decorator to require admin role."""
    return _role_required(ADMIN_ROLES, "Admin access required")(f)


def student_required(f):
    """Decorator to require student role."""
    return _role_required({UserRole.STUDENT}, "Student access required")(f)
