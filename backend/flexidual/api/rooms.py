"""Room dispatch API: what to render for a room name and how to join it."""
from flask import Blueprint, current_app
from flask_jwt_extended import jwt_required

from flexidual.models.user import UserRole
from flexidual.services.clock import get_clock
from flexidual.services.enrollment_service import EnrollmentService
from flexidual.services.room_dispatcher import RoomDispatcher
from flexidual.utils.decorators import current_user
from flexidual.utils.errors import Forbidden
from flexidual.utils.helpers import success_response

rooms_bp = Blueprint('rooms', __name__)


def _ensure_member(user, dispatch):
    """Session rooms are limited to the roster and the class staff; class rooms to their owners."""
    if user.is_admin():
        return
    session = dispatch.session
    if session is None:
        if not EnrollmentService.owns_room(user, dispatch.room_name):
            current_app.logger.warning('User %s denied room %s', user.id, dispatch.room_name)
            raise Forbidden("This room is not assigned to you")
        return
    class_group = session.class_group
    if user.role == UserRole.STUDENT:
        if not class_group.has_student(user.id):
            raise Forbidden("You are not enrolled in this class")
    elif not class_group.is_managed_by(user):
        raise Forbidden("You do not manage this class")


@rooms_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Rooms service is running')


@rooms_bp.route('/<room_name>', methods=['GET'])
@jwt_required()
def resolve_room(room_name):
    """Dispatch strategy for a room without issuing a join ticket."""
    now = get_clock().now()
    dispatch = RoomDispatcher.resolve(room_name, now)
    _ensure_member(current_user(), dispatch)
    return success_response(data=dispatch.to_dict(now))


@rooms_bp.route('/<room_name>/join', methods=['POST'])
@jwt_required()
def join_room(room_name):
    """Join a room: a portal descriptor or a video ticket."""
    user = current_user()
    now = get_clock().now()
    _ensure_member(user, RoomDispatcher.resolve(room_name, now))

    result = RoomDispatcher.join(room_name, user, now)
    return success_response(data=result, message='Join granted')
