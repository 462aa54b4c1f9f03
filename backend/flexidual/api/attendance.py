"""Attendance API: heartbeats in, per-session summaries out."""
from flask import Blueprint, Response, current_app, request
from flask_jwt_extended import get_jwt_identity, jwt_required, verify_jwt_in_request
from flask_limiter.util import get_remote_address

from flexidual import limiter
from flexidual.models.user import UserRole
from flexidual.services.attendance_service import AttendanceService
from flexidual.services.scheduling_service import SchedulingService
from flexidual.services.session_store import SessionStore
from flexidual.utils.decorators import admin_required, current_user, staff_required, student_required
from flexidual.utils.errors import Forbidden
from flexidual.utils.helpers import success_response
from flexidual.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)


def _heartbeat_limit():
    return current_app.config.get('HEARTBEAT_RATE_LIMIT', '10 per minute')


def _heartbeat_key():
    # a classroom shares one address; limit per student instead
    verify_jwt_in_request(optional=True)
    identity = get_jwt_identity()
    return f'student:{identity}' if identity else get_remote_address()


def _timestamp(data):
    value = data.get('timestamp')
    return Validator.parse_datetime(value, 'timestamp') if value is not None else None


def _managed_session(session_id):
    session = SessionStore.get(session_id)
    SchedulingService.ensure_can_manage(current_user(), session.class_group)
    return session


@attendance_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Attendance service is running')


@attendance_bp.route('/heartbeat', methods=['POST'])
@limiter.limit(_heartbeat_limit, key_func=_heartbeat_key)
@jwt_required()
@student_required
def heartbeat():
    """Presence ping from a student in a session room."""
    data = Validator.require_fields(request.get_json(silent=True), ['session_id'])
    student = current_user()
    session = SessionStore.get(data['session_id'])
    if not session.class_group.has_student(student.id):
        current_app.logger.warning('Heartbeat from unrostered student %s in session %s',
                                   student.id, session.id)

    record = AttendanceService.on_heartbeat(session.id, student.id, _timestamp(data))
    return success_response(data=record.to_dict(), message='Heartbeat recorded')


@attendance_bp.route('/leave', methods=['POST'])
@jwt_required()
@student_required
def leave():
    data = Validator.require_fields(request.get_json(silent=True), ['session_id'])
    record = AttendanceService.on_leave(data['session_id'], current_user().id, _timestamp(data))
    return success_response(data=record.to_dict() if record else None, message='Leave recorded')


@attendance_bp.route('/sessions/<int:session_id>/summary', methods=['GET'])
@jwt_required()
@staff_required
def session_summary(session_id):
    _managed_session(session_id)
    return success_response(data=AttendanceService.summarize(session_id))


@attendance_bp.route('/sessions/<int:session_id>/export', methods=['GET'])
@jwt_required()
@staff_required
def export_session(session_id):
    """Per-student summary as CSV."""
    session = _managed_session(session_id)
    csv_data = AttendanceService.export_summary_csv(session_id)
    return Response(
        csv_data,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename=attendance_{session.room_name}.csv'}
    )


@attendance_bp.route('/students/<int:student_id>/history', methods=['GET'])
@jwt_required()
def student_history(student_id):
    """Students see their own history; staff see anyone's."""
    user = current_user()
    if user.role == UserRole.STUDENT and user.id != student_id:
        raise Forbidden("Students can only view their own attendance")

    records = AttendanceService.student_history(student_id)
    return success_response(data=[r.to_dict() for r in records])


@attendance_bp.route('/sweep', methods=['POST'])
@jwt_required()
@admin_required
def sweep():
    """Close intervals whose heartbeats went stale."""
    closed = AttendanceService.sweep_stale()
    return success_response(data={'closed': closed}, message=f'Closed {closed} stale intervals')
