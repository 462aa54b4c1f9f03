"""Session scheduling API."""
from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required

from flexidual.services.clock import get_clock
from flexidual.services.lifecycle import LifecycleService
from flexidual.services.recurrence import RecurrenceRule
from flexidual.services.scheduling_service import SchedulingService
from flexidual.services.session_store import SessionStore
from flexidual.utils.decorators import current_user, staff_required
from flexidual.utils.errors import NotFound
from flexidual.utils.helpers import success_response
from flexidual.utils.validators import Validator

sessions_bp = Blueprint('sessions', __name__)


def _view_dict(session):
    return session.to_dict(LifecycleService.view(session))


def _range_args():
    start = request.args.get('from')
    end = request.args.get('to')
    return (
        Validator.parse_datetime(start, 'from') if start else None,
        Validator.parse_datetime(end, 'to') if end else None
    )


@sessions_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Sessions service is running')


@sessions_bp.route('/', methods=['GET'])
@jwt_required()
def get_my_schedule():
    """Role-based schedule with derived statuses."""
    user = current_user()
    start, end = _range_args()
    items = SchedulingService.my_schedule(
        user,
        start=start,
        end=end,
        status=request.args.get('status'),
        teacher_id=request.args.get('teacher_id', type=int)
    )
    return success_response(data=items)


@sessions_bp.route('/', methods=['POST'])
@jwt_required()
@staff_required
def create_session():
    """Schedule a single session."""
    data = Validator.require_fields(request.get_json(silent=True),
                                    ['class_id', 'scheduled_start', 'scheduled_end'])
    session = SchedulingService.create_session(
        current_user(),
        class_id=data['class_id'],
        start=Validator.parse_datetime(data['scheduled_start'], 'scheduled_start'),
        end=Validator.parse_datetime(data['scheduled_end'], 'scheduled_end'),
        lesson_ids=Validator.validate_int_list(data.get('lesson_ids'), 'lesson_ids'),
        session_type=SchedulingService.parse_session_type(data.get('session_type')),
        title=data.get('title'),
        description=data.get('description'),
        timezone=data.get('timezone')
    )
    return success_response(data=_view_dict(session), message='Session scheduled', status_code=201)


@sessions_bp.route('/recurring', methods=['POST'])
@jwt_required()
@staff_required
def create_recurring_sessions():
    """Create a weekly series from a recurrence rule."""
    data = Validator.require_fields(request.get_json(silent=True), ['class_id', 'recurrence'])
    rule = RecurrenceRule.from_payload(data['recurrence'], current_app.config['DEFAULT_TIMEZONE'])
    anchor, sessions = SchedulingService.create_series(
        current_user(),
        class_id=data['class_id'],
        rule=rule,
        lesson_ids=Validator.validate_int_list(data.get('lesson_ids'), 'lesson_ids'),
        session_type=SchedulingService.parse_session_type(data.get('session_type')),
        title=data.get('title'),
        description=data.get('description')
    )
    return success_response(
        data={
            'recurrence_parent_id': anchor.id,
            'total_occurrences': len(sessions),
            'sessions': [_view_dict(s) for s in sessions]
        },
        message=f'{len(sessions)} sessions created',
        status_code=201
    )


@sessions_bp.route('/<int:session_id>', methods=['GET'])
@jwt_required()
def get_session(session_id):
    return success_response(data=_view_dict(SessionStore.get(session_id)))


@sessions_bp.route('/room/<room_name>', methods=['GET'])
@jwt_required()
def get_session_by_room(room_name):
    session = SessionStore.get_by_room_name(room_name)
    if session is None:
        raise NotFound("Session not found")
    return success_response(data=_view_dict(session))


@sessions_bp.route('/status/<key>', methods=['GET'])
@jwt_required()
def get_session_status(key):
    """Join status by room name or session id."""
    return success_response(data=SchedulingService.session_status(key))


@sessions_bp.route('/class/<int:class_id>', methods=['GET'])
@jwt_required()
def list_class_sessions(class_id):
    SchedulingService.load_class(class_id)
    now = get_clock().now()
    sessions = SessionStore.list_by_class(class_id)
    return success_response(data=[s.to_dict(LifecycleService.view(s, now)) for s in sessions])


@sessions_bp.route('/class/<int:class_id>/used-lessons', methods=['GET'])
@jwt_required()
@staff_required
def get_used_lessons(class_id):
    return success_response(data=SchedulingService.used_lessons(class_id))


@sessions_bp.route('/range', methods=['GET'])
@jwt_required()
@staff_required
def list_sessions_in_range():
    """All sessions starting inside [from, to]."""
    start, end = _range_args()
    now = get_clock().now()
    sessions = SessionStore.list_by_time_range(start, end)
    return success_response(data=[s.to_dict(LifecycleService.view(s, now)) for s in sessions])


@sessions_bp.route('/<int:session_id>', methods=['PATCH'])
@jwt_required()
@staff_required
def update_session(session_id):
    """Edit one instance, the following ones, or the whole series."""
    data = request.get_json(silent=True) or {}
    changes = {}
    if 'scheduled_start' in data:
        changes['scheduled_start'] = Validator.parse_datetime(data['scheduled_start'], 'scheduled_start')
    if 'scheduled_end' in data:
        changes['scheduled_end'] = Validator.parse_datetime(data['scheduled_end'], 'scheduled_end')
    if 'lesson_ids' in data:
        changes['lesson_ids'] = Validator.validate_int_list(data['lesson_ids'], 'lesson_ids')
    for key in ('title', 'description'):
        if key in data:
            changes[key] = data[key]

    result = SchedulingService.update_session(current_user(), session_id, changes,
                                              scope=data.get('scope', 'this'))
    return success_response(data=result, message='Session updated')


@sessions_bp.route('/<int:session_id>/cancel', methods=['POST'])
@jwt_required()
@staff_required
def cancel_session(session_id):
    data = request.get_json(silent=True) or {}
    result = SchedulingService.cancel_session(current_user(), session_id,
                                              scope=data.get('scope', 'this'),
                                              reason=data.get('reason'))
    return success_response(data=result, message='Session cancelled')


@sessions_bp.route('/<int:session_id>/reschedule', methods=['POST'])
@jwt_required()
@staff_required
def reschedule_session(session_id):
    data = Validator.require_fields(request.get_json(silent=True), ['scheduled_start', 'scheduled_end'])
    session = SchedulingService.reschedule(
        current_user(),
        session_id,
        Validator.parse_datetime(data['scheduled_start'], 'scheduled_start'),
        Validator.parse_datetime(data['scheduled_end'], 'scheduled_end')
    )
    return success_response(data=_view_dict(session), message='Session rescheduled', status_code=201)


@sessions_bp.route('/<int:session_id>/start', methods=['POST'])
@jwt_required()
@staff_required
def start_session(session_id):
    session, view = SchedulingService.start_session(current_user(), session_id)
    return success_response(data=session.to_dict(view), message='Session started')


@sessions_bp.route('/<int:session_id>/end', methods=['POST'])
@jwt_required()
@staff_required
def end_session(session_id):
    """End a live session; open attendance intervals are closed."""
    session, view, closed = SchedulingService.end_session(current_user(), session_id)
    data = session.to_dict(view)
    data['closed_attendance'] = closed
    return success_response(data=data, message='Session completed')
