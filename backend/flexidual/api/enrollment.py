"""Enrollment API: which class rooms a user sees, roster management."""
from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from flexidual.services.enrollment_service import EnrollmentService
from flexidual.services.scheduling_service import SchedulingService
from flexidual.utils.decorators import current_user, staff_required, student_required
from flexidual.utils.helpers import success_response
from flexidual.utils.validators import Validator

enrollment_bp = Blueprint('enrollment', __name__)


@enrollment_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return success_response(message='Enrollment service is running')


@enrollment_bp.route('/my-classes', methods=['GET'])
@jwt_required()
@student_required
def my_classes():
    """Classes whose roster and profile agree on one room."""
    return success_response(data=EnrollmentService.my_classes(current_user()))


@enrollment_bp.route('/curriculums/<int:curriculum_id>/room', methods=['GET'])
@jwt_required()
@student_required
def resolve_room(curriculum_id):
    room_name = EnrollmentService.resolve_room(current_user(), curriculum_id)
    return success_response(data={'curriculum_id': curriculum_id, 'room_name': room_name})


@enrollment_bp.route('/teacher-classes', methods=['GET'])
@jwt_required()
@staff_required
def teacher_classes():
    return success_response(data=EnrollmentService.teacher_classes(current_user()))


@enrollment_bp.route('/classes/<int:class_id>/students', methods=['GET'])
@jwt_required()
@staff_required
def list_students(class_id):
    class_group = EnrollmentService.get_class(class_id)
    SchedulingService.ensure_can_manage(current_user(), class_group)
    return success_response(data=[s.to_dict() for s in sorted(class_group.students, key=lambda s: s.name)])


@enrollment_bp.route('/classes/<int:class_id>/students', methods=['POST'])
@jwt_required()
@staff_required
def add_student(class_id):
    data = Validator.require_fields(request.get_json(silent=True), ['student_id'])
    class_group = EnrollmentService.get_class(class_id)
    SchedulingService.ensure_can_manage(current_user(), class_group)
    student = EnrollmentService.add_student(class_group, int(data['student_id']))
    return success_response(data=student.to_dict(), message='Student enrolled', status_code=201)


@enrollment_bp.route('/classes/<int:class_id>/students/<int:student_id>', methods=['DELETE'])
@jwt_required()
@staff_required
def remove_student(class_id, student_id):
    class_group = EnrollmentService.get_class(class_id)
    SchedulingService.ensure_can_manage(current_user(), class_group)
    EnrollmentService.remove_student(class_group, student_id)
    return success_response(message='Student removed')
