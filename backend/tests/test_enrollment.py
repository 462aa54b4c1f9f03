"""Enrollment resolution tests."""
import pytest

from flexidual import db
from flexidual.models import TeacherAssignment
from flexidual.services.enrollment_service import (
    Conflict, EnrollmentService, Resolved, Unresolved, build_class_room_name, normalize_group_suffix, reconcile
)
from flexidual.utils.errors import EnrollmentMismatch, NotFound


def assignment_for(data):
    return TeacherAssignment.query.filter_by(teacher_id=data['teacher'].id).one()


@pytest.mark.parametrize('code, suffix', [('05-A', 'A'), ('A', 'A'), ('grade-5-B', 'B')])
def test_group_suffix(code, suffix):
    assert normalize_group_suffix(code) == suffix


def test_reconcile_rules():
    assert reconcile(['MATH-05-A'], 'MATH-05-A') == Resolved('MATH-05-A')
    assert isinstance(reconcile(['MATH-05-A'], None), Unresolved)
    assert isinstance(reconcile(None, 'MATH-05-A'), Unresolved)
    assert reconcile(['MATH-05-A'], 'MATH-05-B') == Conflict('MATH-05-A', 'MATH-05-B')
    assert isinstance(reconcile(['MATH-05-A', 'MATH-05-B'], 'MATH-05-A'), Conflict)


def test_room_name_uses_curriculum_code(data):
    assert build_class_room_name(data['curriculum'], '05-A') == 'MATH-05-A'
    assert build_class_room_name(data['curriculum'], None) is None


def test_both_paths_agree(data):
    result = EnrollmentService.resolve(data['alice'], data['curriculum'])
    assert result == Resolved('MATH-05-A')
    assert EnrollmentService.resolve_room(data['alice'], data['curriculum'].id) == 'MATH-05-A'


def test_my_classes_lists_resolved_class(data):
    classes = EnrollmentService.my_classes(data['alice'])
    assert len(classes) == 1
    assert classes[0]['room_name'] == 'MATH-05-A'
    assert classes[0]['class_id'] == data['class'].id
    assert classes[0]['teacher']['id'] == data['teacher'].id


def test_no_teacher_assignment_means_no_class(data):
    assignment = assignment_for(data)
    assignment.is_active = False
    db.session.commit()

    result = EnrollmentService.resolve(data['alice'], data['curriculum'])
    assert isinstance(result, Unresolved)
    assert EnrollmentService.my_classes(data['alice']) == []
    with pytest.raises(NotFound):
        EnrollmentService.resolve_room(data['alice'], data['curriculum'].id)


def test_grade_outside_campus_assignment_is_unresolved(data):
    data['alice'].grade_code = '06'
    db.session.commit()
    assert isinstance(EnrollmentService.resolve(data['alice'], data['curriculum']), Unresolved)


def test_profile_match_without_roster_is_unresolved(data):
    result = EnrollmentService.resolve(data['carol'], data['curriculum'])
    assert isinstance(result, Unresolved)
    assert EnrollmentService.my_classes(data['carol']) == []


def test_disagreeing_paths_conflict(data):
    assignment = assignment_for(data)
    assignment.assigned_group_codes = ['A', 'B']
    data['bob'].group_code = '05-B'
    db.session.commit()

    result = EnrollmentService.resolve(data['bob'], data['curriculum'])
    assert result == Conflict(explicit_room='MATH-05-A', dynamic_room='MATH-05-B')
    assert EnrollmentService.my_classes(data['bob']) == []

    with pytest.raises(EnrollmentMismatch) as exc:
        EnrollmentService.resolve_room(data['bob'], data['curriculum'].id)
    assert exc.value.to_dict()['dynamic_room'] == 'MATH-05-B'


def test_teacher_classes_one_room_per_group(data):
    assignment = assignment_for(data)
    assignment.assigned_group_codes = ['A', 'B']
    db.session.commit()

    rooms = [c['room_name'] for c in EnrollmentService.teacher_classes(data['teacher'])]
    assert rooms == ['MATH-05-A', 'MATH-05-B']
    assert EnrollmentService.teacher_classes(data['other_teacher']) == []


def test_my_classes_endpoint(client, data, auth_headers):
    response = client.get('/api/enrollment/my-classes', headers=auth_headers(data['alice']))
    assert response.status_code == 200
    assert [c['room_name'] for c in response.get_json()['data']] == ['MATH-05-A']

    response = client.get('/api/enrollment/my-classes', headers=auth_headers(data['teacher']))
    assert response.status_code == 403


def test_conflict_endpoint_reports_both_rooms(client, data, auth_headers):
    assignment = assignment_for(data)
    assignment.assigned_group_codes = ['A', 'B']
    data['bob'].group_code = '05-B'
    db.session.commit()

    response = client.get(f"/api/enrollment/curriculums/{data['curriculum'].id}/room",
                          headers=auth_headers(data['bob']))
    assert response.status_code == 409
    body = response.get_json()
    assert body['explicit_room'] == 'MATH-05-A'
    assert body['dynamic_room'] == 'MATH-05-B'


def test_roster_management(client, data, auth_headers):
    class_id = data['class'].id
    carol_id = data['carol'].id
    headers = auth_headers(data['teacher'])

    response = client.post(f'/api/enrollment/classes/{class_id}/students', json={'student_id': carol_id},
                           headers=headers)
    assert response.status_code == 201
    assert data['class'].has_student(carol_id)

    response = client.get(f'/api/enrollment/classes/{class_id}/students', headers=headers)
    assert [s['name'] for s in response.get_json()['data']] == ['Alice', 'Bob', 'Carol']

    response = client.delete(f'/api/enrollment/classes/{class_id}/students/{carol_id}', headers=headers)
    assert response.status_code == 200
    assert not data['class'].has_student(carol_id)


def test_roster_management_restricted_to_class_staff(client, data, auth_headers):
    class_id = data['class'].id
    response = client.post(f'/api/enrollment/classes/{class_id}/students',
                           json={'student_id': data['carol'].id},
                           headers=auth_headers(data['other_teacher']))
    assert response.status_code == 403

    response = client.post(f'/api/enrollment/classes/{class_id}/students',
                           json={'student_id': data['teacher'].id},
                           headers=auth_headers(data['admin']))
    assert response.status_code == 400


def test_room_ownership(data):
    assert EnrollmentService.owns_room(data['alice'], 'MATH-05-A')
    assert not EnrollmentService.owns_room(data['carol'], 'MATH-05-A')
    assert not EnrollmentService.owns_room(data['alice'], 'MATH-05-B')
    assert EnrollmentService.owns_room(data['teacher'], 'MATH-05-A')
    assert not EnrollmentService.owns_room(data['other_teacher'], 'MATH-05-A')
    assert EnrollmentService.owns_room(data['admin'], 'anything')
