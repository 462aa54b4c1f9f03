"""Which students see which class rooms.

Two independent paths produce a room name for (student, curriculum):

* explicit: the student is on the roster of a class following the
  curriculum; the room comes from that class's group code;
* dynamic: the student's campus/grade/group profile matches a campus
  assignment and an active teacher assignment.

``reconcile`` combines them into a tagged result and never guesses: a
room is returned only when both paths agree on it.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from flask import current_app

from flexidual import db
from flexidual.models.class_group import ClassGroup
from flexidual.models.curriculum import CampusAssignment, Curriculum, TeacherAssignment
from flexidual.models.user import User, UserRole
from flexidual.utils.errors import EnrollmentMismatch, NotFound, ValidationError


@dataclass(frozen=True)
class Resolved:
    room_name: str


@dataclass(frozen=True)
class Unresolved:
    reason: str


@dataclass(frozen=True)
class Conflict:
    explicit_room: str
    dynamic_room: str


ResolutionResult = Union[Resolved, Unresolved, Conflict]


def normalize_group_suffix(group_code: str) -> str:
    """Group "05-A" and group "A" share the suffix "A"."""
    return group_code.split('-')[-1] if '-' in group_code else group_code


def build_class_room_name(curriculum: Curriculum, group_code: Optional[str]) -> Optional[str]:
    if not group_code:
        return None
    return f"{curriculum.room_prefix}-{normalize_group_suffix(group_code)}"


def explicit_rooms(student: User, curriculum: Curriculum) -> Optional[List[str]]:
    """Rooms of the active roster classes of this curriculum containing the student."""
    classes = ClassGroup.query.filter_by(curriculum_id=curriculum.id, is_active=True).all()
    rooms = []
    for class_group in classes:
        if class_group.has_student(student.id):
            room = build_class_room_name(curriculum, class_group.group_code)
            if room and room not in rooms:
                rooms.append(room)
    return rooms or None


def matching_assignment(student: User, curriculum: Curriculum) -> Optional[TeacherAssignment]:
    if not student.campus_id or not student.grade_code or not student.group_code:
        return None
    if student.grade_code not in curriculum.grades_for_campus(student.campus_id):
        return None

    assignments = TeacherAssignment.query.filter_by(
        campus_id=student.campus_id,
        curriculum_id=curriculum.id,
        is_active=True
    ).order_by(TeacherAssignment.id).all()
    for assignment in assignments:
        if assignment.covers(student.grade_code, student.group_code):
            return assignment
    return None


def dynamic_room(student: User, curriculum: Curriculum) -> Optional[str]:
    if matching_assignment(student, curriculum) is None:
        return None
    return build_class_room_name(curriculum, student.group_code)


def reconcile(explicit: Optional[List[str]], dynamic: Optional[str]) -> ResolutionResult:
    if dynamic is None:
        return Unresolved('no teacher assignment matches the student profile')
    if not explicit:
        return Unresolved('student is not on a class roster')
    if len(explicit) > 1 or explicit[0] != dynamic:
        return Conflict(explicit_room=', '.join(explicit), dynamic_room=dynamic)
    return Resolved(dynamic)


class EnrollmentService:
    """Student-facing class views and roster management."""

    @staticmethod
    def candidate_curriculums(student: User) -> List[Curriculum]:
        ids = {c.curriculum_id for c in student.enrolled_classes.filter_by(is_active=True)}
        if student.campus_id:
            ids.update(a.curriculum_id for a in CampusAssignment.query.filter_by(campus_id=student.campus_id))
        if not ids:
            return []
        return Curriculum.query.filter(Curriculum.id.in_(ids), Curriculum.is_active.is_(True)) \
            .order_by(Curriculum.id).all()

    @staticmethod
    def resolve(student: User, curriculum: Curriculum) -> ResolutionResult:
        result = reconcile(explicit_rooms(student, curriculum), dynamic_room(student, curriculum))
        if isinstance(result, Conflict):
            current_app.logger.warning(
                'Enrollment conflict for student %s on curriculum %s: roster=%s profile=%s',
                student.id, curriculum.id, result.explicit_room, result.dynamic_room
            )
        return result

    @staticmethod
    def resolve_room(student: User, curriculum_id: int) -> str:
        """Strict variant: a room or a typed error."""
        curriculum = db.session.get(Curriculum, curriculum_id)
        if curriculum is None:
            raise NotFound("Curriculum not found")

        result = EnrollmentService.resolve(student, curriculum)
        if isinstance(result, Conflict):
            raise EnrollmentMismatch(
                "Roster and profile resolve to different rooms",
                explicit_room=result.explicit_room,
                dynamic_room=result.dynamic_room
            )
        if isinstance(result, Unresolved):
            raise NotFound(f"No class for this student: {result.reason}")
        return result.room_name

    @staticmethod
    def my_classes(student: User) -> List[Dict]:
        """Resolved classes only; unresolved and conflicting ones are omitted."""
        classes = []
        for curriculum in EnrollmentService.candidate_curriculums(student):
            result = EnrollmentService.resolve(student, curriculum)
            if not isinstance(result, Resolved):
                continue

            assignment = matching_assignment(student, curriculum)
            teacher = assignment.teacher if assignment else None
            class_group = next(
                (c for c in student.enrolled_classes.filter_by(curriculum_id=curriculum.id, is_active=True)),
                None
            )
            classes.append({
                'curriculum_id': curriculum.id,
                'curriculum_title': curriculum.title,
                'class_id': class_group.id if class_group else None,
                'class_name': class_group.name if class_group else None,
                'room_name': result.room_name,
                'teacher': {'id': teacher.id, 'name': teacher.name} if teacher else None
            })
        return classes

    @staticmethod
    def teacher_classes(teacher: User) -> List[Dict]:
        """One room per assigned group of every active assignment."""
        rooms = []
        assignments = TeacherAssignment.query.filter_by(teacher_id=teacher.id, is_active=True) \
            .order_by(TeacherAssignment.id).all()
        for assignment in assignments:
            curriculum = assignment.curriculum
            for group_code in assignment.assigned_group_codes or []:
                rooms.append({
                    'assignment_id': assignment.id,
                    'curriculum_id': curriculum.id,
                    'class_name': curriculum.title,
                    'campus_id': assignment.campus_id,
                    'group': group_code,
                    'grades': list(assignment.assigned_grades or []),
                    'room_name': build_class_room_name(curriculum, group_code)
                })
        return rooms

    @staticmethod
    def owns_room(user: User, room_name: str) -> bool:
        """A class room belongs to the students it resolves for and the staff assigned to it."""
        if user.is_admin():
            return True
        if user.role == UserRole.STUDENT:
            return any(
                EnrollmentService.resolve(user, curriculum) == Resolved(room_name)
                for curriculum in EnrollmentService.candidate_curriculums(user)
            )
        return any(c['room_name'] == room_name for c in EnrollmentService.teacher_classes(user))

    @staticmethod
    def get_class(class_id: int) -> ClassGroup:
        class_group = db.session.get(ClassGroup, class_id)
        if class_group is None:
            raise NotFound("Class not found")
        return class_group

    @staticmethod
    def add_student(class_group: ClassGroup, student_id: int) -> User:
        student = db.session.get(User, student_id)
        if student is None:
            raise NotFound("Student not found")
        if student.role != UserRole.STUDENT:
            raise ValidationError("Only students can be added to a class roster")

        if not class_group.has_student(student.id):
            class_group.students.append(student)
            db.session.commit()
            current_app.logger.info('Student %s added to class %s', student.id, class_group.id)
        return student

    @staticmethod
    def remove_student(class_group: ClassGroup, student_id: int) -> None:
        student = next((s for s in class_group.students if s.id == student_id), None)
        if student is None:
            raise NotFound("Student is not on this roster")
        class_group.students.remove(student)
        db.session.commit()
        current_app.logger.info('Student %s removed from class %s', student_id, class_group.id)
