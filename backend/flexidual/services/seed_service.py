"""Database seeding service for demo data."""
from datetime import timedelta

from flexidual import db
from flexidual.models.class_group import ClassGroup
from flexidual.models.curriculum import CampusAssignment, Curriculum, TeacherAssignment
from flexidual.models.lesson import Lesson
from flexidual.models.user import User, UserRole
from flexidual.services.clock import get_clock
from flexidual.services.recurrence import RecurrenceRule
from flexidual.services.scheduling_service import SchedulingService


class SeedService:
    """Service to seed database with demo data."""

    CAMPUS = 'campus-north'

    @staticmethod
    def seed_all():
        """Seed all demo data."""
        admin, teacher = SeedService.seed_staff()
        students = SeedService.seed_students()
        curriculum = SeedService.seed_curriculum(teacher)
        class_group = SeedService.seed_class(curriculum, teacher, students)
        sessions = SeedService.seed_sessions(teacher, class_group)
        return {'class_id': class_group.id, 'sessions': len(sessions)}

    @staticmethod
    def _user(subject, email, name, role, **profile):
        user = User.query.filter_by(subject=subject).first()
        if user is None:
            user = User(subject=subject, email=email, name=name, role=role, **profile)
            db.session.add(user)
        return user

    @staticmethod
    def seed_staff():
        admin = SeedService._user('demo-admin', 'admin@flexidual.test', 'Demo Admin', UserRole.ADMIN)
        teacher = SeedService._user('demo-teacher', 'teacher@flexidual.test', 'Demo Teacher', UserRole.TEACHER,
                                    campus_id=SeedService.CAMPUS)
        db.session.commit()
        return admin, teacher

    @staticmethod
    def seed_students():
        students = []
        for index in range(1, 6):
            students.append(SeedService._user(
                f'demo-student-{index}',
                f'student{index}@flexidual.test',
                f'Student {index}',
                UserRole.STUDENT,
                campus_id=SeedService.CAMPUS,
                grade_code='05',
                group_code='05-A'
            ))
        db.session.commit()
        return students

    @staticmethod
    def seed_curriculum(teacher):
        curriculum = Curriculum.query.filter_by(code='MATH-05').first()
        if curriculum is None:
            curriculum = Curriculum(title='5th Grade Math', code='MATH-05', color='#3b82f6')
            db.session.add(curriculum)
            db.session.flush()
            for order, title in enumerate(['Fractions', 'Decimals', 'Geometry'], start=1):
                db.session.add(Lesson(curriculum_id=curriculum.id, title=title, order=order))
            db.session.add(CampusAssignment(curriculum_id=curriculum.id, campus_id=SeedService.CAMPUS,
                                            grade_codes=['05']))
            db.session.add(TeacherAssignment(teacher_id=teacher.id, campus_id=SeedService.CAMPUS,
                                             curriculum_id=curriculum.id, assigned_group_codes=['A'],
                                             assigned_grades=['05']))
            db.session.commit()
        return curriculum

    @staticmethod
    def seed_class(curriculum, teacher, students):
        class_group = ClassGroup.query.filter_by(name='Math 5A').first()
        if class_group is None:
            class_group = ClassGroup(name='Math 5A', curriculum_id=curriculum.id, teacher_id=teacher.id,
                                     campus_id=SeedService.CAMPUS, group_code='A')
            class_group.students = list(students)
            db.session.add(class_group)
            db.session.commit()
        return class_group

    @staticmethod
    def seed_sessions(teacher, class_group):
        today = get_clock().now().date()
        rule = RecurrenceRule.from_payload({
            'anchor_date': (today + timedelta(days=1)).isoformat(),
            'weekdays': [1, 3, 5],
            'start_time': '09:00',
            'end_time': '10:00',
            'count': 6
        })
        _, sessions = SchedulingService.create_series(teacher, class_group.id, rule, title='Math 5A')
        return sessions
