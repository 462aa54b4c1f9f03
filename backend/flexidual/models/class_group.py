"""Class model: teacher + roster + curriculum."""
from flexidual import db
from flexidual.models.base import BaseModel

class_students = db.Table(
    'class_students',
    db.Column('class_id', db.Integer, db.ForeignKey('classes.id'), primary_key=True),
    db.Column('student_id', db.Integer, db.ForeignKey('users.id'), primary_key=True)
)


class ClassGroup(BaseModel):
    """An active group of students following a curriculum."""

    __tablename__ = 'classes'

    name = db.Column(db.String(255), nullable=False)
    curriculum_id = db.Column(db.Integer, db.ForeignKey('curriculums.id'), nullable=False, index=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    tutor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    campus_id = db.Column(db.String(64), nullable=True)
    group_code = db.Column(db.String(32), nullable=True)
    academic_year = db.Column(db.String(20), nullable=True)  # "2024-2025"
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    curriculum = db.relationship('Curriculum')
    teacher = db.relationship('User', foreign_keys=[teacher_id])
    tutor = db.relationship('User', foreign_keys=[tutor_id])
    students = db.relationship('User', secondary=class_students, lazy='selectin',
                               backref=db.backref('enrolled_classes', lazy='dynamic'))
    sessions = db.relationship('ClassSession', backref='class_group', lazy='dynamic')

    def has_student(self, user_id: int) -> bool:
        return any(student.id == user_id for student in self.students)

    def is_managed_by(self, user) -> bool:
        return user.is_admin() or user.id in (self.teacher_id, self.tutor_id)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'curriculum_id': self.curriculum_id,
            'teacher_id': self.teacher_id,
            'tutor_id': self.tutor_id,
            'campus_id': self.campus_id,
            'group_code': self.group_code,
            'academic_year': self.academic_year,
            'student_count': len(self.students),
            'is_active': self.is_active
        }

    def __repr__(self):
        return f'<ClassGroup {self.name}>'
