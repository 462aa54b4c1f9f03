"""Curriculum and its campus/teacher assignment rules."""
from flexidual import db
from flexidual.models.base import BaseModel


class Curriculum(BaseModel):
    """Template course, e.g. "5th Grade Math"."""

    __tablename__ = 'curriculums'

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    code = db.Column(db.String(50), nullable=True, index=True)  # "MATH-05"
    color = db.Column(db.String(20), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    lessons = db.relationship('Lesson', backref='curriculum', lazy='dynamic')
    campus_assignments = db.relationship('CampusAssignment', backref='curriculum', lazy='selectin')

    @property
    def room_prefix(self) -> str:
        return self.code or str(self.id)

    def grades_for_campus(self, campus_id: str):
        """Grade codes this curriculum is offered to on a campus."""
        for assignment in self.campus_assignments:
            if assignment.campus_id == campus_id:
                return list(assignment.grade_codes or [])
        return []

    def __repr__(self):
        return f'<Curriculum {self.code or self.title}>'


class CampusAssignment(BaseModel):
    """Which grades of a campus follow a curriculum."""

    __tablename__ = 'campus_assignments'
    __table_args__ = (
        db.UniqueConstraint('curriculum_id', 'campus_id', name='uq_campus_assignment'),
    )

    curriculum_id = db.Column(db.Integer, db.ForeignKey('curriculums.id'), nullable=False)
    campus_id = db.Column(db.String(64), nullable=False, index=True)
    grade_codes = db.Column(db.JSON, nullable=False, default=list)


class TeacherAssignment(BaseModel):
    """A teacher covering groups/grades of a curriculum on a campus."""

    __tablename__ = 'teacher_assignments'

    teacher_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    campus_id = db.Column(db.String(64), nullable=False, index=True)
    curriculum_id = db.Column(db.Integer, db.ForeignKey('curriculums.id'), nullable=False)
    assigned_group_codes = db.Column(db.JSON, nullable=False, default=list)
    assigned_grades = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    teacher = db.relationship('User', backref='teacher_assignments')
    curriculum = db.relationship('Curriculum')

    def covers(self, grade_code: str, group_code: str) -> bool:
        groups = self.assigned_group_codes or []
        suffix = group_code.split('-')[-1] if group_code else group_code
        return (group_code in groups or suffix in groups
                or grade_code in (self.assigned_grades or []))
