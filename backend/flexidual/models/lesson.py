"""Lesson model."""
from flexidual import db
from flexidual.models.base import BaseModel


class Lesson(BaseModel):
    """Content unit belonging to a curriculum."""

    __tablename__ = 'lessons'

    curriculum_id = db.Column(db.Integer, db.ForeignKey('curriculums.id'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=1)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<Lesson {self.title}>'
