"""Student model"""
from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base


class Student(Base):
    """Student booking lessons with a teacher"""

    __tablename__ = "students"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    email = Column(String(320), unique=True, nullable=False)
    timezone = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Student(id={self.id}, name={self.name})>"
