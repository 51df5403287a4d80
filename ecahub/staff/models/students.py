"""Ученики и связи родитель-ученик (ведутся внешним модулем, здесь только чтение)"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from ecahub.core.database import Base
from ecahub.staff.models.enums import StudentGender


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, nullable=False, index=True)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    class_name = Column(String(50), nullable=False, default="")
    year_group_id = Column(Integer, nullable=True, index=True)
    gender = Column(Enum(StudentGender, name="student_gender"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Student(id={self.id}, name='{self.full_name}')>"


class ParentStudentLink(Base):
    __tablename__ = "parent_student_links"

    id = Column(Integer, primary_key=True)
    parent_user_id = Column(Integer, nullable=False, index=True)
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("parent_user_id", "student_id", name="uq_parent_student"),
    )
