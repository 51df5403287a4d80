from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ecahub.core.database import Base


class EcaCompulsoryAssignment(Base):
    """Список учеников обязательного (COMPULSORY) занятия"""

    __tablename__ = "eca_compulsory_assignments"

    id = Column(Integer, primary_key=True)
    activity_id = Column(
        Integer,
        ForeignKey("eca_activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    activity = relationship("EcaActivity")

    __table_args__ = (
        UniqueConstraint("activity_id", "student_id", name="uq_eca_compulsory_student"),
    )
