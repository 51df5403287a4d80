from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ecahub.core.database import Base
from ecahub.staff.models.enums import AllocationStatus, AllocationType


class EcaAllocation(Base):
    """Результат распределения: ученик -> занятие"""

    __tablename__ = "eca_allocations"

    id = Column(Integer, primary_key=True)
    term_id = Column(
        Integer,
        ForeignKey("eca_terms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    activity_id = Column(
        Integer,
        ForeignKey("eca_activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Почему ученик попал в занятие
    allocation_type = Column(
        Enum(AllocationType, name="eca_allocation_type"), nullable=False
    )
    allocation_round = Column(Integer, nullable=True)
    status = Column(
        Enum(AllocationStatus, name="eca_allocation_status"),
        nullable=False,
        default=AllocationStatus.CONFIRMED,
        index=True,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    activity = relationship("EcaActivity", back_populates="allocations")
    student = relationship("Student", lazy="selectin")

    __table_args__ = (
        Index("ix_eca_allocations_term_student", "term_id", "student_id"),
        Index("ix_eca_allocations_activity_status", "activity_id", "status"),
    )

    def __repr__(self):
        return (
            f"<EcaAllocation(id={self.id}, student_id={self.student_id}, "
            f"activity_id={self.activity_id}, type={self.allocation_type}, status={self.status})>"
        )
