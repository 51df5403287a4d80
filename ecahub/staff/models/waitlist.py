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


class EcaWaitlist(Base):
    __tablename__ = "eca_waitlist"

    id = Column(Integer, primary_key=True)
    term_id = Column(
        Integer,
        ForeignKey("eca_terms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    activity_id = Column(
        Integer,
        ForeignKey("eca_activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    # Позиция в очереди, начиная с 1
    position = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relations
    activity = relationship("EcaActivity", back_populates="waitlist_entries")
    student = relationship("Student", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("activity_id", "student_id", name="uq_eca_waitlist_student"),
    )

    def __repr__(self):
        return f"<EcaWaitlist(activity_id={self.activity_id}, student_id={self.student_id}, position={self.position})>"
