"""Parent Selection Model - ranked activity choices submitted by parents"""
from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ecahub.core.database import Base


class EcaSelection(Base):
    """Выбор родителя: ученик + занятие + ранг (1..3) + флаг приоритета"""

    __tablename__ = "eca_selections"

    id = Column(Integer, primary_key=True, index=True)

    term_id = Column(
        Integer,
        ForeignKey("eca_terms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id = Column(
        Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    parent_user_id = Column(Integer, nullable=False, index=True)
    # SET NULL: удалённое занятие превращает выбор в "битую" запись,
    # которую распределение пропускает с ошибкой
    activity_id = Column(
        Integer, ForeignKey("eca_activities.id", ondelete="SET NULL"), nullable=True
    )

    rank = Column(Integer, nullable=False, default=1)
    is_priority = Column(Boolean, nullable=False, default=False)

    # Время подачи - основа порядка FCFS и тай-брейка
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    activity = relationship("EcaActivity")
    student = relationship("Student")

    __table_args__ = (
        Index("ix_eca_selections_term_student", "term_id", "student_id"),
        Index("ix_eca_selections_term_created", "term_id", "created_at", "id"),
        CheckConstraint("rank BETWEEN 1 AND 3", name="ck_eca_selection_rank"),
    )

    def __repr__(self):
        return (
            f"<EcaSelection(id={self.id}, student_id={self.student_id}, "
            f"activity_id={self.activity_id}, rank={self.rank}, priority={self.is_priority})>"
        )
