from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ecahub.core.database import Base
from ecahub.staff.models.enums import TermStatus, TERM_STATUS_TRANSITIONS


class EcaTerm(Base):
    __tablename__ = "eca_terms"

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, nullable=False, index=True)

    name = Column(String(100), nullable=False)
    term_number = Column(Integer, nullable=False, default=1)
    academic_year = Column(String(20), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    registration_opens = Column(DateTime(timezone=True), nullable=False)
    registration_closes = Column(DateTime(timezone=True), nullable=False)

    status = Column(
        Enum(TermStatus, name="eca_term_status"),
        nullable=False,
        default=TermStatus.DRAFT,
        index=True,
    )
    # Защита от повторного запуска распределения
    allocation_run = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    activities = relationship(
        "EcaActivity", back_populates="term", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_eca_terms_school_status", "school_id", "status"),)

    def can_transition_to(self, new_status: TermStatus) -> bool:
        return new_status in TERM_STATUS_TRANSITIONS.get(self.status, ())

    @property
    def is_immutable(self) -> bool:
        """Семестр нельзя редактировать после старта"""
        return self.status in (TermStatus.ACTIVE, TermStatus.COMPLETED)

    def __repr__(self):
        return f"<EcaTerm(id={self.id}, name='{self.name}', status={self.status})>"
