from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ecahub.core.database import Base
from ecahub.staff.models.enums import InvitationStatus, TryoutResult


class EcaInvitation(Base):
    """Приглашение ученика в INVITE_ONLY / TRYOUT занятие от сотрудника"""

    __tablename__ = "eca_invitations"

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
    invited_by_id = Column(Integer, nullable=True)

    status = Column(
        Enum(InvitationStatus, name="eca_invitation_status"),
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True,
    )
    is_tryout = Column(Boolean, nullable=False, default=False)
    tryout_result = Column(Enum(TryoutResult, name="eca_tryout_result"), nullable=True)

    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Отношения
    activity = relationship("EcaActivity", back_populates="invitations")
    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("activity_id", "student_id", name="uq_eca_invitation_student"),
        # Для выборки приглашений ученика по статусу
        Index("ix_eca_invitations_student_status", "student_id", "status"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def __repr__(self):
        return f"<EcaInvitation(id={self.id}, activity_id={self.activity_id}, student_id={self.student_id}, status={self.status})>"
