from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    Time,
    ForeignKey,
    Enum,
    JSON,
    Index,
    CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ecahub.core.database import Base
from ecahub.staff.models.enums import ActivityType, EligibleGender, TimeSlot


class EcaActivity(Base):
    """Одно занятие ECA: день недели + слот (до/после уроков) внутри семестра"""

    __tablename__ = "eca_activities"

    id = Column(Integer, primary_key=True)
    term_id = Column(
        Integer,
        ForeignKey("eca_terms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    school_id = Column(Integer, nullable=False, index=True)

    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    day_of_week = Column(Integer, nullable=False)  # 0 = понедельник
    time_slot = Column(Enum(TimeSlot, name="eca_time_slot"), nullable=False)
    custom_start_time = Column(Time, nullable=True)
    custom_end_time = Column(Time, nullable=True)

    activity_type = Column(
        Enum(ActivityType, name="eca_activity_type"),
        nullable=False,
        default=ActivityType.OPEN,
    )
    # Пустой список = доступно всем параллелям
    eligible_year_group_ids = Column(JSON, nullable=False, default=list)
    eligible_gender = Column(
        Enum(EligibleGender, name="eca_eligible_gender"),
        nullable=False,
        default=EligibleGender.MIXED,
    )

    # NULL = без ограничения
    min_capacity = Column(Integer, nullable=True)
    max_capacity = Column(Integer, nullable=True)

    staff_id = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancel_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relations
    term = relationship("EcaTerm", back_populates="activities")
    allocations = relationship(
        "EcaAllocation", back_populates="activity", cascade="all, delete-orphan"
    )
    waitlist_entries = relationship(
        "EcaWaitlist", back_populates="activity", cascade="all, delete-orphan"
    )
    invitations = relationship(
        "EcaInvitation", back_populates="activity", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_eca_activities_term_slot", "term_id", "day_of_week", "time_slot"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_eca_activity_day"),
        CheckConstraint(
            "min_capacity IS NULL OR min_capacity >= 0", name="ck_eca_activity_min"
        ),
        CheckConstraint(
            "max_capacity IS NULL OR max_capacity >= 1", name="ck_eca_activity_max"
        ),
    )

    @property
    def slot_key(self):
        return (self.day_of_week, self.time_slot)

    def __repr__(self):
        return (
            f"<EcaActivity(id={self.id}, name='{self.name}', "
            f"day={self.day_of_week}, slot={self.time_slot})>"
        )
