from sqlalchemy import (
    Column,
    Integer,
    DateTime,
    Enum,
)
from sqlalchemy.sql import func
from ecahub.core.database import Base
from ecahub.staff.models.enums import SelectionMode


class EcaSettings(Base):
    """Настройки ECA школы (по одной записи на школу)"""

    __tablename__ = "eca_settings"

    id = Column(Integer, primary_key=True)
    school_id = Column(Integer, nullable=False, unique=True, index=True)

    # Режим по умолчанию для всех семестров школы
    selection_mode = Column(
        Enum(SelectionMode, name="eca_selection_mode"),
        nullable=False,
        default=SelectionMode.FIRST_COME_FIRST_SERVED,
    )
    max_priority_choices = Column(Integer, nullable=False, default=1)
    max_choices_per_day = Column(Integer, nullable=False, default=3)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<EcaSettings(school_id={self.school_id}, mode={self.selection_mode})>"
