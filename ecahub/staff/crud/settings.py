from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.config import (
    ECA_DEFAULT_MAX_CHOICES_PER_DAY,
    ECA_DEFAULT_MAX_PRIORITY_CHOICES,
)
from ecahub.core.database import db_operation
from ecahub.core.logging_utils import log_business_event
from ecahub.staff.models.enums import SelectionMode
from ecahub.staff.models.settings import EcaSettings
from ecahub.staff.schemas.settings import EcaSettingsUpdate


async def find_settings(db: AsyncSession, school_id: int) -> EcaSettings:
    """Настройки школы без создания; None если их ещё нет"""
    result = await db.execute(select(EcaSettings).where(EcaSettings.school_id == school_id))
    return result.scalar_one_or_none()


def default_settings(school_id: int) -> EcaSettings:
    return EcaSettings(
        school_id=school_id,
        selection_mode=SelectionMode.FIRST_COME_FIRST_SERVED,
        max_priority_choices=ECA_DEFAULT_MAX_PRIORITY_CHOICES,
        max_choices_per_day=ECA_DEFAULT_MAX_CHOICES_PER_DAY,
    )


@db_operation
async def get_or_create_settings(db: AsyncSession, school_id: int) -> EcaSettings:
    settings = await find_settings(db, school_id)
    if settings:
        return settings

    settings = default_settings(school_id)
    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


@db_operation
async def update_settings(
    db: AsyncSession, school_id: int, data: EcaSettingsUpdate
) -> EcaSettings:
    settings = await get_or_create_settings(db, school_id)

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(settings, field, value)

    await db.commit()
    await db.refresh(settings)

    log_business_event(
        "ECA_SETTINGS_UPDATED",
        "eca_settings",
        settings.id,
        {key: str(value) for key, value in changes.items()},
    )
    return settings
