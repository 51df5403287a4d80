from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_admin
from ecahub.core.limits import limiter
from ecahub.staff.crud.settings import get_or_create_settings, update_settings
from ecahub.staff.schemas.settings import EcaSettingsRead, EcaSettingsUpdate

router = APIRouter(prefix="/eca/settings", tags=["ECA Settings"])


@router.get("/", response_model=EcaSettingsRead)
@limiter.limit("30/minute")
async def read_settings(
    request: Request,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Настройки ECA школы; при первом обращении создаются значения по умолчанию"""
    return await get_or_create_settings(db, current_user["school_id"])


@router.patch("/", response_model=EcaSettingsRead)
@limiter.limit("10/minute")
async def change_settings(
    request: Request,
    data: EcaSettingsUpdate,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Update school ECA settings.

    - **selection_mode**: FIRST_COME_FIRST_SERVED or SMART_ALLOCATION
    - **max_priority_choices**: 0..3 priority selections per student and term
    - **max_choices_per_day**: 1..3 selections per day and time slot
    """
    return await update_settings(db, current_user["school_id"], data)
