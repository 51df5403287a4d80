from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ecahub.core.database import get_session
from ecahub.core.dependencies import get_current_admin
from ecahub.core.limits import limiter
from ecahub.staff.models.enums import SelectionMode
from ecahub.staff.schemas.allocation import (
    AllocationRunOptions,
    EcaAllocationPreview,
    EcaAllocationResult,
)
from ecahub.staff.schemas.terms import EcaTermRead
from ecahub.staff.services.allocation_runner import AllocationRunner

router = APIRouter(prefix="/eca/terms", tags=["ECA Allocation"])


@router.post("/{term_id}/run-allocation", response_model=EcaAllocationResult)
@limiter.limit("5/minute")
async def run_allocation(
    request: Request,
    term_id: int,
    options: Optional[AllocationRunOptions] = None,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Run the allocation for a term whose registration is closed.

    - **selection_mode**: overrides the school default for this run
    - **cancel_below_minimum**: cancel activities below their minimum capacity
    - **override**: required to re-run once allocation has already been run

    Previous engine allocations and the waitlist are replaced; MANUAL
    allocations are kept. The whole run is one transaction.
    """
    runner = AllocationRunner(db)
    return await runner.run(
        term_id, current_user["school_id"], options, actor_id=current_user["id"]
    )


@router.get("/{term_id}/allocation-preview", response_model=EcaAllocationPreview)
@limiter.limit("10/minute")
async def preview_allocation(
    request: Request,
    term_id: int,
    selection_mode: Optional[SelectionMode] = Query(None),
    cancel_below_minimum: Optional[bool] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """Результат распределения без записи в базу"""
    options = AllocationRunOptions(
        selection_mode=selection_mode, cancel_below_minimum=cancel_below_minimum
    )
    runner = AllocationRunner(db)
    return await runner.preview(term_id, current_user["school_id"], options)


@router.post("/{term_id}/publish-allocation", response_model=EcaTermRead)
@limiter.limit("5/minute")
async def publish_allocation(
    request: Request,
    term_id: int,
    current_user: Dict[str, Any] = Depends(get_current_admin),
    db: AsyncSession = Depends(get_session),
):
    """REGISTRATION_CLOSED -> ALLOCATION_COMPLETE; родители видят зачисления"""
    runner = AllocationRunner(db)
    return await runner.publish(term_id, current_user["school_id"], actor_id=current_user["id"])
