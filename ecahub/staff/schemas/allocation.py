from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ecahub.staff.models.enums import (
    AllocationStatus,
    AllocationType,
    SelectionMode,
    TimeSlot,
    UnallocatedReason,
)


class AllocationRunOptions(BaseModel):
    """Параметры запуска распределения; пустые поля - значения по умолчанию"""

    selection_mode: Optional[SelectionMode] = None
    cancel_below_minimum: Optional[bool] = None
    override: bool = False


class UnallocatedSlotInfo(BaseModel):
    day_of_week: int
    time_slot: TimeSlot
    requested_activities: List[str] = []
    requested_activity_ids: List[int] = []
    reason: UnallocatedReason


class UnallocatedStudentInfo(BaseModel):
    student_id: int
    student_name: str
    class_name: Optional[str] = None
    unallocated_slots: List[UnallocatedSlotInfo] = []


class ActivityAtRiskInfo(BaseModel):
    """Занятие непустое, но не набрало минимум"""

    activity_id: int
    activity_name: str
    current_enrollment: int
    min_capacity: int
    shortfall: int


class EcaAllocationResult(BaseModel):
    success: bool
    selection_mode: SelectionMode

    allocations: int = Field(0, description="Зачисления, созданные этим прогоном")
    total_allocations: int = Field(0, description="Все подтверждённые, включая MANUAL")
    total_students: int = 0
    waitlisted: int = 0

    cancelled_activities: int = 0
    cancelled_activity_names: List[str] = []
    errors: List[str] = []

    # Удовлетворённость
    first_choice_allocations: int = 0
    second_choice_allocations: int = 0
    third_choice_allocations: int = 0
    forced_allocations: int = 0

    unallocated_students: List[UnallocatedStudentInfo] = []
    activities_at_risk: List[ActivityAtRiskInfo] = []


class ActivityPreview(BaseModel):
    activity_id: int
    activity_name: str
    allocations: int
    waitlist: int
    below_minimum: bool
    will_be_cancelled: bool
    min_capacity: Optional[int] = None


class EcaAllocationPreview(BaseModel):
    activities: List[ActivityPreview] = []
    total_allocations: int = 0
    total_waitlist: int = 0
    activities_to_cancel: int = 0
    selection_mode: SelectionMode
    default_selection_mode: SelectionMode
    result: EcaAllocationResult


# === Зачисления и лист ожидания ===


class StudentInfo(BaseModel):
    id: int
    first_name: str
    last_name: str
    class_name: Optional[str] = None
    year_group_id: Optional[int] = None

    model_config = {"from_attributes": True}


class AllocationRead(BaseModel):
    id: int
    term_id: int
    student_id: int
    activity_id: int
    allocation_type: AllocationType
    allocation_round: Optional[int] = None
    status: AllocationStatus
    created_at: Optional[datetime] = None

    student: Optional[StudentInfo] = None

    model_config = {"from_attributes": True}


class ManualAllocationCreate(BaseModel):
    student_id: int = Field(..., gt=0)


class WaitlistRead(BaseModel):
    id: int
    activity_id: int
    student_id: int
    position: int
    created_at: Optional[datetime] = None

    student: Optional[StudentInfo] = None

    model_config = {"from_attributes": True}


class WithdrawResult(BaseModel):
    withdrawn: AllocationRead
    promoted: Optional[AllocationRead] = None
