"""Схемы родительского раздела ECA"""
from datetime import date, datetime, time
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from ecahub.staff.models.enums import (
    ActivityType,
    AllocationStatus,
    AllocationType,
    InvitationStatus,
    SelectionMode,
    TermStatus,
    TimeSlot,
)


class SelectionItem(BaseModel):
    activity_id: int = Field(..., gt=0)
    rank: int = Field(1, ge=1, le=3)
    is_priority: bool = False


class SelectionSubmit(BaseModel):
    """
    Полная замена выбора ученика на семестр.

    Проверки, зависящие от занятий (ранги внутри слота, лимит на день,
    число приоритетов из настроек школы), выполняются в CRUD.
    """

    student_id: int = Field(..., gt=0)
    selections: List[SelectionItem] = Field(default_factory=list, max_length=42)

    @model_validator(mode="after")
    def validate_unique_activities(self):
        activity_ids = [item.activity_id for item in self.selections]
        if len(activity_ids) != len(set(activity_ids)):
            raise ValueError("The same activity cannot be selected twice")
        return self


class SelectionRead(BaseModel):
    id: int
    term_id: int
    student_id: int
    activity_id: Optional[int] = None
    rank: int
    is_priority: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ParentActivityView(BaseModel):
    """Занятие глазами родителя конкретного ученика"""

    id: int
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    day_of_week: int
    time_slot: TimeSlot
    custom_start_time: Optional[time] = None
    custom_end_time: Optional[time] = None
    activity_type: ActivityType

    available_spots: Optional[int] = None
    is_eligible: bool
    eligibility_label: Optional[str] = None

    has_invitation: bool = False
    invitation_id: Optional[int] = None
    invitation_status: Optional[InvitationStatus] = None

    is_selected: bool = False
    selected_rank: Optional[int] = None
    selected_priority: bool = False


class ParentTermView(BaseModel):
    id: int
    name: str
    academic_year: str
    start_date: date
    end_date: date
    registration_opens: datetime
    registration_closes: datetime
    status: TermStatus
    selection_mode: SelectionMode
    max_priority_choices: int
    max_choices_per_day: int
    student_id: int
    activities: List[ParentActivityView] = []


class InvitationRespond(BaseModel):
    accept: bool


class ParentInvitationRead(BaseModel):
    """Ожидающее ответа приглашение ребёнка"""

    id: int
    student_id: int
    student_name: str
    activity_id: int
    activity_name: str
    activity_description: Optional[str] = None
    day_of_week: int
    time_slot: TimeSlot
    location: Optional[str] = None
    is_tryout: bool
    created_at: Optional[datetime] = None


class ParentAllocationRead(BaseModel):
    id: int
    term_id: int
    student_id: int
    activity_id: int
    activity_name: str
    day_of_week: int
    time_slot: TimeSlot
    location: Optional[str] = None
    allocation_type: AllocationType
    status: AllocationStatus
