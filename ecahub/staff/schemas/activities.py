from datetime import datetime, time
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from ecahub.staff.models.enums import ActivityType, EligibleGender, TimeSlot


def _check_capacity(min_capacity, max_capacity):
    if min_capacity is not None and max_capacity is not None and min_capacity > max_capacity:
        raise ValueError("min_capacity cannot exceed max_capacity")


def _check_times(start, end):
    if start and end and end <= start:
        raise ValueError("custom_end_time must be later than custom_start_time")


class EcaActivityBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=2000)
    location: Optional[str] = Field(None, max_length=255)

    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")
    time_slot: TimeSlot
    custom_start_time: Optional[time] = None
    custom_end_time: Optional[time] = None

    activity_type: ActivityType = ActivityType.OPEN
    eligible_year_group_ids: List[int] = []
    eligible_gender: EligibleGender = EligibleGender.MIXED

    min_capacity: Optional[int] = Field(None, ge=0)
    max_capacity: Optional[int] = Field(None, ge=1)
    staff_id: Optional[int] = Field(None, gt=0)

    @field_validator("eligible_year_group_ids")
    @classmethod
    def dedupe_year_groups(cls, v):
        return sorted(set(v))


class EcaActivityCreate(EcaActivityBase):
    @model_validator(mode="after")
    def validate_limits(self):
        _check_capacity(self.min_capacity, self.max_capacity)
        _check_times(self.custom_start_time, self.custom_end_time)
        return self


class EcaActivityUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = Field(None, max_length=2000)
    location: Optional[str] = Field(None, max_length=255)
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    time_slot: Optional[TimeSlot] = None
    custom_start_time: Optional[time] = None
    custom_end_time: Optional[time] = None
    activity_type: Optional[ActivityType] = None
    eligible_year_group_ids: Optional[List[int]] = None
    eligible_gender: Optional[EligibleGender] = None
    min_capacity: Optional[int] = Field(None, ge=0)
    max_capacity: Optional[int] = Field(None, ge=1)
    staff_id: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None
    is_cancelled: Optional[bool] = None

    @model_validator(mode="after")
    def validate_limits(self):
        _check_capacity(self.min_capacity, self.max_capacity)
        _check_times(self.custom_start_time, self.custom_end_time)
        return self


class EcaActivityRead(EcaActivityBase):
    id: int
    term_id: int
    school_id: int
    is_active: bool
    is_cancelled: bool
    cancel_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EcaActivityCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)
