from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from ecahub.staff.models.enums import TermStatus


def _check_dates(start_date, end_date, registration_opens, registration_closes):
    if start_date and end_date and end_date < start_date:
        raise ValueError("end_date must not be earlier than start_date")
    if (
        registration_opens
        and registration_closes
        and registration_closes <= registration_opens
    ):
        raise ValueError("registration_closes must be later than registration_opens")


class EcaTermBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    term_number: int = Field(1, ge=1, le=6)
    academic_year: str = Field(..., min_length=4, max_length=20)
    start_date: date
    end_date: date
    registration_opens: datetime
    registration_closes: datetime


class EcaTermCreate(EcaTermBase):
    @model_validator(mode="after")
    def validate_dates(self):
        _check_dates(
            self.start_date,
            self.end_date,
            self.registration_opens,
            self.registration_closes,
        )
        return self


class EcaTermUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    term_number: Optional[int] = Field(None, ge=1, le=6)
    academic_year: Optional[str] = Field(None, min_length=4, max_length=20)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    registration_opens: Optional[datetime] = None
    registration_closes: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_dates(self):
        _check_dates(
            self.start_date,
            self.end_date,
            self.registration_opens,
            self.registration_closes,
        )
        return self


class EcaTermRead(EcaTermBase):
    id: int
    school_id: int
    status: TermStatus
    allocation_run: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EcaTermDetail(EcaTermRead):
    """Семестр со счётчиками для админки"""

    activity_count: int = 0
    selection_count: int = 0
    allocation_count: int = 0
    waitlist_count: int = 0


class TermStatusUpdate(BaseModel):
    status: TermStatus
