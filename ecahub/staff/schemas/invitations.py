from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from ecahub.staff.models.enums import InvitationStatus, TryoutResult


class InviteStudentsRequest(BaseModel):
    """Приглашение одного или нескольких учеников в занятие"""

    student_ids: List[int] = Field(..., min_length=1, max_length=200)
    is_tryout: bool = False

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, v):
        if any(student_id <= 0 for student_id in v):
            raise ValueError("student_ids must be positive")
        # Порядок сохраняем, дубли убираем
        return list(dict.fromkeys(v))


class InvitationUpdate(BaseModel):
    status: Optional[InvitationStatus] = None
    tryout_result: Optional[TryoutResult] = None


class EcaInvitationRead(BaseModel):
    id: int
    activity_id: int
    student_id: int
    invited_by_id: Optional[int] = None
    status: InvitationStatus
    is_tryout: bool
    tryout_result: Optional[TryoutResult] = None
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InviteStudentsResult(BaseModel):
    created: List[EcaInvitationRead] = []
    skipped_student_ids: List[int] = []


class CompulsoryRosterRequest(BaseModel):
    student_ids: List[int] = Field(..., min_length=1, max_length=500)

    @field_validator("student_ids")
    @classmethod
    def dedupe_students(cls, v):
        return list(dict.fromkeys(v))


class CompulsoryAssignmentRead(BaseModel):
    id: int
    activity_id: int
    student_id: int
    assigned_by_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
