from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from ecahub.staff.models.enums import SelectionMode


class EcaSettingsRead(BaseModel):
    id: int
    school_id: int
    selection_mode: SelectionMode
    max_priority_choices: int
    max_choices_per_day: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EcaSettingsUpdate(BaseModel):
    selection_mode: Optional[SelectionMode] = None
    max_priority_choices: Optional[int] = Field(None, ge=0, le=3)
    max_choices_per_day: Optional[int] = Field(None, ge=1, le=3)
