from typing import Optional

from pydantic import BaseModel, Field

from lingoclass.models import ActivityStatus, ActivityType


class ActivityForm(BaseModel):
    title: str
    activity_type: ActivityType
    level: int = Field(default=1, ge=1)
    points: int = Field(default=10, ge=0)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    is_published: bool = False


class AssignForm(BaseModel):
    user_id: int


class ProgressForm(BaseModel):
    status: ActivityStatus
    score: Optional[float] = None
