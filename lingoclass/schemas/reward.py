from typing import Optional

from pydantic import BaseModel


class PointAdjustmentForm(BaseModel):
    user_id: int
    delta: int
    reason: str
    idempotency_key: Optional[str] = None
