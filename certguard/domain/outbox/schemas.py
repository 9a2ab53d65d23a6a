from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DeadLetterEvent(BaseModel):
    """A notification that exhausted its attempts, with the assignment it belongs to."""

    model_config = ConfigDict(from_attributes=True)

    event_id: str
    kind: str
    attempts: int
    last_error: str | None
    created_at: datetime
    work_order_id: str | None = None
    assignment_id: str | None = None
    payload_json: dict | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _assignment_context(self) -> "DeadLetterEvent":
        context = (self.payload_json or {}).get("context") or {}
        self.work_order_id = self.work_order_id or context.get("work_order_id")
        self.assignment_id = self.assignment_id or context.get("assignment_id")
        return self


class ReplayedEvent(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    status: str
    attempts: int
    next_attempt_at: datetime | None
