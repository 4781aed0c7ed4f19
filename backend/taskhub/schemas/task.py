from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskhub.core.database import as_utc_naive
from taskhub.core.errors import ValidationError


class TaskWrite(BaseModel):
    """Body of POST /api/tasks and PUT /api/tasks/{id}.

    Every field is optional at parse time so a missing name or deadline is
    reported with the API's own message rather than a parser error.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    completed: Optional[bool] = None
    assigned_user: Optional[str] = Field(None, alias="assignedUser")
    assigned_user_name: Optional[str] = Field(None, alias="assignedUserName")

    @field_validator("deadline")
    @classmethod
    def _normalize_deadline(cls, value):
        return None if value is None else as_utc_naive(value)

    def check_required(self):
        if not self.name or self.deadline is None:
            raise ValidationError("Name and deadline are required")

    def column_values(self) -> dict:
        """Full replacement values, with the defaults applied."""
        self.check_required()
        return {
            "name": self.name,
            "description": self.description or "",
            "deadline": self.deadline,
            "completed": bool(self.completed),
            "assigned_user": self.assigned_user or "",
            "assigned_user_name": self.assigned_user_name or "unassigned",
        }
