from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskhub.core.errors import ValidationError


class UserWrite(BaseModel):
    """Body of POST /api/users and PUT /api/users/{id}."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    pending_tasks: Optional[List[str]] = Field(None, alias="pendingTasks")

    @field_validator("email")
    @classmethod
    def _strip_email(cls, value):
        return None if value is None else value.strip()

    def column_values(self) -> dict:
        if not self.name or not self.email:
            raise ValidationError("Name and email are required")
        # written as given; never cross-checked against tasks
        return {
            "name": self.name,
            "email": self.email,
            "pending_tasks": list(self.pending_tasks or []),
        }
