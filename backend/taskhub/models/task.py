from sqlalchemy import Column, String, DateTime, Boolean, Text

from taskhub.core.database import Base, new_object_id, utcnow, format_datetime


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(24), primary_key=True, default=new_object_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    deadline = Column(DateTime, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    assigned_user = Column(String, nullable=False, default="", index=True)  # "" when unassigned
    assigned_user_name = Column(String, nullable=False, default="unassigned")
    date_created = Column(DateTime, nullable=False, default=utcnow)

    # wire name -> attribute
    FIELDS = {
        "_id": "id",
        "name": "name",
        "description": "description",
        "deadline": "deadline",
        "completed": "completed",
        "assignedUser": "assigned_user",
        "assignedUserName": "assigned_user_name",
        "dateCreated": "date_created",
    }
    ARRAY_FIELDS = frozenset()

    def to_document(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "description": self.description,
            "deadline": format_datetime(self.deadline),
            "completed": self.completed,
            "assignedUser": self.assigned_user,
            "assignedUserName": self.assigned_user_name,
            "dateCreated": format_datetime(self.date_created),
        }
