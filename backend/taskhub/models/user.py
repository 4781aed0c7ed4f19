from sqlalchemy import Column, String, DateTime, JSON

from taskhub.core.database import Base, new_object_id, utcnow, format_datetime


class User(Base):
    __tablename__ = "users"

    id = Column(String(24), primary_key=True, default=new_object_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    # Task ids, kept in sync from the task side only. Always reassign, never mutate in place.
    pending_tasks = Column(JSON, nullable=False, default=list)
    date_created = Column(DateTime, nullable=False, default=utcnow)

    FIELDS = {
        "_id": "id",
        "name": "name",
        "email": "email",
        "pendingTasks": "pending_tasks",
        "dateCreated": "date_created",
    }
    ARRAY_FIELDS = frozenset({"pendingTasks"})

    def to_document(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "pendingTasks": list(self.pending_tasks or []),
            "dateCreated": format_datetime(self.date_created),
        }
