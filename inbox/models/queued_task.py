import uuid

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from inbox.database import Base


class QueuedTask(Base):
    __tablename__ = "task_queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    queue = Column(String(64), nullable=False, default="default")
    task_name = Column(String(128), nullable=False)
    payload_json = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="PENDING")  # PENDING, PROCESSING, DONE, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=1)
    backoff_seconds = Column(Float, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), index=True)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
