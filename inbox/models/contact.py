import uuid

from sqlalchemy import Column, DateTime, String, Text, Uuid
from sqlalchemy.orm import relationship

from inbox.database import Base


class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    wa_id = Column(String(32), nullable=False, unique=True, index=True)
    phone_number = Column(String(32))
    name = Column(Text, nullable=False)
    profile_name = Column(Text)
    status = Column(String(16), nullable=False, default="new")  # new, lead, customer
    last_active_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))

    conversations = relationship("Conversation", back_populates="contact", cascade="all, delete-orphan")
