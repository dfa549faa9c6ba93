import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship

from inbox.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(Uuid, ForeignKey("conversations.id"), nullable=False, index=True)
    wam_id = Column(String(255), unique=True)  # provider message id, idempotency key
    direction = Column(String(16), nullable=False)  # inbound, outbound
    kind = Column(String(16), nullable=False, default="text")
    body = Column(Text)
    caption = Column(Text)
    media_id = Column(String(255))
    media_url = Column(Text)
    media_mime_type = Column(String(128))
    media_filename = Column(Text)
    latitude = Column(Numeric(10, 7))
    longitude = Column(Numeric(10, 7))
    location_name = Column(Text)
    location_address = Column(Text)
    status = Column(String(16), nullable=False, default="pending")  # pending, sent, delivered, read, failed
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True))

    conversation = relationship("Conversation", back_populates="messages")
