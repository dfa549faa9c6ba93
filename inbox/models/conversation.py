import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import relationship

from inbox.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # at most one open conversation per contact
        Index(
            "uq_conversations_open_contact",
            "contact_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to = Column(Text)  # staff id, null = bot or any staff
    automation_enabled = Column(Boolean, nullable=False, default=True)
    status = Column(String(16), nullable=False, default="open")  # open, closed
    last_customer_message_at = Column(DateTime(timezone=True), index=True)
    last_interaction_at = Column(DateTime(timezone=True), index=True)
    unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True))

    contact = relationship("Contact", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
