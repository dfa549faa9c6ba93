from sqlalchemy import Column, DateTime, Integer, String, Text

from inbox.database import Base


class Setting(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), nullable=False, unique=True)
    value = Column(Text)
    type = Column(String(16), nullable=False, default="string")  # string, boolean, integer, json
    group = Column(String(64), nullable=False, default="general")
    description = Column(Text)
    updated_at = Column(DateTime(timezone=True))
