from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from .database import Base


class KeyValueEntryORM(Base):
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
