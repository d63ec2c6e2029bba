"""
SQLAlchemy Database Models

The SQL backend stores the durable key-value slots in a single table.
"""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from canteen.database import Base


class KeyValueEntry(Base):
    """One storage slot: a key and the text stored under it."""
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<KeyValueEntry {self.key!r} ({len(self.value or '')} chars)>"
