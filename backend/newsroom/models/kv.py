from sqlalchemy import Column, String, Text, DateTime, Float, Index
from datetime import datetime
from newsroom.core.database import Base


class KeyValueEntry(Base):
    __tablename__ = "kv_entries"

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SetMember(Base):
    __tablename__ = "kv_set_members"

    key = Column(String(512), primary_key=True)
    member = Column(String(512), primary_key=True)


class SortedSetMember(Base):
    __tablename__ = "kv_sorted_set_members"

    key = Column(String(512), primary_key=True)
    member = Column(String(512), primary_key=True)
    score = Column(Float, nullable=False)

    # Range scans walk (key, score)
    __table_args__ = (Index("idx_kv_zset_key_score", "key", "score"),)
