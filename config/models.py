"""
SQLAlchemy ORM Models
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

class Watch(Base):
    __tablename__ = 'monitors'

    id = Column(String, primary_key=True)
    target_handle = Column(String, index=True)  # None while unbound or in backoff
    match_spec = Column(JSON, nullable=False)  # [{"term": ..., "joiner": None|"AND"|"OR"}]
    interval_seconds = Column(Integer, nullable=False, default=15)
    state = Column(String, nullable=False, default='active')
    found_at = Column(DateTime)
    next_refresh_at = Column(DateTime)
    session_kind = Column(String, nullable=False, default='normal')
    reset_cycle_count = Column(Integer, nullable=False, default=0)
    source_url = Column(String, nullable=False, default='')
    display_label = Column(String, default='')
    recovery_error = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

class HistoryEntry(Base):
    __tablename__ = 'history'

    entry_id = Column(Integer, primary_key=True)
    watch_id = Column(String, nullable=False)
    snapshot = Column(JSON, nullable=False)
    found_at = Column(DateTime)
    dismissed_at = Column(DateTime, nullable=False)

class SavedConfig(Base):
    __tablename__ = 'saved_configs'

    config_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    templates = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)

class Placement(Base):
    __tablename__ = 'placements'

    normalized_url = Column(String, primary_key=True)
    left = Column(Integer)
    top = Column(Integer)
    width = Column(Integer)
    height = Column(Integer)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
