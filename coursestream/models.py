# coursestream/models.py
from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.sql import func

from .db import Base


class Video(Base):
    """A published asset, one row per completed processing job"""
    __tablename__ = "videos"
    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(String, unique=True, index=True)
    owner = Column(String, index=True)
    course_id = Column(String, nullable=True, index=True)
    filename = Column(String)
    manifest_url = Column(String)
    duration = Column(Float)
    qualities = Column(JSON)
    published_at = Column(DateTime(timezone=True), server_default=func.now())


class WatchHistory(Base):
    __tablename__ = "watch_history"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, index=True)
    user_id = Column(String, index=True)
    asset_id = Column(String, index=True)
    course_id = Column(String, nullable=True)
    watch_time = Column(Float, default=0)
    completion_percentage = Column(Float, default=0)
    completed = Column(Boolean, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
