import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, BigInteger

from .db import Base


class VideoStatus(str, enum.Enum):
    uploading = "uploading"
    processing = "processing"
    ready = "ready"
    deleted = "deleted"


class Video(Base):
    __tablename__ = "videos"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(Enum(VideoStatus), default=VideoStatus.uploading, nullable=False, index=True)
    file_key = Column(String, nullable=False, index=True)
    webcam_key = Column(String, nullable=True)
    thumbnail_key = Column(String, nullable=True)
    transcript_key = Column(String, nullable=True)
    content_type = Column(String, nullable=False, default="video/webm")
    duration = Column(Integer, nullable=False, default=0)  # seconds
    file_size = Column(BigInteger, nullable=False, default=0)
    cues_fixed = Column(Boolean, nullable=False, default=False)
    transcript_status = Column(String, nullable=False, default="none")
    file_purged_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
