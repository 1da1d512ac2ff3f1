"""Persisted video lifecycle operations.

Every transition is a single UPDATE so the database row is the only
synchronization point between the API and the workers: a transition that
expects a prior status reports whether it matched via ``rowcount``.
"""
import logging
from typing import List, Optional

from sqlalchemy import func, select, update

from .db import SessionLocal
from .models import Video, VideoStatus

logger = logging.getLogger(__name__)


class VideoLedger:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def _execute(self, stmt) -> int:
        with self.session_factory() as db:
            result = db.execute(stmt.execution_options(synchronize_session=False))
            db.commit()
            return result.rowcount

    def get(self, video_id: str) -> Optional[Video]:
        with self.session_factory() as db:
            return db.get(Video, video_id)

    def acquire_processing(self, video_id: str) -> bool:
        """Move a ready video to processing; False means another edit owns it."""
        stmt = (
            update(Video)
            .where(Video.id == video_id, Video.status == VideoStatus.ready)
            .values(status=VideoStatus.processing, updated_at=func.now())
        )
        return self._execute(stmt) == 1

    def finish_upload(self, video_id: str, has_webcam: bool) -> bool:
        new_status = VideoStatus.processing if has_webcam else VideoStatus.ready
        stmt = (
            update(Video)
            .where(Video.id == video_id, Video.status == VideoStatus.uploading)
            .values(status=new_status, updated_at=func.now())
        )
        return self._execute(stmt) == 1

    def mark_ready(self, video_id: str, clear_webcam: bool = False, duration: Optional[int] = None) -> None:
        values = {"status": VideoStatus.ready, "updated_at": func.now()}
        if clear_webcam:
            values["webcam_key"] = None
        if duration is not None:
            values["duration"] = duration
        self._execute(update(Video).where(Video.id == video_id).values(**values))

    def set_thumbnail(self, video_id: str, thumbnail_key: str) -> None:
        self._execute(
            update(Video).where(Video.id == video_id).values(thumbnail_key=thumbnail_key, updated_at=func.now())
        )

    def set_duration(self, video_id: str, seconds: int) -> None:
        self._execute(update(Video).where(Video.id == video_id).values(duration=seconds, updated_at=func.now()))

    def mark_cues_fixed(self, video_id: str) -> None:
        self._execute(update(Video).where(Video.id == video_id).values(cues_fixed=True, updated_at=func.now()))

    def enqueue_transcription(self, video_id: str) -> None:
        stmt = (
            update(Video)
            .where(Video.id == video_id, Video.status != VideoStatus.deleted)
            .values(transcript_status="pending", updated_at=func.now())
        )
        self._execute(stmt)

    def mark_deleted(self, video_id: str) -> Optional[Video]:
        """Soft delete; returns the row as it was deleted, None if nothing matched.

        Rows owned by a running job (processing) are not deleted.
        """
        deletable = (Video.id == video_id, Video.status.notin_([VideoStatus.deleted, VideoStatus.processing]))
        with self.session_factory() as db:
            video = db.execute(
                select(Video).where(*deletable).with_for_update()
            ).scalar_one_or_none()
            if video is None:
                return None
            result = db.execute(
                update(Video)
                .where(*deletable)
                .values(status=VideoStatus.deleted, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount != 1:
                return None
            return video

    def mark_purged(self, file_key: str) -> None:
        self._execute(update(Video).where(Video.file_key == file_key).values(file_purged_at=func.now()))

    def unpurged_file_keys(self, limit: int = 50) -> List[str]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Video.file_key)
                .where(Video.status == VideoStatus.deleted, Video.file_purged_at.is_(None))
                .limit(limit)
            ).scalars().all()
            return list(rows)

    def unfixed_webm(self, limit: int = 5) -> List[Video]:
        with self.session_factory() as db:
            rows = db.execute(
                select(Video)
                .where(
                    Video.content_type == "video/webm",
                    Video.status == VideoStatus.ready,
                    Video.cues_fixed.is_(False),
                )
                .order_by(Video.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return list(rows)
