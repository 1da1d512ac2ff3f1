import logging
import time

from celery import Celery
from celery.signals import setup_logging, worker_init

from ..common.config import settings
from ..common.db import Base, engine
from ..common.ledger import VideoLedger
from ..common.log import configure_logging
from ..common.storage import AssetStore
from . import jobs, purge
from .media import MediaTool

logger = logging.getLogger(__name__)

celery_app = Celery("worker", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "purge-orphaned-files": {
            "task": "worker.tasks.purge_orphaned_files",
            "schedule": float(settings.cleanup_interval_seconds),
        },
        "fix-existing-webm-cues": {
            "task": "worker.tasks.fix_existing_webm_cues",
            "schedule": float(settings.cues_interval_seconds),
        },
    },
)


@setup_logging.connect
def _setup_logging(**kwargs):
    configure_logging(settings.log_level)


@worker_init.connect
def _create_tables(**kwargs):
    # worker may start before api
    Base.metadata.create_all(bind=engine)


def _deps():
    return VideoLedger(), AssetStore(), MediaTool.from_settings(settings)


@celery_app.task(name="worker.tasks.thumbnail", soft_time_limit=settings.thumbnail_time_limit_seconds)
def thumbnail(video_id: str, file_key: str, thumbnail_key: str):
    jobs.generate_thumbnail(*_deps(), video_id, file_key, thumbnail_key)


@celery_app.task(name="worker.tasks.composite", soft_time_limit=settings.job_time_limit_seconds)
def composite(video_id: str, screen_key: str, webcam_key: str, thumbnail_key: str, content_type: str):
    jobs.composite_webcam(*_deps(), video_id, screen_key, webcam_key, thumbnail_key, content_type)


@celery_app.task(name="worker.tasks.trim", soft_time_limit=settings.job_time_limit_seconds)
def trim(video_id: str, file_key: str, thumbnail_key: str, content_type: str, start: float, end: float):
    jobs.trim_video(*_deps(), video_id, file_key, thumbnail_key, content_type, start, end)


@celery_app.task(name="worker.tasks.remove_segments", soft_time_limit=settings.job_time_limit_seconds)
def remove_segments(video_id: str, file_key: str, thumbnail_key: str, content_type: str,
                    segments: list, original_duration: int):
    # segments arrive as JSON lists
    ranges = [(float(start), float(end)) for start, end in segments]
    jobs.remove_segments(*_deps(), video_id, file_key, thumbnail_key, content_type, ranges, original_duration)


@celery_app.task(name="worker.tasks.fix_cues", soft_time_limit=settings.job_time_limit_seconds)
def fix_cues(video_id: str, file_key: str):
    jobs.fix_webm_cues(*_deps(), video_id, file_key)


@celery_app.task(name="worker.tasks.probe_duration", soft_time_limit=settings.thumbnail_time_limit_seconds)
def probe_duration(video_id: str, file_key: str):
    jobs.probe_duration(*_deps(), video_id, file_key)


@celery_app.task(name="worker.tasks.purge_video", soft_time_limit=settings.purge_time_limit_seconds)
def purge_video(file_key: str, extra_keys: list):
    purge.purge_video_files(
        VideoLedger(), AssetStore(), file_key, extra_keys,
        max_attempts=settings.delete_max_attempts, backoff=settings.delete_backoff_seconds,
    )


@celery_app.task(name="worker.tasks.purge_orphaned_files", soft_time_limit=settings.job_time_limit_seconds)
def purge_orphaned_files():
    purge.purge_orphaned_files(
        VideoLedger(), AssetStore(),
        max_attempts=settings.delete_max_attempts, backoff=settings.delete_backoff_seconds,
    )


def sweep_webm_cues(ledger, store, tool, budget_seconds: float) -> int:
    """Repair unfixed WebM videos one after another until the budget is spent."""
    deadline = time.monotonic() + budget_seconds
    repaired = 0
    for video in ledger.unfixed_webm():
        if time.monotonic() >= deadline:
            logger.info("fix-cues-worker: time budget spent after %d videos", repaired)
            break
        jobs.fix_webm_cues(ledger, store, tool, video.id, video.file_key)
        repaired += 1
    return repaired


# each repair swallows its own failures, so the soft limit alone cannot stop the loop
@celery_app.task(
    name="worker.tasks.fix_existing_webm_cues",
    soft_time_limit=settings.job_time_limit_seconds,
    time_limit=settings.job_time_limit_seconds + 60,
)
def fix_existing_webm_cues():
    sweep_webm_cues(*_deps(), budget_seconds=settings.job_time_limit_seconds)
