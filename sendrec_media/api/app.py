import logging
from contextlib import asynccontextmanager
from typing import List

from celery import Celery
from fastapi import Depends, FastAPI, HTTPException, Response
from pydantic import BaseModel, ConfigDict, Field

from ..common.config import settings
from ..common.db import Base, engine
from ..common.ledger import VideoLedger
from ..common.log import configure_logging
from ..common.models import VideoStatus
from ..common.storage import AssetStore, thumbnail_key_for

logger = logging.getLogger(__name__)

MAX_SEGMENTS = 200
MIN_RESULT_SECONDS = 1.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="SendRec Media Pipeline", lifespan=lifespan)

# Celery app
celery_app = Celery("media_pipeline", broker=settings.redis_url, backend=settings.redis_url)


class Dispatcher:
    """Hands jobs to the worker without waiting for them."""

    def __init__(self, celery):
        self.celery = celery

    def send(self, task: str, *args):
        logger.info("job: enqueued task=%s", task)
        self.celery.send_task(task, args=list(args))


def get_ledger() -> VideoLedger:
    return VideoLedger()


def get_store() -> AssetStore:
    return AssetStore()


def get_dispatcher() -> Dispatcher:
    return Dispatcher(celery_app)


class TrimReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    start_seconds: float = Field(alias="startSeconds")
    end_seconds: float = Field(alias="endSeconds")


class SegmentRange(BaseModel):
    start: float
    end: float


class RemoveSegmentsReq(BaseModel):
    segments: List[SegmentRange]


def _ready_video(ledger: VideoLedger, video_id: str):
    video = ledger.get(video_id)
    if not video or video.status == VideoStatus.deleted:
        raise HTTPException(status_code=404, detail="video not found")
    if video.status != VideoStatus.ready:
        raise HTTPException(status_code=409, detail="video is currently being processed")
    return video


def _acquire(ledger: VideoLedger, video_id: str):
    if not ledger.acquire_processing(video_id):
        raise HTTPException(status_code=409, detail="video is already being processed")


def _send(dispatcher: Dispatcher, task: str, *args):
    try:
        dispatcher.send(task, *args)
    except Exception as e:
        logger.error("job: enqueue failed task=%s: %s", task, e)
        raise HTTPException(status_code=503, detail="job queue unavailable") from e


def _send_owned(dispatcher: Dispatcher, ledger: VideoLedger, video_id: str, task: str, *args,
                clear_webcam: bool = False):
    """Dispatch a job for a row already moved to processing, releasing the row if the job cannot be queued."""
    try:
        _send(dispatcher, task, *args)
    except HTTPException:
        ledger.mark_ready(video_id, clear_webcam=clear_webcam)
        raise


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/videos/{video_id}/complete")
def complete_upload(video_id: str, ledger: VideoLedger = Depends(get_ledger),
                    store: AssetStore = Depends(get_store), dispatcher: Dispatcher = Depends(get_dispatcher)):
    video = ledger.get(video_id)
    if not video or video.status != VideoStatus.uploading:
        raise HTTPException(status_code=404, detail="video not found")

    try:
        size, content_type = store.head_object(video.file_key)
    except Exception as e:
        logger.warning("complete: head failed video_id=%s: %s", video_id, e)
        raise HTTPException(status_code=400, detail="could not verify upload") from e
    if size <= 0 or (settings.max_upload_bytes > 0 and size > settings.max_upload_bytes):
        raise HTTPException(status_code=400, detail="uploaded file invalid size")
    if video.file_size > 0 and size != video.file_size:
        raise HTTPException(status_code=400, detail="uploaded file size mismatch")
    if content_type != video.content_type:
        raise HTTPException(status_code=400, detail="uploaded file invalid type")

    has_webcam = video.webcam_key is not None
    if not ledger.finish_upload(video_id, has_webcam):
        raise HTTPException(status_code=404, detail="video not found")

    thumb_key = thumbnail_key_for(video.file_key)
    if has_webcam:
        _send_owned(dispatcher, ledger, video_id, "worker.tasks.composite", video_id, video.file_key,
                    video.webcam_key, thumb_key, video.content_type, clear_webcam=True)
        return {"status": VideoStatus.processing.value}

    ledger.enqueue_transcription(video_id)
    # the video is already servable; a thumbnail or duration can be regenerated later
    try:
        dispatcher.send("worker.tasks.thumbnail", video_id, video.file_key, thumb_key)
        if video.duration == 0:
            dispatcher.send("worker.tasks.probe_duration", video_id, video.file_key)
    except Exception as e:
        logger.error("complete: enqueue failed video_id=%s: %s", video_id, e)
    return {"status": VideoStatus.ready.value}


@app.post("/videos/{video_id}/trim", status_code=202)
def trim(video_id: str, req: TrimReq, ledger: VideoLedger = Depends(get_ledger),
         dispatcher: Dispatcher = Depends(get_dispatcher)):
    if req.start_seconds < 0:
        raise HTTPException(status_code=400, detail="startSeconds must not be negative")
    if req.end_seconds <= req.start_seconds:
        raise HTTPException(status_code=400, detail="endSeconds must be greater than startSeconds")

    video = _ready_video(ledger, video_id)
    if req.end_seconds > video.duration:
        raise HTTPException(status_code=400, detail="endSeconds exceeds video duration")
    if req.end_seconds - req.start_seconds < MIN_RESULT_SECONDS:
        raise HTTPException(status_code=400, detail="trimmed video must be at least 1 second")

    _acquire(ledger, video_id)
    _send_owned(dispatcher, ledger, video_id, "worker.tasks.trim", video_id, video.file_key,
                thumbnail_key_for(video.file_key), video.content_type, req.start_seconds, req.end_seconds)
    return Response(status_code=202)


@app.post("/videos/{video_id}/remove-segments", status_code=202)
def remove_segments(video_id: str, req: RemoveSegmentsReq, ledger: VideoLedger = Depends(get_ledger),
                    dispatcher: Dispatcher = Depends(get_dispatcher)):
    segments = req.segments
    if not segments:
        raise HTTPException(status_code=400, detail="segments must not be empty")
    if len(segments) > MAX_SEGMENTS:
        raise HTTPException(status_code=400, detail=f"too many segments (max {MAX_SEGMENTS})")
    for seg in segments:
        if seg.start < 0:
            raise HTTPException(status_code=400, detail="segment start must not be negative")
        if seg.end <= seg.start:
            raise HTTPException(status_code=400, detail="segment end must be greater than start")
    for prev, cur in zip(segments, segments[1:]):
        if cur.start < prev.start:
            raise HTTPException(status_code=400, detail="segments must be sorted by start time")
        if cur.start < prev.end:
            raise HTTPException(status_code=400, detail="segments must not overlap")

    video = _ready_video(ledger, video_id)
    if any(seg.end > video.duration for seg in segments):
        raise HTTPException(status_code=400, detail="segment end exceeds video duration")
    removed = sum(seg.end - seg.start for seg in segments)
    if video.duration - removed < MIN_RESULT_SECONDS:
        raise HTTPException(status_code=400, detail="resulting video must be at least 1 second")

    _acquire(ledger, video_id)
    _send_owned(dispatcher, ledger, video_id, "worker.tasks.remove_segments", video_id, video.file_key,
                thumbnail_key_for(video.file_key), video.content_type,
                [[seg.start, seg.end] for seg in segments], video.duration)
    return Response(status_code=202)


@app.post("/videos/{video_id}/fix-cues", status_code=202)
def fix_cues(video_id: str, ledger: VideoLedger = Depends(get_ledger),
             dispatcher: Dispatcher = Depends(get_dispatcher)):
    video = _ready_video(ledger, video_id)
    if video.content_type != "video/webm":
        raise HTTPException(status_code=400, detail="only webm recordings need cue repair")
    _send(dispatcher, "worker.tasks.fix_cues", video_id, video.file_key)
    return Response(status_code=202)


@app.post("/videos/{video_id}/thumbnail/reset", status_code=202)
def reset_thumbnail(video_id: str, ledger: VideoLedger = Depends(get_ledger),
                    dispatcher: Dispatcher = Depends(get_dispatcher)):
    video = _ready_video(ledger, video_id)
    _send(dispatcher, "worker.tasks.thumbnail", video_id, video.file_key, thumbnail_key_for(video.file_key))
    return Response(status_code=202)


@app.delete("/videos/{video_id}", status_code=204)
def delete_video(video_id: str, ledger: VideoLedger = Depends(get_ledger),
                 dispatcher: Dispatcher = Depends(get_dispatcher)):
    video = ledger.mark_deleted(video_id)
    if video is None:
        current = ledger.get(video_id)
        if current is not None and current.status == VideoStatus.processing:
            raise HTTPException(status_code=409, detail="video is currently being processed")
        raise HTTPException(status_code=404, detail="video not found")
    extra = [video.thumbnail_key, video.webcam_key, video.transcript_key]
    # an unqueued purge is picked up by the orphaned-file sweep
    try:
        dispatcher.send("worker.tasks.purge_video", video.file_key, [k for k in extra if k])
    except Exception as e:
        logger.error("delete: enqueue purge failed video_id=%s: %s", video_id, e)
    return Response(status_code=204)
