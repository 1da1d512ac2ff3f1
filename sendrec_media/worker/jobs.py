"""Background post-processing jobs.

Every job downloads into a private Workspace, runs one ffmpeg transform and
writes the result back over the same object key. Jobs never raise: a failure
at any stage is logged with the video id and stage, and the ledger row is
returned to a servable state before the job returns.
"""
import logging
import os
from typing import Sequence, Tuple

from .media import (
    MediaToolError,
    composite_args,
    extract_frame_args,
    fix_cues_args,
    remove_segments_args,
    trim_args,
)
from .workspace import Workspace
from ..common.storage import extension_for_content_type

logger = logging.getLogger(__name__)

THUMBNAIL_SEEK = 2


def _non_empty(path: str) -> bool:
    return os.path.exists(path) and os.path.getsize(path) > 0


def _ready_fallback(ledger, video_id: str, clear_webcam: bool = False) -> None:
    try:
        ledger.mark_ready(video_id, clear_webcam=clear_webcam)
    except Exception:
        logger.exception("failed to set fallback ready status video_id=%s", video_id)


def _after_edit(ledger, store, tool, job: str, video_id: str, file_key: str, thumbnail_key: str) -> None:
    generate_thumbnail(ledger, store, tool, video_id, file_key, thumbnail_key)
    try:
        ledger.enqueue_transcription(video_id)
    except Exception:
        logger.exception("%s: failed to enqueue transcription video_id=%s", job, video_id)


def generate_thumbnail(ledger, store, tool, video_id: str, file_key: str, thumbnail_key: str) -> None:
    """Extract a poster frame and store it at ``thumbnail_key``.

    Videos shorter than the seek offset produce an empty frame, in which case
    extraction is retried from the start. A video that yields no frame at all
    is left without a thumbnail.
    """
    stage = "download"
    try:
        with Workspace("thumb") as ws:
            src = ws.path("video", os.path.splitext(file_key)[1] or ".webm")
            frame = ws.path("frame", ".jpg")
            store.download_to_file(file_key, src)

            stage = "ffmpeg"
            tool.run(extract_frame_args(src, frame, THUMBNAIL_SEEK))
            if not _non_empty(frame):
                logger.info("thumbnail: video too short for seek=%d, retrying at seek=0 video_id=%s",
                            THUMBNAIL_SEEK, video_id)
                tool.run(extract_frame_args(src, frame, 0))
            if not _non_empty(frame):
                logger.warning("thumbnail: no frame extracted, skipping video_id=%s", video_id)
                return

            stage = "upload"
            store.upload_file(thumbnail_key, frame, "image/jpeg")

            stage = "ledger"
            ledger.set_thumbnail(video_id, thumbnail_key)
    except Exception:
        logger.exception("thumbnail: %s failed video_id=%s", stage, video_id)


def composite_webcam(ledger, store, tool, video_id: str, screen_key: str, webcam_key: str,
                     thumbnail_key: str, content_type: str) -> None:
    """Overlay the webcam track onto the screen recording, in place of the screen object.

    Any failure, including a webcam capture with no decodable frames, leaves
    the screen-only recording as the video and drops the webcam key.
    """
    logger.info("composite: starting webcam overlay video_id=%s content_type=%s", video_id, content_type)
    ext = extension_for_content_type(content_type)
    stage = "download"
    try:
        with Workspace("composite") as ws:
            screen = ws.path("screen", ext)
            webcam = ws.path("webcam", os.path.splitext(webcam_key)[1] or ext)
            output = ws.path("output", ext)
            store.download_to_file(screen_key, screen)
            store.download_to_file(webcam_key, webcam)

            stage = "probe"
            for label, path in (("screen", screen), ("webcam", webcam)):
                try:
                    frames, _ = tool.probe_frames(path)
                except MediaToolError as e:
                    logger.warning("composite: %s probe failed, skipping overlay video_id=%s: %s",
                                   label, video_id, e)
                    _ready_fallback(ledger, video_id, clear_webcam=True)
                    return
                if frames == 0:
                    logger.warning("composite: %s track has no frames, skipping overlay video_id=%s",
                                   label, video_id)
                    _ready_fallback(ledger, video_id, clear_webcam=True)
                    return

            stage = "ffmpeg"
            tool.run(composite_args(screen, webcam, output, content_type))
            if not _non_empty(output):
                raise MediaToolError("ffmpeg composite: empty output")

            stage = "upload"
            store.upload_file(screen_key, output, content_type)
    except Exception:
        logger.exception("composite: %s failed video_id=%s", stage, video_id)
        _ready_fallback(ledger, video_id, clear_webcam=True)
        return

    try:
        store.delete_object(webcam_key)
    except Exception as e:
        logger.error("composite: failed to delete webcam file key=%s: %s", webcam_key, e)

    try:
        ledger.mark_ready(video_id, clear_webcam=True)
    except Exception:
        logger.exception("composite: failed to update status video_id=%s", video_id)
        return

    _after_edit(ledger, store, tool, "composite", video_id, screen_key, thumbnail_key)
    logger.info("composite: completed video_id=%s", video_id)


def _edit_in_place(ledger, store, tool, job: str, video_id: str, file_key: str, content_type: str,
                   build_args, audio_probe: bool = False) -> bool:
    ext = extension_for_content_type(content_type)
    stage = "download"
    try:
        with Workspace(job) as ws:
            src = ws.path("input", ext)
            dst = ws.path("output", ext)
            store.download_to_file(file_key, src)

            stage = "ffmpeg"
            if audio_probe:
                tool.run(build_args(src, dst, tool.has_audio(src)))
            else:
                tool.run(build_args(src, dst))
            if not _non_empty(dst):
                raise MediaToolError(f"ffmpeg {job}: empty output")

            stage = "upload"
            store.upload_file(file_key, dst, content_type)
    except Exception:
        logger.exception("%s: %s failed video_id=%s", job, stage, video_id)
        _ready_fallback(ledger, video_id)
        return False
    return True


def trim_video(ledger, store, tool, video_id: str, file_key: str, thumbnail_key: str, content_type: str,
               start: float, end: float) -> None:
    logger.info("trim: starting video_id=%s range=%.1f-%.1f", video_id, start, end)

    def build(src, dst):
        return trim_args(src, dst, start, end, content_type)

    if not _edit_in_place(ledger, store, tool, "trim", video_id, file_key, content_type, build):
        return
    try:
        ledger.mark_ready(video_id, duration=int(end - start))
    except Exception:
        logger.exception("trim: failed to update status video_id=%s", video_id)
        return
    _after_edit(ledger, store, tool, "trim", video_id, file_key, thumbnail_key)
    logger.info("trim: completed video_id=%s", video_id)


def remove_segments(ledger, store, tool, video_id: str, file_key: str, thumbnail_key: str, content_type: str,
                    segments: Sequence[Tuple[float, float]], original_duration: int) -> None:
    logger.info("remove-segments: starting video_id=%s segments=%d", video_id, len(segments))

    def build(src, dst, audio):
        return remove_segments_args(src, dst, segments, content_type, audio)

    if not _edit_in_place(ledger, store, tool, "remove-segments", video_id, file_key, content_type, build,
                          audio_probe=True):
        return
    removed = sum(end - start for start, end in segments)
    try:
        ledger.mark_ready(video_id, duration=int(original_duration - removed))
    except Exception:
        logger.exception("remove-segments: failed to update status video_id=%s", video_id)
        return
    _after_edit(ledger, store, tool, "remove-segments", video_id, file_key, thumbnail_key)
    logger.info("remove-segments: completed video_id=%s", video_id)


def fix_webm_cues(ledger, store, tool, video_id: str, file_key: str) -> None:
    """Remux a WebM recording so it carries seek cues.

    The repair holds the row in processing for its whole run so no edit can
    replace the file underneath it; the row goes back to ready afterwards.
    The original object is left alone on failure.
    """
    try:
        acquired = ledger.acquire_processing(video_id)
    except Exception:
        logger.exception("fix-cues: failed to acquire video_id=%s", video_id)
        return
    if not acquired:
        logger.info("fix-cues: video not ready, skipping video_id=%s", video_id)
        return

    logger.info("fix-cues: starting video_id=%s", video_id)
    stage = "download"
    try:
        with Workspace("fixcues") as ws:
            src = ws.path("input", ".webm")
            dst = ws.path("output", ".webm")
            store.download_to_file(file_key, src)

            stage = "ffmpeg"
            tool.run(fix_cues_args(src, dst))
            if not _non_empty(dst):
                raise MediaToolError("ffmpeg fix cues: empty output")

            stage = "upload"
            store.upload_file(file_key, dst, "video/webm")

        stage = "ledger"
        ledger.mark_cues_fixed(video_id)
    except Exception:
        logger.exception("fix-cues: %s failed video_id=%s", stage, video_id)
    else:
        logger.info("fix-cues: completed video_id=%s", video_id)
    finally:
        _ready_fallback(ledger, video_id)


def probe_duration(ledger, store, tool, video_id: str, file_key: str) -> None:
    stage = "download"
    try:
        with Workspace("probe") as ws:
            src = ws.path("video", os.path.splitext(file_key)[1])
            store.download_to_file(file_key, src)
            stage = "ffprobe"
            seconds = int(tool.probe_duration(src))
        if seconds <= 0:
            logger.warning("probe: invalid duration %d video_id=%s", seconds, video_id)
            return
        stage = "ledger"
        ledger.set_duration(video_id, seconds)
    except Exception:
        logger.exception("probe: %s failed video_id=%s", stage, video_id)
        return
    logger.info("probe: duration is %ds video_id=%s", seconds, video_id)
