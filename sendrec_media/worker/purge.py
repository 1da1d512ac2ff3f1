import logging
import threading
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class DeleteFailed(Exception):
    pass


class DeleteCancelled(DeleteFailed):
    pass


def delete_with_retry(store, key: str, max_attempts: int = 3, backoff: float = 1.0,
                      cancel: Optional[threading.Event] = None) -> None:
    """Delete ``key``, retrying with exponential backoff.

    Raises DeleteCancelled if ``cancel`` is set while waiting between
    attempts, DeleteFailed (chained to the last storage error) once every
    attempt has failed.
    """
    cancel = cancel or threading.Event()
    last_error = None
    for attempt in range(max_attempts):
        delay = backoff * (2 ** (attempt - 1)) if attempt else 0
        if cancel.wait(delay):
            raise DeleteCancelled(f"delete of {key} cancelled after {attempt} attempts") from last_error
        try:
            store.delete_object(key)
            return
        except Exception as e:
            last_error = e
            logger.error("storage: delete attempt failed attempt=%d max_attempts=%d key=%s: %s",
                         attempt + 1, max_attempts, key, e)
    raise DeleteFailed(f"all {max_attempts} delete attempts failed for {key}") from last_error


def purge_video_files(ledger, store, file_key: str, extra_keys: Iterable[Optional[str]] = (),
                      max_attempts: int = 3, backoff: float = 1.0,
                      cancel: Optional[threading.Event] = None) -> bool:
    """Remove the objects of a soft-deleted video and record the purge.

    ``file_purged_at`` is only written after the main file is confirmed
    deleted. Thumbnail, webcam and transcript objects are best effort.
    """
    try:
        delete_with_retry(store, file_key, max_attempts, backoff, cancel)
    except DeleteFailed as e:
        logger.error("purge: all delete retries failed key=%s: %s", file_key, e)
        return False
    for key in extra_keys:
        if not key:
            continue
        try:
            delete_with_retry(store, key, max_attempts, backoff, cancel)
        except DeleteFailed as e:
            logger.error("purge: delete failed key=%s: %s", key, e)
    try:
        ledger.mark_purged(file_key)
    except Exception:
        logger.exception("purge: failed to mark file_purged_at key=%s", file_key)
        return False
    return True


def purge_orphaned_files(ledger, store, max_attempts: int = 3, backoff: float = 1.0, limit: int = 50) -> int:
    """Retry purges for deleted videos whose file is not yet confirmed gone."""
    purged = 0
    for file_key in ledger.unpurged_file_keys(limit=limit):
        if purge_video_files(ledger, store, file_key, max_attempts=max_attempts, backoff=backoff):
            purged += 1
    if purged:
        logger.info("cleanup: purged %d orphaned files", purged)
    return purged
