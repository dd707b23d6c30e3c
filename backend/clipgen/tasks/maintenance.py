"""
Celery maintenance tasks.
Removes prepared media (trimmed clips, extracted frames) that has not been
touched for a while, so the prepared directory does not grow without bound.
"""
import logging
import time

from clipgen.config import settings
from clipgen.media.ffmpeg import FfmpegTranscoder
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.utils.metrics import prepared_files_swept_total
from clipgen.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def sweep_prepared_dir(prepared_dir: str, max_age_seconds: float) -> int:
    """
    Delete prepared files older than max_age_seconds.

    Returns:
        Number of files removed
    """
    cache = MediaPrepCache(FfmpegTranscoder(ffmpeg_path=settings.ffmpeg_path), prepared_dir)
    return cache.sweep_older_than(max_age_seconds)


@celery_app.task(name="sweep_prepared_media")
def sweep_prepared_media_task() -> dict:
    """
    Periodic sweep of the prepared media directory (scheduled by beat).

    Returns:
        Dict with the number of removed files and the sweep duration
    """
    start_time = time.time()
    removed = sweep_prepared_dir(settings.prepared_dir, settings.prepared_max_age_seconds)
    duration_ms = (time.time() - start_time) * 1000

    prepared_files_swept_total.inc(removed)
    logger.info(
        f"Swept {removed} prepared files older than {settings.prepared_max_age_seconds}s",
        extra={"event": "prepared_media_swept", "removed": removed, "duration_ms": duration_ms},
    )
    return {"removed": removed, "duration_ms": duration_ms}
