"""
Content-addressed cache of prepared media.

Prepared clips (trimmed, capped at 720p, even dimensions) and extracted
frames are named after an md5 of the source identity (path, size, mtime) and
the requested range, so resubmitting the same clip/range never transcodes
twice. The prepared directory itself is the cache: a file that still exists
on disk is reused, one that was swept is rebuilt.
"""
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from clipgen.errors import MediaPreparationError, TranscodeError
from clipgen.media.ffmpeg import Transcoder
from clipgen.utils.locks import KeyedLocks
from clipgen.utils.logging import log_media_prepared
from clipgen.utils.metrics import media_cache_requests_total, media_transcode_duration_seconds

logger = logging.getLogger(__name__)

CLIP_PREFIX = "prep_"
FRAME_PREFIX = "frame_"
FALLBACK_SCALE_FILTER = "scale=-2:720"


@dataclass
class PreparedMedia:
    """Index entry for a prepared file."""
    path: str
    size: int
    mtime: float


def _source_identity(source_path: str) -> Tuple[int, float]:
    try:
        stats = os.stat(source_path)
    except FileNotFoundError:
        raise MediaPreparationError(f"Source file not found: {source_path}")
    return stats.st_size, stats.st_mtime


def _md5(raw: str) -> str:
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def _non_empty(path: str) -> bool:
    return os.path.exists(path) and os.path.getsize(path) > 0


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class MediaPrepCache:
    """Trims/downscales clips and extracts frames, reusing previous results."""

    def __init__(
        self,
        transcoder: Transcoder,
        prepared_dir: str,
        max_width: int = 1280,
        max_height: int = 720,
    ):
        """
        Args:
            transcoder: Tool that performs the actual encode
            prepared_dir: Directory holding prepared files
            max_width: Width ceiling for prepared clips
            max_height: Height ceiling for prepared clips
        """
        self.transcoder = transcoder
        self.prepared_dir = prepared_dir
        self.scale_filter = (
            f"scale='min({max_width},iw)':'min({max_height},ih)'"
            f":force_original_aspect_ratio=decrease,pad=ceil(iw/2)*2:ceil(ih/2)*2"
        )
        self._index: Dict[str, PreparedMedia] = {}
        self._key_locks = KeyedLocks()
        os.makedirs(prepared_dir, exist_ok=True)

    @staticmethod
    def clip_cache_key(source_path: str, in_point: Optional[float], out_point: Optional[float]) -> str:
        size, mtime = _source_identity(source_path)
        in_part = "full" if in_point is None else f"{in_point}"
        out_part = "full" if out_point is None else f"{out_point}"
        return _md5(f"{source_path}|{size}|{mtime}|{in_part}|{out_part}")

    @staticmethod
    def frame_cache_key(source_path: str, offset: float) -> str:
        size, mtime = _source_identity(source_path)
        return _md5(f"{source_path}|{size}|{mtime}|frame|{offset}")

    def _lookup(self, key: str, path: str) -> bool:
        """True if a usable prepared file exists for key."""
        if not _non_empty(path):
            self._index.pop(key, None)
            return False

        entry = self._index.get(key)
        stats = os.stat(path)
        if entry and (entry.size != stats.st_size or entry.mtime != stats.st_mtime):
            # Rewritten behind our back; rebuild
            self._index.pop(key, None)
            return False

        if entry is None:
            # Prepared by an earlier process; adopt it
            self._index[key] = PreparedMedia(path=path, size=stats.st_size, mtime=stats.st_mtime)
        return True

    def _record(self, key: str, path: str) -> None:
        stats = os.stat(path)
        self._index[key] = PreparedMedia(path=path, size=stats.st_size, mtime=stats.st_mtime)

    async def prepare_clip(
        self,
        source_path: str,
        in_point: Optional[float] = None,
        out_point: Optional[float] = None,
    ) -> str:
        """
        Trim to [in_point, out_point] and cap resolution.

        Trimming only applies when both points are given and in_point < out_point.

        Args:
            source_path: Uploaded source file
            in_point: Trim start in seconds
            out_point: Trim end in seconds

        Returns:
            Path to the prepared MP4

        Raises:
            MediaPreparationError: If the source is missing or both filter
                graphs fail
        """
        key = self.clip_cache_key(source_path, in_point, out_point)
        output_path = os.path.join(self.prepared_dir, f"{CLIP_PREFIX}{key}.mp4")

        async with self._key_locks.hold(key):
            if self._lookup(key, output_path):
                media_cache_requests_total.labels(kind="clip", result="hit").inc()
                log_media_prepared(logger, "clip", source_path, output_path, cache_hit=True)
                return output_path

            media_cache_requests_total.labels(kind="clip", result="miss").inc()

            needs_trim = in_point is not None and out_point is not None and in_point < out_point
            start = in_point if needs_trim else None
            duration = (out_point - in_point) if needs_trim else None

            start_time = time.time()
            try:
                await self.transcoder.transcode_clip(
                    source_path, output_path, self.scale_filter, start=start, duration=duration
                )
            except TranscodeError as e:
                logger.warning(f"Primary scale filter failed for {source_path}, retrying with {FALLBACK_SCALE_FILTER}: {e}")
                _remove_quietly(output_path)
                try:
                    await self.transcoder.transcode_clip(
                        source_path, output_path, FALLBACK_SCALE_FILTER,
                        start=start, duration=duration, faststart=False,
                    )
                except TranscodeError as retry_error:
                    _remove_quietly(output_path)
                    raise MediaPreparationError(f"Failed to prepare clip: {retry_error}") from retry_error

            elapsed = time.time() - start_time
            media_transcode_duration_seconds.labels(operation="clip").observe(elapsed)

            if not _non_empty(output_path):
                _remove_quietly(output_path)
                raise MediaPreparationError("Clip preparation produced no output")

            self._record(key, output_path)
            log_media_prepared(
                logger, "clip", source_path, output_path,
                cache_hit=False, duration_ms=elapsed * 1000, trimmed=needs_trim,
            )
            return output_path

    async def extract_frame(self, source_path: str, offset: float = 0.0) -> str:
        """
        Grab one JPEG frame at offset seconds, falling back to frame 0.

        Args:
            source_path: Uploaded source file
            offset: Position in seconds

        Returns:
            Path to the extracted JPEG

        Raises:
            MediaPreparationError: If no frame could be written
        """
        key = self.frame_cache_key(source_path, offset)
        output_path = os.path.join(self.prepared_dir, f"{FRAME_PREFIX}{key}.jpg")

        async with self._key_locks.hold(key):
            if self._lookup(key, output_path):
                media_cache_requests_total.labels(kind="frame", result="hit").inc()
                log_media_prepared(logger, "frame", source_path, output_path, cache_hit=True)
                return output_path

            media_cache_requests_total.labels(kind="frame", result="miss").inc()
            start_time = time.time()

            error: Optional[Exception] = None
            try:
                await self.transcoder.grab_frame(source_path, output_path, offset)
            except TranscodeError as e:
                error = e

            # Seeking past the end exits cleanly but writes nothing
            if (error is not None or not _non_empty(output_path)) and offset > 0:
                logger.warning(f"Frame extraction at {offset}s failed for {source_path}, trying frame 0")
                _remove_quietly(output_path)
                error = None
                try:
                    await self.transcoder.grab_frame(source_path, output_path, 0.0)
                except TranscodeError as e:
                    error = e

            if error is not None:
                _remove_quietly(output_path)
                raise MediaPreparationError(f"Frame extraction failed: {error}") from error
            if not _non_empty(output_path):
                _remove_quietly(output_path)
                raise MediaPreparationError("Frame extraction produced no output")

            elapsed = time.time() - start_time
            media_transcode_duration_seconds.labels(operation="frame").observe(elapsed)
            self._record(key, output_path)
            log_media_prepared(
                logger, "frame", source_path, output_path,
                cache_hit=False, duration_ms=elapsed * 1000, offset=offset,
            )
            return output_path

    def sweep_older_than(self, max_age_seconds: float) -> int:
        """
        Delete prepared clips and frames older than max_age_seconds.

        Scans the directory rather than the index so files left by other
        processes are swept too.

        Returns:
            Number of files deleted
        """
        if not os.path.isdir(self.prepared_dir):
            return 0

        cutoff = time.time() - max_age_seconds
        removed_paths = set()
        for name in os.listdir(self.prepared_dir):
            if not name.startswith((CLIP_PREFIX, FRAME_PREFIX)):
                continue
            path = os.path.join(self.prepared_dir, name)
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed_paths.add(path)
            except FileNotFoundError:
                continue

        for key in [k for k, entry in self._index.items() if entry.path in removed_paths]:
            del self._index[key]

        if removed_paths:
            logger.info(f"Swept {len(removed_paths)} prepared media files older than {max_age_seconds}s")
        return len(removed_paths)
