"""
Media preparation: transcoding, prepared-file cache and upload handle cache.
"""
from clipgen.media.ffmpeg import Transcoder, FfmpegTranscoder
from clipgen.media.prep_cache import MediaPrepCache
from clipgen.media.upload_cache import UploadHandleCache

__all__ = ["Transcoder", "FfmpegTranscoder", "MediaPrepCache", "UploadHandleCache"]
