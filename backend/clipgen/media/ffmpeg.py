"""
Transcoder interface and its ffmpeg implementation.

The cache layer only depends on Transcoder, so tests can swap in a fake that
writes files without spawning processes.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import imageio_ffmpeg

from clipgen.errors import TranscodeError

logger = logging.getLogger(__name__)


class Transcoder(ABC):
    """External transcoding tool used by MediaPrepCache."""

    @abstractmethod
    async def transcode_clip(
        self,
        source_path: str,
        output_path: str,
        video_filter: str,
        start: Optional[float] = None,
        duration: Optional[float] = None,
        faststart: bool = True,
    ) -> None:
        """
        Re-encode (and optionally trim) a clip through a video filter graph.

        Args:
            source_path: Input media file
            output_path: File to write (overwritten)
            video_filter: ffmpeg -vf filter graph
            start: Seek position in seconds
            duration: Length to keep in seconds
            faststart: Move the moov atom to the front for streaming

        Raises:
            TranscodeError: If the tool fails or times out
        """
        pass

    @abstractmethod
    async def grab_frame(self, source_path: str, output_path: str, offset: float = 0.0) -> None:
        """
        Write exactly one frame at offset seconds as a JPEG.

        Raises:
            TranscodeError: If the tool fails or times out
        """
        pass


class FfmpegTranscoder(Transcoder):
    """Runs ffmpeg as a subprocess without blocking the event loop."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        audio_bitrate: str = "128k",
        clip_timeout: float = 120,
        frame_timeout: float = 30,
    ):
        """
        Args:
            ffmpeg_path: ffmpeg binary; the imageio-ffmpeg bundled binary if None
            audio_bitrate: AAC bitrate for prepared clips
            clip_timeout: Seconds before a clip transcode is killed
            frame_timeout: Seconds before a frame grab is killed
        """
        self._ffmpeg_path = ffmpeg_path
        self.audio_bitrate = audio_bitrate
        self.clip_timeout = clip_timeout
        self.frame_timeout = frame_timeout

    @property
    def ffmpeg_path(self) -> str:
        if not self._ffmpeg_path:
            self._ffmpeg_path = imageio_ffmpeg.get_ffmpeg_exe()
        return self._ffmpeg_path

    def clip_arguments(
        self,
        source_path: str,
        output_path: str,
        video_filter: str,
        start: Optional[float] = None,
        duration: Optional[float] = None,
        faststart: bool = True,
    ) -> List[str]:
        cmd = [self.ffmpeg_path, "-y"]
        # -ss before -i for fast input seeking
        if start is not None:
            cmd += ["-ss", f"{start}"]
        if duration is not None:
            cmd += ["-t", f"{duration}"]
        cmd += [
            "-i", source_path,
            "-vf", video_filter,
            "-c:v", "libx264", "-preset", "ultrafast", "-crf", "23",
            "-c:a", "aac", "-b:a", self.audio_bitrate,
        ]
        if faststart:
            cmd += ["-movflags", "+faststart"]
        cmd += ["-loglevel", "error", output_path]
        return cmd

    def frame_arguments(self, source_path: str, output_path: str, offset: float = 0.0) -> List[str]:
        cmd = [self.ffmpeg_path, "-y"]
        if offset > 0:
            cmd += ["-ss", f"{offset}"]
        cmd += [
            "-i", source_path,
            "-frames:v", "1",
            "-q:v", "2",
            "-loglevel", "error",
            output_path,
        ]
        return cmd

    async def transcode_clip(
        self,
        source_path: str,
        output_path: str,
        video_filter: str,
        start: Optional[float] = None,
        duration: Optional[float] = None,
        faststart: bool = True,
    ) -> None:
        cmd = self.clip_arguments(source_path, output_path, video_filter, start, duration, faststart)
        await self._run(cmd, self.clip_timeout)

    async def grab_frame(self, source_path: str, output_path: str, offset: float = 0.0) -> None:
        await self._run(self.frame_arguments(source_path, output_path, offset), self.frame_timeout)

    async def _run(self, cmd: List[str], timeout: float) -> None:
        logger.debug(f"Running ffmpeg: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TranscodeError(f"ffmpeg timed out after {timeout}s")

        if process.returncode != 0:
            error_output = stderr.decode(errors="replace").strip() if stderr else "Unknown error"
            raise TranscodeError(
                f"ffmpeg exited with code {process.returncode}: {error_output[-500:]}",
                stderr=error_output,
            )
