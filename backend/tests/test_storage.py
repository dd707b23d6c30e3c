"""
Tests for the local result store.
"""
import builtins
import errno
import os

import pytest

import clipgen.storage.result_store as result_store_module
from clipgen.errors import DownloadError
from clipgen.storage.result_store import ResultStore

from conftest import VIDEO_BYTES, download_transport

RESULT_URL = "https://cdn.example.com/result.mp4"


class FullDiskFile:
    """File handle whose writes fail as if the disk were full."""

    def __init__(self, path: str):
        self._file = builtins.open(path, "wb")

    def write(self, data: bytes) -> int:
        raise OSError(errno.ENOSPC, "No space left on device")

    def close(self) -> None:
        self._file.close()


class TestResultStore:
    """Tests for ResultStore.download."""

    @pytest.mark.asyncio
    async def test_download_saves_output(self, tmp_path):
        store = ResultStore(str(tmp_path / "outputs"), transport=download_transport())

        path = await store.download(RESULT_URL, "job-1")

        assert path == store.path_for("job-1")
        with open(path, "rb") as saved:
            assert saved.read() == VIDEO_BYTES
        assert store.exists("job-1")
        assert not os.path.exists(f"{path}.part")

    @pytest.mark.asyncio
    async def test_http_error_leaves_nothing_behind(self, tmp_path):
        store = ResultStore(str(tmp_path / "outputs"), transport=download_transport(404))

        with pytest.raises(DownloadError, match="HTTP 404"):
            await store.download(RESULT_URL, "job-1")

        assert os.listdir(store.outputs_dir) == []

    @pytest.mark.asyncio
    async def test_empty_body_is_an_error(self, tmp_path):
        store = ResultStore(str(tmp_path / "outputs"), transport=download_transport(content=b""))

        with pytest.raises(DownloadError, match="empty file"):
            await store.download(RESULT_URL, "job-1")

        assert os.listdir(store.outputs_dir) == []

    @pytest.mark.asyncio
    async def test_write_failure_discards_partial_file(self, tmp_path, monkeypatch):
        store = ResultStore(str(tmp_path / "outputs"), transport=download_transport())
        monkeypatch.setattr(result_store_module, "open", lambda path, mode: FullDiskFile(path), raising=False)

        with pytest.raises(DownloadError, match="Could not save result"):
            await store.download(RESULT_URL, "job-1")

        assert os.listdir(store.outputs_dir) == []
        assert not store.exists("job-1")
