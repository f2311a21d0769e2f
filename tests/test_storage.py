# tests/test_storage.py — Upload validation and file storage
import io
from pathlib import Path

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

import storage
from errors import ValidationFailed


def _upload(content: bytes, name="notes.txt", content_type="text/plain") -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


def _local_path(url: str) -> Path:
    return Path(storage.STORAGE_ROOT) / url[len(storage.STORAGE_PUBLIC_URL) + 1:]


@pytest.mark.asyncio
class TestStoreUpload:
    async def test_writes_off_the_event_loop(self, monkeypatch):
        offloaded = []
        real_to_thread = storage.asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            offloaded.append(func)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(storage.asyncio, "to_thread", recording_to_thread)
        stored = await storage.store_upload(_upload(b"site diary"), "tests")

        assert len(offloaded) == 1
        assert stored.size == len(b"site diary")
        assert stored.url.startswith(f"{storage.STORAGE_PUBLIC_URL}/tests/")
        assert _local_path(stored.url).read_bytes() == b"site diary"

    async def test_rejects_unlisted_type(self):
        with pytest.raises(ValidationFailed):
            await storage.store_upload(_upload(b"MZ", name="setup.exe", content_type="application/x-msdownload"), "tests")

    async def test_delete_stored_removes_file(self):
        stored = await storage.store_upload(_upload(b"temporary"), "tests")
        storage.delete_stored(stored.url)
        assert not _local_path(stored.url).exists()
        storage.delete_stored(stored.url)


def test_urls_outside_the_root_are_ignored():
    assert storage._path_for_url(f"{storage.STORAGE_PUBLIC_URL}/../etc/passwd") is None
    assert storage._path_for_url("https://elsewhere.example.com/file.png") is None
