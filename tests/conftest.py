"""Shared pytest fixtures for all tests."""

import asyncio
import itertools
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Set

import pytest

from common.types import ChunkReceipt
from stash.backend.adapter import StorageBackendAdapter
from stash.database import init_database
from stash.exceptions import BackendUnavailableError, TransferIOError
from stash.repositories.folder_repository import FolderRepository
from stash.services.settings_service import SettingsService
from stash.services.upload_orchestrator import UploadOrchestrator
from stash.telemetry import TransferChannel, TransferTelemetry

OWNER = "owner-1"
OTHER_OWNER = "owner-2"
FOLDER = "container-root"

# small cap so a few KB already spans several chunks
TEST_CHUNK_CAP = 1024


class FakeBackend(StorageBackendAdapter):
    """
    In-memory storage backend with failure injection.
    """

    def __init__(self, ready: bool = True):
        self._ready = ready
        self._ids = itertools.count(1)
        self.containers: Dict[str, str] = {}
        self.posts: Dict[str, List[str]] = {}
        self.attachments: Dict[str, bytes] = {}
        self.deleted_posts: List[str] = []
        self.upload_calls = 0
        self.download_calls = 0
        self.failing_calls: Set[int] = set()
        self.fail_uploads_after: Optional[int] = None
        self.fail_deletes = False
        self.upload_delay = 0.0
        self.post_delay = 0.0
        self.download_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.after_upload: Optional[Callable[[int], None]] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def connect(self) -> None:
        self._ready = True

    async def disconnect(self) -> None:
        self._ready = False

    async def create_container(self, parent_id, name) -> str:
        container_id = f"container-{next(self._ids)}"
        self.containers[container_id] = name
        return container_id

    async def create_post(self, container_id, title, body) -> str:
        if self.post_delay:
            await asyncio.sleep(self.post_delay)
        post_id = f"post-{next(self._ids)}"
        self.posts[post_id] = []
        return post_id

    async def upload_chunk(self, post_id, data, chunk_label) -> ChunkReceipt:
        self.upload_calls += 1
        call = self.upload_calls
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.upload_delay:
                await asyncio.sleep(self.upload_delay)
            if call in self.failing_calls or (
                self.fail_uploads_after is not None and call > self.fail_uploads_after
            ):
                raise TransferIOError(f"Simulated failure on upload call {call}")

            message_id = f"msg-{next(self._ids)}"
            url = f"https://cdn.test/attachments/{post_id}/{message_id}/{chunk_label}"
            self.attachments[url] = bytes(data)
            self.posts[post_id].append(message_id)
        finally:
            self.in_flight -= 1

        if self.after_upload is not None:
            self.after_upload(call)
        return ChunkReceipt(message_id=message_id, attachment_id=f"att-{message_id}", retrieval_url=url)

    async def download_chunk(self, retrieval_url) -> bytes:
        self.download_calls += 1
        if self.download_delay:
            await asyncio.sleep(self.download_delay)
        if retrieval_url not in self.attachments:
            raise TransferIOError(f"Attachment {retrieval_url} not found")
        return self.attachments[retrieval_url]

    async def delete_post(self, post_id) -> bool:
        if self.fail_deletes:
            raise TransferIOError(f"Simulated failure deleting {post_id}")
        self.deleted_posts.append(post_id)
        self.posts.pop(post_id, None)
        prefix = f"https://cdn.test/attachments/{post_id}/"
        for url in [u for u in self.attachments if u.startswith(prefix)]:
            del self.attachments[url]
        return True

    async def delete_container(self, container_id) -> bool:
        self.containers.pop(container_id, None)
        return True

    async def rename_container(self, container_id, new_name) -> bool:
        self.containers[container_id] = new_name
        return True


class UnreachableBackend(FakeBackend):
    """Backend whose connect() always fails."""

    def __init__(self):
        super().__init__(ready=False)

    async def connect(self) -> None:
        raise BackendUnavailableError("Simulated unreachable backend")


@pytest.fixture
def test_db(monkeypatch) -> Generator[Path, None, None]:
    """
    Create a temporary test database for each test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        monkeypatch.setattr("stash.database.DATABASE_PATH", str(db_path))
        monkeypatch.setattr("stash.config.DATABASE_PATH", str(db_path))
        init_database()
        yield db_path


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def channel():
    return TransferChannel()


@pytest.fixture
def telemetry(channel):
    return TransferTelemetry(channel)


@pytest.fixture
def settings_service():
    return SettingsService(cache_seconds=0)


@pytest.fixture
def folder(test_db):
    return FolderRepository.create_folder(FOLDER, OWNER, "Documents")


@pytest.fixture
def orchestrator(test_db, backend, telemetry, settings_service, tmp_path):
    """
    Orchestrator with a 1 KiB chunk cap and no retry backoff delay.
    """
    return UploadOrchestrator(
        backend=backend,
        telemetry=telemetry,
        settings_service=settings_service,
        hard_cap_bytes=TEST_CHUNK_CAP,
        retry_base_delay=0,
        spool_dir=str(tmp_path),
    )


def make_content(size: int, seed: int = 0) -> bytes:
    """Deterministic non-repeating-ish payload of the given size."""
    return bytes((i * 31 + seed) % 251 for i in range(size))
