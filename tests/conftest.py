"""Shared fakes for the remote source and the model collaborators."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from library_digest.config import PipelineConfig
from library_digest.errors import ExtractionError, InferenceError, TransportError
from library_digest.models import RemoteEntry
from library_digest.progress_db import ProgressStore

MODIFIED = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

# Env vars that pydantic-settings reads -- cleared so tests see defaults
CONFIG_ENV_VARS = [
    "FTP_HOST", "FTP_PORT", "FTP_USERNAME", "FTP_PASSWORD", "REMOTE_ROOT",
    "RECURSIVE", "PRESERVE_TIMESTAMP", "EXCLUDE_PATTERNS", "REPORT_IDENTIFIER",
    "IMAGE_EXTENSIONS", "LOCAL_DIR", "WORK_DIR", "LOG_DIR", "LOCK_DIR",
    "LANE_CAPACITY", "ENQUEUE_POLICY", "DOCUMENT_WORKERS", "IMAGE_WORKERS",
    "DOCUMENT_BASE_URL", "DOCUMENT_MODEL", "IMAGE_BASE_URL", "IMAGE_MODEL",
    "POLL_INTERVAL", "MAX_RETRIES", "DRY_RUN", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class FakeSource:
    """In-memory remote source: {remote_path: bytes}.

    fail_listing_after: raise TransportError after yielding that many entries.
    broken: paths whose download raises TransportError.
    """

    def __init__(
        self,
        files: dict[str, bytes],
        directories: tuple[str, ...] = (),
        modified_at: datetime | None = MODIFIED,
        fail_listing_after: int | None = None,
        broken: tuple[str, ...] = (),
    ) -> None:
        self.files = dict(files)
        self.directories = directories
        self.modified_at = modified_at
        self.fail_listing_after = fail_listing_after
        self.broken = set(broken)
        self.downloads: list[str] = []
        self.connects = 0

    def __enter__(self) -> FakeSource:
        self.connects += 1
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def list(self, path: str, recursive: bool = True):
        entries = [RemoteEntry(path=d, is_directory=True) for d in self.directories]
        entries += [
            RemoteEntry(path=p, modified_at=self.modified_at, size=len(data))
            for p, data in self.files.items()
        ]
        for i, entry in enumerate(entries):
            if self.fail_listing_after is not None and i >= self.fail_listing_after:
                raise TransportError("connection reset during listing")
            yield entry

    def download(self, remote_path: str, out) -> int:
        self.downloads.append(remote_path)
        if remote_path in self.broken:
            raise TransportError(f"550 {remote_path}: transfer failed", path=remote_path)
        data = self.files[remote_path]
        out.write(data)
        return len(data)


class FakeExtractor:
    """Returns the file's text; None for empty files; raises for .bad files."""

    def extract(self, path):
        if path.suffix == ".bad":
            raise ExtractionError(f"Cannot read {path.name}")
        text = path.read_text(errors="replace").strip()
        return text or None


class FakeSummarizer:
    def __init__(self, fail: bool = False, delay: threading.Event | None = None) -> None:
        self.fail = fail
        self.delay = delay
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    def summarize(self, prompt: str) -> str:
        if self.delay is not None:
            self.delay.wait(5)
        with self._lock:
            self.prompts.append(prompt)
        if self.fail:
            raise InferenceError("HTTP 503", status_code=503)
        return f"summary #{len(self.prompts)}"


class FakeVision:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def describe_image(self, prompt: str, encoded_image: str) -> str:
        self.calls.append((prompt, encoded_image))
        if self.fail:
            raise InferenceError("HTTP 500", status_code=500)
        return "a photo of a building"


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        _env_file=None,
        ftp_host="ftp.example.org",
        local_dir=tmp_path / "local",
        work_dir=tmp_path / "work",
        log_dir=tmp_path / "logs",
        lock_dir=tmp_path / "locks",
        lane_capacity=4,
        document_workers=2,
        image_workers=1,
    )


@pytest.fixture
def progress(tmp_path):
    store = ProgressStore(tmp_path / "work" / "progress.db")
    yield store
    store.close()
