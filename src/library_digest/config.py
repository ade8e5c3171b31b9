"""Pipeline configuration via pydantic-settings (.env + env vars)."""

import re
import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_IMAGE_EXTENSIONS, EnqueuePolicy


class PipelineConfig(BaseSettings):
    """All pipeline configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Remote source (FTP) --
    ftp_host: str = ""
    ftp_port: int = 21
    ftp_username: str = "anonymous"
    ftp_password: str = ""
    ftp_passive: bool = True
    ftp_timeout: float = 60.0
    remote_root: str = "/"
    recursive: bool = True
    preserve_timestamp: bool = True

    # -- Filtering and routing --
    exclude_patterns: list[str] = list(DEFAULT_EXCLUDE_PATTERNS)
    report_identifier: str = ""
    image_extensions: list[str] = sorted(DEFAULT_IMAGE_EXTENSIONS)

    # -- Directories --
    local_dir: Path = Path("/var/lib/library-digest/local")
    work_dir: Path = Path("/var/lib/library-digest/work")
    log_dir: Path = Path("/var/log/library-digest")
    lock_dir: Path = Path("/var/lib/library-digest/locks")

    # -- Lanes --
    lane_capacity: int = 50
    enqueue_policy: EnqueuePolicy = EnqueuePolicy.BLOCK
    document_workers: int = 4
    image_workers: int = 2
    drain_timeout: float | None = None

    # -- Inference backends (one Ollama per content class) --
    document_base_url: str = "http://localhost:11434"
    document_model: str = "llama3.2:1b"
    image_base_url: str = "http://localhost:11434"
    image_model: str = "llama3.2-vision:11b"
    llm_api_key: str = ""
    llm_temperature: float = 0.0
    request_timeout: float = 300.0
    pull_models: bool = True

    # -- Behavior --
    poll_interval: int = 0  # 0 = one run, then exit
    max_retries: int = 3
    dry_run: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        """Path to the SQLite progress database."""
        return self.work_dir / "progress.db"

    @property
    def source_id(self) -> str:
        """Stable key for the progress marker of this remote source."""
        return f"ftp://{self.ftp_host}:{self.ftp_port}{self.remote_root}"

    def check(self) -> None:
        """Raise ConfigError for settings that make a run impossible."""
        if not self.ftp_host:
            raise ConfigError("FTP_HOST is required")
        if not 0 < self.ftp_port < 65536:
            raise ConfigError(f"FTP_PORT out of range: {self.ftp_port}")
        if self.lane_capacity < 1:
            raise ConfigError("LANE_CAPACITY must be at least 1")
        if self.document_workers < 1 or self.image_workers < 1:
            raise ConfigError("Each lane needs at least one worker")
        if self.poll_interval < 0:
            raise ConfigError("POLL_INTERVAL cannot be negative")
        for name in ("document_base_url", "document_model", "image_base_url", "image_model"):
            if not getattr(self, name):
                raise ConfigError(f"{name.upper()} is required")
        for pattern in self.exclude_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"Invalid exclude pattern {pattern!r}: {e}") from e

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (
            self.local_dir,
            self.work_dir,
            self.log_dir,
            self.lock_dir,
        ):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the pipeline."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {thread.name:<14} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "pipeline.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
