"""CLI entry point for library-digest."""

from contextlib import ExitStack
from pathlib import Path

import click
from loguru import logger

from .backend import OllamaBackend
from .concurrency import LockError, acquire_global_lock
from .config import PipelineConfig
from .coordinator import PipelineCoordinator
from .errors import ConfigError
from .extract import TextExtractor
from .models import ContentClass, ResultStatus, RunSummary
from .progress_db import ProgressStore
from .remote.ftp import FtpSource
from .stages.document import DocumentWorker
from .stages.image import ImageWorker

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_config(config_file: str | None, **overrides) -> PipelineConfig:
    """Build the config from overrides > environment > the .env file found."""
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file is not None:
        log.debug(f"Loading settings from {env_file}")
    return PipelineConfig(_env_file=env_file, **overrides)


def build_coordinator(
    config: PipelineConfig,
    document_backend: OllamaBackend,
    image_backend: OllamaBackend,
    progress: ProgressStore,
) -> PipelineCoordinator:
    """Wire the stage graph: FTP source, filter, lanes and their workers."""
    handlers = {
        ContentClass.DOCUMENT: DocumentWorker(
            TextExtractor(),
            document_backend.summarizer(temperature=config.llm_temperature),
            report_identifier=config.report_identifier,
        ),
        ContentClass.IMAGE: ImageWorker(
            image_backend.vision_client(),
            report_identifier=config.report_identifier,
        ),
    }

    def source_factory() -> FtpSource:
        return FtpSource(
            config.ftp_host,
            port=config.ftp_port,
            username=config.ftp_username,
            password=config.ftp_password,
            passive=config.ftp_passive,
            timeout=config.ftp_timeout,
            preserve_timestamp=config.preserve_timestamp,
        )

    return PipelineCoordinator(config, source_factory, handlers, progress)


def _echo_summary(summary: RunSummary) -> None:
    click.echo(
        f"Listed {summary.listed}, excluded {summary.excluded}, "
        f"already done {summary.already_done}, fetched {summary.fetched}"
    )
    click.echo(
        f"Completed {summary.completed}, skipped {summary.skipped}, "
        f"failed {summary.failed}"
    )
    for result in summary.results:
        if result.status == ResultStatus.FAILED:
            click.echo(f"  FAILED  {result.source_path}: {result.error}")
    if summary.listing_error:
        click.echo(f"Listing stopped early: {summary.listing_error}")


@click.group()
def main() -> None:
    """Ingest files from FTP, classify them, and summarize them with Ollama."""


@main.command()
@click.option("--poll/--once", default=None, help="Keep polling, or run once. Default from POLL_INTERVAL.")
@click.option("--interval", type=int, default=None, help="Seconds between polls.")
@click.option("--remote-root", default=None, help="Remote directory to scan.")
@click.option("--dry-run", is_flag=True, help="List, filter and classify without fetching.")
@click.option("--no-lock", is_flag=True, help="Skip file locking.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def run(
    poll: bool | None,
    interval: int | None,
    remote_root: str | None,
    dry_run: bool,
    no_lock: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Scan the remote source and summarize new files."""
    overrides: dict = {"dry_run": dry_run, "verbose": verbose}
    if verbose:
        overrides["log_level"] = "DEBUG"
    if remote_root:
        overrides["remote_root"] = remote_root
    if interval is not None:
        overrides["poll_interval"] = interval

    config = _load_config(config_file, **overrides)
    try:
        config.check()
    except ConfigError as e:
        raise click.UsageError(str(e))
    config.setup_logging()
    config.ensure_dirs()

    if poll is False:
        interval_s = 0
    elif poll and config.poll_interval <= 0:
        raise click.UsageError("--poll needs --interval or POLL_INTERVAL > 0")
    else:
        interval_s = config.poll_interval

    try:
        lock = acquire_global_lock(config.lock_dir, skip=no_lock)
    except LockError as e:
        raise click.ClickException(str(e))

    progress = ProgressStore(config.db_path, max_retries=config.max_retries)
    try:
        with ExitStack() as stack:
            document_backend = OllamaBackend(
                config.document_base_url,
                config.document_model,
                api_key=config.llm_api_key,
                timeout=config.request_timeout,
                pull=config.pull_models,
            )
            image_backend = OllamaBackend(
                config.image_base_url,
                config.image_model,
                api_key=config.llm_api_key,
                timeout=config.request_timeout,
                pull=config.pull_models,
            )
            if not config.dry_run:
                stack.enter_context(document_backend)
                stack.enter_context(image_backend)
            else:
                stack.callback(document_backend.release)
                stack.callback(image_backend.release)
                click.echo("[DRY-RUN] Nothing will be fetched or summarized")

            coordinator = build_coordinator(config, document_backend, image_backend, progress)
            log.info(
                f"Starting pipeline: source={config.source_id} "
                f"interval={interval_s}s dry_run={config.dry_run}"
            )
            try:
                for summary in coordinator.poll(interval_s):
                    _echo_summary(summary)
            except KeyboardInterrupt:
                coordinator.stop()
                click.echo("Interrupted")
                raise SystemExit(130)
    except ConfigError as e:
        raise click.ClickException(str(e))
    finally:
        progress.close()
        if lock is not None:
            lock.close()


@main.command()
@click.option("--failed", "show_failed", is_flag=True, help="List failed items.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def status(show_failed: bool, config_file: str | None) -> None:
    """Show what the progress store has recorded."""
    config = _load_config(config_file)
    if not config.db_path.exists():
        click.echo(f"No progress recorded yet ({config.db_path})")
        return

    progress = ProgressStore(config.db_path, max_retries=config.max_retries)
    try:
        counts = progress.counts()
        total = sum(counts.values())
        click.echo(f"{total} items recorded in {config.db_path}")
        for name in ResultStatus:
            click.echo(f"  {name.value:<8} {counts.get(name.value, 0)}")

        marker = progress.get_marker(config.source_id)
        if marker:
            click.echo(f"Marker: {marker['last_modified']} ({marker['last_path']})")

        if show_failed:
            for row in progress.list_items(ResultStatus.FAILED):
                state = "gave up" if row["done"] else f"attempt {row['attempts']}"
                click.echo(f"  {row['remote_path']} [{state}]: {row['error']}")
    finally:
        progress.close()
