"""Pipeline coordinator -- owns the stage graph and its lifecycle.

One coordinating thread per run walks listing -> filter -> progress check ->
fetch -> route. Each content class has its own Lane (bounded queue + worker
pool) created at the start of the run and drained at the end. Because a full
lane blocks route(), a slow model backend throttles fetching.

A run is at-least-once: an item is marked done only after its lane worker
reaches a final outcome, so a crash mid-run re-processes in-flight items on
the next run. Per-item failures never stop the run; only a listing or
connection failure ends it early, and items already routed still drain.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager

from loguru import logger

from .config import PipelineConfig
from .errors import DiskSpaceError, LaneClosedError, LaneFullError, TransportError, categorize_error
from .lanes import Lane, LaneHandler
from .models import ContentClass, ProcessingResult, RunSummary
from .progress_db import ProgressStore
from .remote import RemoteSource
from .stages.fetch import Fetcher
from .stages.listing import PathFilter, list_remote
from .stages.route import Router, classify

log = logger.bind(stage="coordinator")

SourceFactory = Callable[[], AbstractContextManager[RemoteSource]]


class PipelineCoordinator:
    """Statically wired pipeline: one source, one filter, one lane per class.

    Attributes:
        config: Pipeline configuration (lane sizes, paths, dry run)
        progress: ProgressStore shared by the coordinating flow and workers
    """

    def __init__(
        self,
        config: PipelineConfig,
        source_factory: SourceFactory,
        handlers: Mapping[ContentClass, LaneHandler],
        progress: ProgressStore,
        path_filter: PathFilter | None = None,
    ) -> None:
        self.config = config
        self.source_factory = source_factory
        self.handlers = dict(handlers)
        self.progress = progress
        self.path_filter = path_filter or PathFilter(
            config.exclude_patterns, config.report_identifier
        )
        self._abort = threading.Event()
        self._stop = threading.Event()
        self._lanes: dict[ContentClass, Lane] = {}
        self._lanes_lock = threading.Lock()

    def _build_lanes(self) -> dict[ContentClass, Lane]:
        workers = {
            ContentClass.DOCUMENT: self.config.document_workers,
            ContentClass.IMAGE: self.config.image_workers,
        }
        return {
            content_class: Lane(
                content_class,
                handler,
                workers=workers.get(content_class, 1),
                capacity=self.config.lane_capacity,
                policy=self.config.enqueue_policy,
                progress=self.progress,
                source_id=self.config.source_id,
            )
            for content_class, handler in self.handlers.items()
        }

    def run_once(self) -> RunSummary:
        """Run the pipeline once over the remote source and wait for lanes to drain."""
        summary = RunSummary()
        self._abort.clear()

        lanes = self._build_lanes()
        router = Router(lanes)
        with self._lanes_lock:
            self._lanes = lanes

        marker = self.progress.get_marker(self.config.source_id)
        if marker:
            log.info(
                f"Resuming {self.config.source_id}: last processed "
                f"{marker['last_path']} ({marker['last_modified']})"
            )
        else:
            log.info(f"First run against {self.config.source_id}")

        for lane in lanes.values():
            lane.start()
        try:
            with self.source_factory() as source:
                fetcher = Fetcher(
                    source,
                    self.config.local_dir,
                    preserve_timestamp=self.config.preserve_timestamp,
                    image_extensions=self.config.image_extensions,
                )
                self._feed(source, fetcher, router, summary)
        except TransportError as e:
            summary.listing_error = str(e)
            log.error(f"Run cut short by remote source error: {e}")
        finally:
            for lane in lanes.values():
                lane.close()
            for lane in lanes.values():
                lane.join(timeout=self.config.drain_timeout)
            with self._lanes_lock:
                self._lanes = {}

        for lane in lanes.values():
            summary.results.extend(lane.results)
        self._log_summary(summary)
        return summary

    def _feed(
        self,
        source: RemoteSource,
        fetcher: Fetcher,
        router: Router,
        summary: RunSummary,
    ) -> None:
        for entry in list_remote(source, self.config.remote_root, self.config.recursive):
            if self._abort.is_set():
                summary.aborted = True
                log.warning("Run aborted, not routing further items")
                break
            summary.listed += 1

            excluded_by = self.path_filter.excluded_by(entry)
            if excluded_by is not None:
                if not entry.is_directory:
                    summary.excluded += 1
                    log.debug(f"Excluded {entry.path} (rule {excluded_by})")
                continue

            if self.progress.is_done(entry.path, entry.modified_at):
                summary.already_done += 1
                log.debug(f"Already processed: {entry.path}")
                continue

            if self.config.dry_run:
                content_class = classify(entry.path, self.config.image_extensions)
                log.info(f"[DRY-RUN] Would fetch {entry.path} -> {content_class} lane")
                continue

            try:
                item = fetcher.fetch(entry)
            except (TransportError, DiskSpaceError) as e:
                summary.fetch_failed += 1
                summary.results.append(
                    ProcessingResult.failed(entry.path, str(e), categorize_error(e))
                )
                log.error(f"Fetch failed for {entry.path}, continuing: {e}")
                continue
            summary.fetched += 1

            try:
                router.route(item)
            except LaneClosedError:
                summary.aborted = True
                log.warning(f"Lanes closed, {entry.path} not routed")
                break
            except LaneFullError as e:
                summary.results.append(
                    ProcessingResult.failed(entry.path, str(e), categorize_error(e))
                )
                log.warning(f"Rejected {entry.path}: {e}")
                continue
            summary.routed += 1

    def abort(self) -> None:
        """Stop routing and let every lane drain what it already holds."""
        self._abort.set()
        with self._lanes_lock:
            lanes = list(self._lanes.values())
        for lane in lanes:
            lane.close()
        log.warning(f"Abort requested ({len(lanes)} lanes closing)")

    def stop(self) -> None:
        """End polling after the current run and abort that run."""
        self._stop.set()
        self.abort()

    def poll(
        self,
        interval: float,
        stop: threading.Event | None = None,
        max_runs: int | None = None,
    ) -> list[RunSummary]:
        """Run at once, then every interval seconds until stopped.

        interval <= 0 means a single run.
        """
        stop = stop or self._stop
        summaries: list[RunSummary] = []
        while not stop.is_set():
            summaries.append(self.run_once())
            if max_runs is not None and len(summaries) >= max_runs:
                break
            if interval <= 0:
                break
            log.info(f"Next run in {interval}s")
            if stop.wait(interval):
                break
        return summaries

    def _log_summary(self, summary: RunSummary) -> None:
        log.info(
            f"Run finished: listed={summary.listed} excluded={summary.excluded} "
            f"already_done={summary.already_done} fetched={summary.fetched} "
            f"fetch_failed={summary.fetch_failed} completed={summary.completed} "
            f"skipped={summary.skipped} failed={summary.failed}"
        )
        if summary.listing_error:
            log.warning(f"Listing error: {summary.listing_error}")
