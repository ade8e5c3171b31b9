"""Document lane worker -- extract text, then summarize it."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from ..ai import document_prompt
from ..errors import ExtractionError, InferenceError, categorize_error
from ..models import BLANK_DOCUMENT_REASON, FetchedItem, ProcessingResult

if TYPE_CHECKING:
    from ..ai import Summarizer
    from ..extract import TextExtractor

log = logger.bind(stage="document")


class DocumentWorker:
    """Callable lane handler for DOCUMENT items.

    A document with no extractable text (usually a scanned PDF) is skipped
    with reason "blank document"; it is a normal outcome and is marked done
    like any other.
    """

    def __init__(
        self,
        extractor: TextExtractor,
        summarizer: Summarizer,
        report_identifier: str = "",
    ) -> None:
        self.extractor = extractor
        self.summarizer = summarizer
        self.report_identifier = report_identifier

    def __call__(self, item: FetchedItem) -> ProcessingResult:
        path = item.remote_path
        log.debug(f"Processing document {path} (local={item.local_path})")

        try:
            text = self.extractor.extract(item.local_path)
        except ExtractionError as e:
            return ProcessingResult.failed(path, str(e), categorize_error(e))

        if text is None or not text.strip():
            log.info(f"Document {item.name} was blank: probably a scanned PDF")
            return ProcessingResult.skipped(path, BLANK_DOCUMENT_REASON)

        prompt = document_prompt(path, text, self.report_identifier)
        try:
            summary = self.summarizer.summarize(prompt)
        except InferenceError as e:
            return ProcessingResult.failed(path, str(e), categorize_error(e))

        log.info(f"Summary of {item.name}: {summary[:200]}")
        return ProcessingResult.ok(path, summary)
