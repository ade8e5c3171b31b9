"""Image lane worker -- base64 the image and ask the vision model about it."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

from loguru import logger

from ..ai import image_prompt
from ..errors import InferenceError, categorize_error
from ..models import ErrorCategory, FetchedItem, ProcessingResult

if TYPE_CHECKING:
    from ..ai import VisionClient

log = logger.bind(stage="image")


def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class ImageWorker:
    """Callable lane handler for IMAGE items."""

    def __init__(self, vision: VisionClient, report_identifier: str = "") -> None:
        self.vision = vision
        self.report_identifier = report_identifier

    def __call__(self, item: FetchedItem) -> ProcessingResult:
        path = item.remote_path
        log.debug(f"Processing image {path} (local={item.local_path})")

        try:
            data = item.local_path.read_bytes()
        except OSError as e:
            return ProcessingResult.failed(
                path, f"Cannot read {item.local_path}: {e}", ErrorCategory.PERMANENT
            )

        prompt = image_prompt(path, self.report_identifier)
        try:
            description = self.vision.describe_image(prompt, encode_image(data))
        except InferenceError as e:
            return ProcessingResult.failed(path, str(e), categorize_error(e))

        log.info(f"Image processor result for {item.name}: {description[:200]}")
        return ProcessingResult.ok(path, description)
