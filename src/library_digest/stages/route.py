"""Route stage -- classify fetched items and hand each to exactly one lane."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from loguru import logger

from ..errors import ConfigError
from ..models import DEFAULT_IMAGE_EXTENSIONS, ContentClass, FetchedItem

if TYPE_CHECKING:
    from ..lanes import Lane

log = logger.bind(stage="route")

# Lane that owns each content class. Unrecognized content has no lane of
# its own and is summarized as a document.
LANE_FOR_CLASS: dict[ContentClass, ContentClass] = {
    ContentClass.DOCUMENT: ContentClass.DOCUMENT,
    ContentClass.IMAGE: ContentClass.IMAGE,
    ContentClass.UNRECOGNIZED: ContentClass.DOCUMENT,
}


def classify(
    path: str,
    image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
) -> ContentClass:
    """Content class from the path extension (case-insensitive).

    Image extensions map to IMAGE; every other admitted file is a DOCUMENT.
    """
    suffix = PurePosixPath(path).suffix.lower()
    if suffix and suffix in {e.lower() for e in image_extensions}:
        return ContentClass.IMAGE
    return ContentClass.DOCUMENT


class Router:
    """Total, deterministic mapping from FetchedItem to Lane."""

    def __init__(self, lanes: Mapping[ContentClass, Lane]) -> None:
        missing = {lane for lane in LANE_FOR_CLASS.values() if lane not in lanes}
        if missing:
            raise ConfigError(f"No lane configured for: {', '.join(sorted(missing))}")
        self.lanes = dict(lanes)

    def lane_for(self, item: FetchedItem) -> Lane:
        return self.lanes[LANE_FOR_CLASS[item.content_class]]

    def route(self, item: FetchedItem) -> Lane:
        """Submit item to its lane. Blocks while that lane's queue is full."""
        lane = self.lane_for(item)
        log.debug(f"Routing {item.remote_path} -> {lane.name} lane")
        lane.submit(item)
        return lane
