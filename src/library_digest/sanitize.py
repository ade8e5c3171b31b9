"""Local filename generation for remote paths."""

import re
from pathlib import Path, PurePosixPath

from loguru import logger

log = logger.bind(stage="sanitize")


def sanitize_filename(filename: str) -> str:
    """Sanitize a single remote name component (not a full path).

    Spaces become dashes, unsafe chars become underscores, leading dots are
    kept off so nothing lands hidden, and the result is truncated to 255
    bytes preserving the extension.
    """
    sanitized = filename.replace(" ", "-")
    sanitized = re.sub(r'[/\\:"*?<>|;]+', "_", sanitized)
    sanitized = re.sub(r"^\.+", "", sanitized)
    sanitized = re.sub(r"__+", "_", sanitized)
    if not sanitized:
        sanitized = "_"

    original_len = len(sanitized.encode("utf-8"))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode("utf-8")) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode("utf-8")) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} bytes: '{sanitized}'")

    return sanitized


def local_path_for(remote_path: str, local_dir: Path) -> Path:
    """Mirror a remote path under local_dir with every segment sanitized.

    The mapping is one way: callers keep the remote path alongside the local
    one instead of trying to recover it from the sanitized name.
    """
    parts = [p for p in PurePosixPath(remote_path).parts if p not in ("/", "", ".", "..")]
    if not parts:
        raise ValueError(f"Remote path has no file name: {remote_path!r}")
    return local_dir.joinpath(*(sanitize_filename(p) for p in parts))
