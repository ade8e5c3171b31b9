"""Document text extraction.

PDF via pypdf, DOCX via python-docx, text-like formats read directly.
extract() returns None when a document has no extractable text (typically a
scanned PDF) -- that is an expected outcome, not an error.
"""

import zipfile
from pathlib import Path

from loguru import logger

from .errors import ExtractionError

log = logger.bind(stage="extract")

TEXT_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".txt",
        ".md",
        ".csv",
        ".tsv",
        ".json",
        ".xml",
        ".html",
        ".htm",
        ".log",
    }
)


class TextExtractor:
    """Dispatch on file extension to a format-specific reader."""

    def extract(self, path: Path) -> str | None:
        """Return the document's full text, or None if it is blank.

        Raises ExtractionError for unsupported or unreadable files.
        """
        suffix = path.suffix.lower()
        log.debug(f"extract(path={path}, suffix={suffix})")

        if suffix == ".pdf":
            text = self._extract_pdf(path)
        elif suffix == ".docx":
            text = self._extract_docx(path)
        elif suffix in TEXT_EXTENSIONS:
            text = self._extract_text(path)
        else:
            raise ExtractionError(f"Unsupported document type: {suffix or '<none>'}")

        text = text.strip()
        if not text:
            log.info(f"No extractable text in {path.name}")
            return None
        return text

    def _extract_pdf(self, path: Path) -> str:
        from pypdf import PdfReader
        from pypdf.errors import PdfReadError

        try:
            reader = PdfReader(path)
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except (PdfReadError, OSError, ValueError) as e:
            raise ExtractionError(f"Cannot read PDF {path.name}: {e}") from e
        return "\n\n".join(p for p in pages if p)

    def _extract_docx(self, path: Path) -> str:
        import docx
        from docx.opc.exceptions import PackageNotFoundError

        try:
            document = docx.Document(str(path))
        except (PackageNotFoundError, zipfile.BadZipFile, OSError, ValueError, KeyError) as e:
            raise ExtractionError(f"Cannot read DOCX {path.name}: {e}") from e
        return "\n".join(p.text for p in document.paragraphs if p.text.strip())

    def _extract_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ExtractionError(f"Cannot read {path.name}: {e}") from e
