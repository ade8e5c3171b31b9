"""Tests for extract.py -- text extraction from PDF, DOCX, and plain text."""

import docx
import pytest
from pypdf import PdfWriter

from library_digest.errors import ExtractionError
from library_digest.extract import TextExtractor


@pytest.fixture
def extractor():
    return TextExtractor()


class TestPlainText:
    def test_reads_text(self, extractor, tmp_path):
        f = tmp_path / "notes.txt"
        f.write_text("  Agenda item one  \n")
        assert extractor.extract(f) == "Agenda item one"

    def test_blank_text_is_none(self, extractor, tmp_path):
        f = tmp_path / "empty.md"
        f.write_text("\n\n   \n")
        assert extractor.extract(f) is None

    def test_extension_case_insensitive(self, extractor, tmp_path):
        f = tmp_path / "NOTES.TXT"
        f.write_text("upper")
        assert extractor.extract(f) == "upper"


class TestDocx:
    def test_reads_paragraphs(self, extractor, tmp_path):
        document = docx.Document()
        document.add_paragraph("First paragraph")
        document.add_paragraph("")
        document.add_paragraph("Second paragraph")
        path = tmp_path / "letter.docx"
        document.save(str(path))

        assert extractor.extract(path) == "First paragraph\nSecond paragraph"

    def test_corrupt_docx(self, extractor, tmp_path):
        path = tmp_path / "broken.docx"
        path.write_bytes(b"not a zip archive")
        with pytest.raises(ExtractionError, match="Cannot read DOCX"):
            extractor.extract(path)


class TestPdf:
    def test_pdf_without_text_is_blank(self, extractor, tmp_path):
        writer = PdfWriter()
        writer.add_blank_page(width=612, height=792)
        path = tmp_path / "scan.pdf"
        with open(path, "wb") as fh:
            writer.write(fh)

        assert extractor.extract(path) is None

    def test_corrupt_pdf(self, extractor, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"")
        with pytest.raises(ExtractionError, match="Cannot read PDF"):
            extractor.extract(path)


class TestUnsupported:
    def test_unknown_extension(self, extractor, tmp_path):
        path = tmp_path / "drawing.dwg"
        path.write_bytes(b"\x00\x01")
        with pytest.raises(ExtractionError, match="Unsupported document type: .dwg"):
            extractor.extract(path)

    def test_no_extension(self, extractor, tmp_path):
        path = tmp_path / "README"
        path.write_text("hi")
        with pytest.raises(ExtractionError, match="<none>"):
            extractor.extract(path)
