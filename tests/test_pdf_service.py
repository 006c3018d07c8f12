"""Tests for PDF parsing."""

import fitz
import pytest

from docscan.services.pdf_service import PDFParser, PDFProcessingError, extract_text, get_pdf_info


@pytest.fixture
def sample_pdf(tmp_path):
    """Two-page PDF with text on the first page and a blank second page."""
    path = tmp_path / "sample.pdf"
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Hello PDF")
    doc.new_page()
    doc.set_metadata({"title": "Quarterly Report", "author": "Finance"})
    doc.save(str(path))
    doc.close()
    return path


class TestExtractText:
    """Tests for extract_text."""

    def test_text_per_page(self, sample_pdf):
        parsed = extract_text(sample_pdf)

        assert parsed.total_pages == 2
        assert parsed.page_texts == ["Hello PDF", ""]
        assert parsed.text.startswith("Hello PDF")

    def test_not_a_pdf(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")

        with pytest.raises(PDFProcessingError):
            extract_text(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(PDFProcessingError):
            extract_text(tmp_path / "missing.pdf")


class TestGetPdfInfo:
    """Tests for get_pdf_info."""

    def test_metadata(self, sample_pdf):
        info = get_pdf_info(sample_pdf)

        assert info["pages"] == 2
        assert info["title"] == "Quarterly Report"
        assert info["author"] == "Finance"

    def test_unreadable_file_defaults_to_one_page(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"garbage")

        assert get_pdf_info(path) == {"pages": 1}


def test_parser_delegates(sample_pdf):
    parser = PDFParser()

    assert parser.extract_text(sample_pdf).total_pages == 2
    assert parser.get_pdf_info(sample_pdf)["pages"] == 2
