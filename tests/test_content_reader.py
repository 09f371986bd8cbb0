"""Tests for the content adapter."""

import base64

import fitz
import pytest

from quizbank.errors import ContentError
from quizbank.models import ContentKind, ProviderFamily
from quizbank.parsing.content_reader import get_mime_type, read_file_content


def make_pdf(path, pages):
    """Write a PDF with one line of text per page."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        page.insert_text((72, 72), f"Question {i + 1}: what is {i} + 1?")
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def one_page_pdf(tmp_path):
    return make_pdf(tmp_path / "one.pdf", 1)


@pytest.fixture
def three_page_pdf(tmp_path):
    return make_pdf(tmp_path / "three.pdf", 3)


def test_text_file(tmp_path):
    """Test that text files are returned as UTF-8 text."""
    path = tmp_path / "questions.md"
    path.write_text("# 第1章\n1. 2 + 2 = ?", encoding="utf-8")

    result = read_file_content(path, ProviderFamily.OPENAI)

    assert result.kind == ContentKind.TEXT
    assert result.content == "# 第1章\n1. 2 + 2 = ?"
    assert result.mime_type == "text/markdown"


def test_invalid_utf8_raises(tmp_path):
    """Test that undecodable text is a content error."""
    path = tmp_path / "broken.txt"
    path.write_bytes(b"\xff\xfe\xfa not utf-8")

    with pytest.raises(ContentError):
        read_file_content(path, ProviderFamily.OPENAI)


def test_missing_file_raises(tmp_path):
    """Test that a missing file is a content error."""
    with pytest.raises(ContentError):
        read_file_content(tmp_path / "absent.txt", ProviderFamily.OPENAI)


def test_image_file(tmp_path):
    """Test that images become a single base64 blob with their mime type."""
    data = b"\x89PNG\r\n\x1a\nfake-image-bytes"
    path = tmp_path / "scan.PNG"
    path.write_bytes(data)

    result = read_file_content(path, ProviderFamily.GEMINI)

    assert result.kind == ContentKind.BASE64
    assert result.mime_type == "image/png"
    assert base64.b64decode(result.content) == data


def test_unknown_extension_reads_as_text(tmp_path):
    """Test that unknown extensions fall back to the text path."""
    path = tmp_path / "notes.log"
    path.write_text("plain content", encoding="utf-8")

    result = read_file_content(path, ProviderFamily.QWEN)

    assert result.kind == ContentKind.TEXT
    assert result.content == "plain content"
    assert result.mime_type == "application/octet-stream"


@pytest.mark.parametrize("family", [ProviderFamily.OPENAI, ProviderFamily.QWEN])
def test_single_page_pdf_rasterized(one_page_pdf, family):
    """Test that image-only families get one PNG for a one-page PDF."""
    result = read_file_content(one_page_pdf, family)

    assert result.kind == ContentKind.BASE64
    assert result.mime_type == "image/png"
    assert base64.b64decode(result.content).startswith(b"\x89PNG")


def test_multi_page_pdf_rasterized(three_page_pdf):
    """Test that each page becomes its own PNG blob, in order."""
    result = read_file_content(three_page_pdf, ProviderFamily.OPENAI)

    assert result.kind == ContentKind.BASE64_ARRAY
    assert result.mime_type == "image/png"
    assert result.page_count == 3
    assert all(base64.b64decode(page).startswith(b"\x89PNG") for page in result.content)


def test_render_scale_changes_image_size(one_page_pdf):
    """Test that a larger scale produces a larger raster."""
    small = read_file_content(one_page_pdf, ProviderFamily.OPENAI, render_scale=1.0)
    large = read_file_content(one_page_pdf, ProviderFamily.OPENAI, render_scale=2.0)

    small_pix = fitz.Pixmap(base64.b64decode(small.content))
    large_pix = fitz.Pixmap(base64.b64decode(large.content))
    assert large_pix.width == pytest.approx(small_pix.width * 2, abs=2)


def test_gemini_gets_whole_pdf(three_page_pdf):
    """Test that PDF-capable families get the file itself."""
    result = read_file_content(three_page_pdf, ProviderFamily.GEMINI)

    assert result.kind == ContentKind.BASE64
    assert result.mime_type == "application/pdf"
    assert base64.b64decode(result.content) == three_page_pdf.read_bytes()


def test_other_family_gets_whole_pdf(one_page_pdf):
    """Test that families without PDF handling get the whole file."""
    result = read_file_content(one_page_pdf, ProviderFamily.CUSTOM)

    assert result.kind == ContentKind.BASE64
    assert result.mime_type == "application/pdf"


def test_corrupt_pdf_degrades_to_whole_file(tmp_path):
    """Test that a PDF that cannot be rasterized is sent whole instead of failing."""
    path = tmp_path / "corrupt.pdf"
    path.write_bytes(b"%PDF-1.4\nthis is not really a pdf\n%%EOF")

    result = read_file_content(path, ProviderFamily.OPENAI)

    assert result.kind == ContentKind.BASE64
    assert result.mime_type == "application/pdf"
    assert base64.b64decode(result.content) == path.read_bytes()


def test_mime_type_lookup():
    """Test the extension to mime type map."""
    assert get_mime_type(".JPG") == "image/jpeg"
    assert get_mime_type(".csv") == "text/csv"
    assert get_mime_type(".pdf") == "application/pdf"
    assert get_mime_type(".xyz") == "application/octet-stream"
