"""Adapts uploaded files into the content shape a provider family accepts."""

import base64
import logging
from pathlib import Path
from typing import List, Union

import fitz  # PyMuPDF

from quizbank.errors import ContentError
from quizbank.models import ContentKind, ContentResult, ProviderFamily

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".json", ".csv"}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"}
PDF_EXTENSION = ".pdf"

# Every extension the pipeline can read without the text fallback
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | IMAGE_EXTENSIONS | {PDF_EXTENSION}

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".csv": "text/csv",
}

# Families whose APIs only take images, so PDFs are rasterized page by page
IMAGE_ONLY_FAMILIES = {ProviderFamily.OPENAI, ProviderFamily.QWEN}

DEFAULT_RENDER_SCALE = 2.0


def get_mime_type(extension: str) -> str:
    """Return the MIME type for a file extension (with leading dot)."""
    return MIME_TYPES.get(extension.lower(), "application/octet-stream")


def read_file_content(
    file_path: Union[str, Path],
    family: Union[ProviderFamily, str],
    render_scale: float = DEFAULT_RENDER_SCALE,
) -> ContentResult:
    """Read a file into the representation the provider family expects.

    Text files are returned as UTF-8 text, images as one base64 blob. PDFs
    are rasterized to PNG pages for image-only families and sent whole for
    the rest. A PDF that cannot be rasterized degrades to the whole-file
    base64 form instead of failing.

    Args:
        file_path: Path of the stored upload
        family: Target provider family
        render_scale: Zoom factor applied when rasterizing PDF pages

    Returns:
        ContentResult with kind text, base64 or base64_array

    Raises:
        ContentError: If the file is missing, unreadable or not valid UTF-8 text
    """
    path = Path(file_path)
    if not path.exists():
        raise ContentError(f"File not found: {path}")

    ext = path.suffix.lower()

    if ext in TEXT_EXTENSIONS:
        return _read_text(path)

    if ext in IMAGE_EXTENSIONS:
        return ContentResult(
            kind=ContentKind.BASE64,
            content=_encode(_read_bytes(path)),
            mime_type=get_mime_type(ext),
        )

    if ext == PDF_EXTENSION:
        return _read_pdf(path, family, render_scale)

    logger.warning(f"Unknown file type {ext or '(none)'}, reading {path.name} as text")
    return _read_text(path)


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise ContentError(f"Failed to read {path}: {e}") from e


def _encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _read_text(path: Path) -> ContentResult:
    raw = _read_bytes(path)
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ContentError(f"File is not valid UTF-8 text: {path.name}") from e
    return ContentResult(
        kind=ContentKind.TEXT,
        content=text,
        mime_type=get_mime_type(path.suffix),
    )


def _whole_pdf(path: Path) -> ContentResult:
    return ContentResult(
        kind=ContentKind.BASE64,
        content=_encode(_read_bytes(path)),
        mime_type="application/pdf",
    )


def _read_pdf(path: Path, family: Union[ProviderFamily, str], render_scale: float) -> ContentResult:
    try:
        family = ProviderFamily(family)
    except ValueError:
        family = None

    if family == ProviderFamily.GEMINI:
        return _whole_pdf(path)

    if family not in IMAGE_ONLY_FAMILIES:
        logger.warning(f"No PDF handling for provider family {family}, sending whole file")
        return _whole_pdf(path)

    try:
        pages = render_pdf_pages(path, render_scale)
    except Exception as e:
        logger.warning(f"PDF rasterization failed for {path.name}, sending whole file: {e}")
        return _whole_pdf(path)

    if not pages:
        logger.warning(f"PDF {path.name} has no pages, sending whole file")
        return _whole_pdf(path)

    if len(pages) == 1:
        return ContentResult(kind=ContentKind.BASE64, content=pages[0], mime_type="image/png")

    return ContentResult(kind=ContentKind.BASE64_ARRAY, content=pages, mime_type="image/png")


def render_pdf_pages(path: Union[str, Path], scale: float = DEFAULT_RENDER_SCALE) -> List[str]:
    """Rasterize every page of a PDF to base64-encoded PNG.

    Args:
        path: PDF file path
        scale: Zoom factor (2.0 doubles the default 72 dpi)

    Returns:
        One base64 PNG string per page, in page order
    """
    logger.info(f"Rasterizing PDF {path} at scale {scale}")
    matrix = fitz.Matrix(scale, scale)
    pages = []
    with fitz.open(str(path)) as doc:
        for page in doc:
            pixmap = page.get_pixmap(matrix=matrix, alpha=False)
            pages.append(_encode(pixmap.tobytes("png")))
            logger.debug(f"Rasterized page {len(pages)} of {path}")
    logger.info(f"Rasterized {len(pages)} pages from {path}")
    return pages
