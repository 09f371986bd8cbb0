"""Registration of uploaded source files as pending documents."""

import logging
import random
import shutil
import time
from pathlib import Path
from typing import Optional, Tuple, Union

from quizbank.errors import ContentError, UnsupportedFileTypeError
from quizbank.models import BusinessKind
from quizbank.parsing.content_reader import SUPPORTED_EXTENSIONS, get_mime_type
from quizbank.storage.database import QuestionBankDatabase
from quizbank.storage.models import Document

logger = logging.getLogger(__name__)

# Storage category directory per extension, below <upload_dir>/<business_kind>/
EXTENSION_CATEGORIES = {
    ".pdf": "documents/pdf",
    ".txt": "documents/text",
    ".md": "documents/text",
    ".csv": "spreadsheets",
    ".jpg": "images",
    ".jpeg": "images",
    ".png": "images",
    ".gif": "images",
    ".bmp": "images",
    ".webp": "images",
    ".json": "others",
}


def validate_filename(filename: str) -> Tuple[str, str]:
    """Validate an upload's filename.

    Args:
        filename: Original client filename

    Returns:
        Tuple of (cleaned filename, lower-case extension with dot)

    Raises:
        UnsupportedFileTypeError: If the name is empty or the extension is not supported
    """
    filename = (filename or "").strip()
    if not filename:
        raise UnsupportedFileTypeError("Filename is required")

    extension = Path(filename).suffix.lower()
    if not extension:
        raise UnsupportedFileTypeError("File must have an extension")

    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileTypeError(
            f"Unsupported file type: {extension}. "
            f"Allowed: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )
    return filename, extension


def storage_subdir(business_kind: BusinessKind, extension: str) -> Path:
    """Return the relative directory an upload is stored in."""
    category = EXTENSION_CATEGORIES.get(extension.lower(), "others")
    return Path(BusinessKind(business_kind).value) / category


def unique_filename(extension: str) -> str:
    """Generate a collision-resistant stored filename."""
    timestamp = int(time.time() * 1000)
    return f"file-{timestamp}-{random.randint(0, 10**9)}{extension}"


def register_upload(
    database: QuestionBankDatabase,
    upload_dir: Union[str, Path],
    source: Union[str, Path, bytes],
    owner_id: int,
    original_filename: Optional[str] = None,
    name: Optional[str] = None,
    description: Optional[str] = None,
    business_kind: BusinessKind = BusinessKind.QUESTION_BANK,
) -> Document:
    """Store an uploaded file and create its pending Document.

    Args:
        database: Storage handle
        upload_dir: Base upload directory
        source: Path of the file to import, or its raw bytes
        owner_id: User id recorded as the document owner
        original_filename: Client filename (required when ``source`` is bytes)
        name: Display name, defaults to the filename stem
        description: Optional description
        business_kind: Question bank or knowledge base

    Returns:
        The created Document

    Raises:
        UnsupportedFileTypeError: If the file type is not accepted
        ContentError: If the source file does not exist
    """
    if isinstance(source, bytes):
        if not original_filename:
            raise UnsupportedFileTypeError("Filename is required for raw uploads")
    else:
        source = Path(source)
        if not source.is_file():
            raise ContentError(f"File not found: {source}")
        original_filename = original_filename or source.name

    filename, extension = validate_filename(original_filename)
    business_kind = BusinessKind(business_kind)

    target_dir = Path(upload_dir) / storage_subdir(business_kind, extension)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / unique_filename(extension)

    if isinstance(source, bytes):
        target.write_bytes(source)
    else:
        shutil.copyfile(source, target)
    file_size = target.stat().st_size

    try:
        document = database.create_document(
            name=name or Path(filename).stem,
            original_filename=filename,
            file_path=str(target),
            file_size=file_size,
            created_by=owner_id,
            business_kind=business_kind.value,
            description=description,
            mime_type=get_mime_type(extension),
        )
    except Exception:
        logger.error(f"Failed to register upload {filename}, removing {target}")
        target.unlink(missing_ok=True)
        raise

    logger.info(f"Stored upload {filename} ({file_size} bytes) at {target}")
    return document
