"""Raw file -> indexable text, keyed on the file extension."""
from __future__ import annotations

from pathlib import PurePath

TEXT_EXTENSIONS = {".sql", ".ddl", ".txt", ".md", ".markdown"}
PDF_PLACEHOLDER = "[PDF content - text extraction to be implemented]"


def extract_text(filename: str, data: bytes) -> str:
    """
    Decode an uploaded file for indexing.

    PDF extraction is not implemented; PDFs yield a fixed placeholder so the
    file is still registered in the index.  Unknown extensions are decoded as
    UTF-8 like the text formats.
    """
    suffix = PurePath(filename).suffix.lower()
    if suffix == ".pdf":
        return PDF_PLACEHOLDER
    return data.decode("utf-8", errors="replace")


def is_supported(filename: str) -> bool:
    return PurePath(filename).suffix.lower() in TEXT_EXTENSIONS | {".pdf"}
