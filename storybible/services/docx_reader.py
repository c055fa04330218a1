from __future__ import annotations

import zipfile
from typing import BinaryIO

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from ..errors import ValidationError


def read_docx_text(stream: BinaryIO) -> str:
    """Return the paragraph text of a ``.docx`` upload, one paragraph per line."""

    try:
        document = Document(stream)
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise ValidationError("Uploaded file is not a valid .docx document", "file") from exc
    return "\n".join(paragraph.text for paragraph in document.paragraphs)


__all__ = ["read_docx_text"]
