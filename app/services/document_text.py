"""
Text extraction from uploaded CV documents.

Supported formats:
- PDF: Parsed with pdfplumber
- DOCX: Parsed with docx2txt
- DOC: Legacy format, rejected (users should convert to DOCX or PDF)
- Anything else is decoded as UTF-8 text
"""

import io
import logging
import os
import pdfplumber
import docx2txt

logger = logging.getLogger(__name__)


class DocumentTextError(ValueError):
    """The document cannot yield any text. Retrying will not help."""


def extract_text(file_name: str, data: bytes) -> str:
    """
    Extract plain text from document bytes, dispatching on the file extension.

    Raises:
        DocumentTextError: unsupported legacy format, corrupt file, or no text found
    """
    file_ext = os.path.splitext(file_name)[1].lower()

    if file_ext == ".pdf":
        text = _extract_pdf(data)
    elif file_ext == ".docx":
        try:
            text = docx2txt.process(io.BytesIO(data))
        except Exception as e:
            raise DocumentTextError(f"Could not read DOCX file: {e}") from e
    elif file_ext == ".doc":
        raise DocumentTextError(
            "Legacy .doc format is not supported. "
            "Please convert the resume to .docx or .pdf format and upload again."
        )
    else:
        text = data.decode("utf-8", errors="replace")

    if not text or not text.strip():
        raise DocumentTextError(
            f"No text could be extracted from {file_name}. The file may be corrupted or a scanned image."
        )

    logger.debug(f"Extracted {len(text)} chars from {file_name}")
    return text


def _extract_pdf(data: bytes) -> str:
    pages = []
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    pages.append(page_text)
    except Exception as e:
        raise DocumentTextError(f"Could not read PDF file: {e}") from e
    return "\n".join(pages)
