"""Plain-text extraction from uploaded PDF, DOCX and text files."""
import io
import zipfile
import structlog
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from knowledge_base.errors import UnsupportedInputError

logger = structlog.get_logger()

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT = "text/plain"

SUPPORTED_CONTENT_TYPES = (PDF, DOCX, TEXT)


def _extract_pdf(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    # One page per line block; the chunker treats newlines as paragraph breaks.
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _extract_docx(data: bytes) -> str:
    doc = DocxDocument(io.BytesIO(data))
    return "\n".join(paragraph.text for paragraph in doc.paragraphs)


def _extract_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


_EXTRACTORS = {
    PDF: _extract_pdf,
    DOCX: _extract_docx,
    TEXT: _extract_text,
}


def normalize_content_type(content_type: str) -> str:
    """Drop parameters such as ``; charset=utf-8`` and lowercase."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def extract_text(data: bytes, content_type: str) -> str:
    """Turn an uploaded file into a single plain-text string.

    Args:
        data: Raw file bytes
        content_type: Declared MIME type

    Returns:
        Extracted text

    Raises:
        UnsupportedInputError: If the upload is empty, unreadable or of an
            unsupported type
    """
    if not data:
        raise UnsupportedInputError("No file provided")

    extractor = _EXTRACTORS.get(normalize_content_type(content_type))
    if extractor is None:
        raise UnsupportedInputError(
            f"Content type '{content_type}' is not supported. Allowed: PDF, DOCX, TXT"
        )

    try:
        text = extractor(data)
    except (PyPdfError, PackageNotFoundError, zipfile.BadZipFile, ValueError) as e:
        logger.warning("text_extraction_failed", content_type=content_type, error=str(e))
        raise UnsupportedInputError(f"Could not read {content_type} file: {e}") from e

    logger.info(
        "text_extracted",
        content_type=content_type,
        bytes=len(data),
        text_length=len(text),
    )
    return text
