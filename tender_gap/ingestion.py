"""
ingestion.py — Document loading and text normalisation.

Everything downstream works on one plain string per document, so this
module flattens whatever comes in (text PDF, DOCX, TXT, HTML export of a
portal page) into newline-separated lines with whitespace trimmed and
blank lines dropped. The heading regexes in sections.py are anchored to
whole lines and depend on that cleanup.

Scanned, image-only PDFs are rejected with a descriptive error instead of
being OCR'd; gap scoring on OCR noise produced more false "Missing"
findings than it was worth.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import pdfplumber

from tender_gap.config import config

logger = logging.getLogger(__name__)

EMPTY_PDF_MESSAGE = (
    "PDF file appears to be empty or could not extract text. "
    "The PDF might be image-based or encrypted."
)


class DocumentReadError(RuntimeError):
    """The file exists and has a supported extension but yields no usable text."""


class EmptyDocumentError(DocumentReadError):
    """The reader worked but found no text layer (scanned or encrypted PDF)."""


def normalize_lines(text: str) -> str:
    """Trim every line and drop the blank ones."""
    return "\n".join(line.strip() for line in (text or "").split("\n") if line.strip())


def read_document_text(file_path: str, original_name: Optional[str] = None) -> str:
    """
    Load a document and return its normalised text.

    The type is taken from `original_name` when given: uploads are stored
    under generated names and the original extension is what the user
    actually sent us.

    Raises:
        FileNotFoundError: Self-explanatory.
        ValueError: Unsupported format or file too large.
        DocumentReadError: The reader failed or produced no text.
    """
    path = Path(file_path)
    suffix = Path(original_name).suffix.lower() if original_name else ""
    suffix = suffix or path.suffix.lower()
    _validate_file(path, suffix)

    display_name = Path(original_name or path.name).name
    try:
        if suffix == ".pdf":
            text = _read_pdf(path)
        elif suffix in (".docx", ".doc"):
            text = _read_docx(path)
        elif suffix in (".html", ".htm"):
            text = _read_html(path)
        else:
            text = _read_txt(path)
    except EmptyDocumentError:
        raise
    except Exception as exc:
        # pdfplumber and python-docx raise a zoo of exception types for
        # corrupt or encrypted files. All of them mean the same thing here.
        raise DocumentReadError(
            f'Error reading {suffix.lstrip(".").upper() or "FILE"} file "{display_name}": {exc}'
        ) from exc

    logger.info("Read %s: %d chars, %d lines", display_name, len(text), text.count("\n") + 1 if text else 0)
    return text


def _read_pdf(path: Path) -> str:
    parts: List[str] = []
    with pdfplumber.open(str(path)) as pdf:
        logger.debug("Opening PDF: %s (%d pages)", path.name, len(pdf.pages))
        for page in pdf.pages:
            parts.append(page.extract_text() or "")

    text = normalize_lines("\n".join(parts))
    if not text:
        raise EmptyDocumentError(EMPTY_PDF_MESSAGE)
    return text


def _read_docx(path: Path) -> str:
    """
    Paragraphs first, then table rows joined with " | ".

    Tender DOCX files keep the submission schedule and the evaluation
    weights in tables, so skipping tables loses the deadlines the
    contradiction check looks for.
    """
    from docx import Document

    doc = Document(str(path))
    parts: List[str] = [para.text for para in doc.paragraphs if para.text.strip()]

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))

    logger.debug("DOCX %s: %d text blocks", path.name, len(parts))
    return normalize_lines("\n".join(parts))


def _read_html(path: Path) -> str:
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(path.read_text(encoding="utf-8", errors="replace"), "html.parser")
    body = soup.body or soup
    return normalize_lines(body.get_text("\n"))


def _read_txt(path: Path) -> str:
    return normalize_lines(path.read_text(encoding="utf-8", errors="replace"))


def _validate_file(path: Path, suffix: str) -> None:
    """Fail fast on invalid inputs."""
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    size_mb = path.stat().st_size / (1024 * 1024)
    if size_mb > config.max_file_size_mb:
        raise ValueError(
            f"File too large ({size_mb:.1f} MB). Max: {config.max_file_size_mb} MB"
        )

    if suffix not in config.supported_formats:
        raise ValueError(
            f"Unsupported file format: {suffix or 'unknown'}. "
            f"Supported formats: {', '.join(config.supported_formats)}"
        )
