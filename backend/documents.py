"""Scale document parsing: text extraction, item extraction and language detection."""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import fitz  # PyMuPDF
from docx import Document

from . import config

logger = logging.getLogger(__name__)

SUPPORTED_TEXT_TYPES = {".txt"}
SUPPORTED_PDF_TYPES = {".pdf"}
SUPPORTED_WORD_TYPES = {".docx"}

# Extraction stops after this many items
MAX_ITEMS = 50

# Keyword hits decide the language; ties go to the earlier entry
LANGUAGE_KEYWORDS = {
    "sinhala": ["මම", "දැඩි", "තෙරුම්", "කාර්ය", "මනසින්", "ශක්තිය", "දුකට", "නොසිටින්න"],
    "spanish": ["me", "siento", "exhauasto", "difícil", "recuperar", "energía", "cínico"],
    "tamil": ["நான்", "உணர்கிறேன்", "தெளிவாக", "இயக்க"],
    "french": ["je", "me", "sens", "épuisé", "difficile", "récupérer", "énergie"],
    "portuguese": ["sinto", "exausto", "difícil", "recuperar", "energia", "cínico"],
    "german": ["fühle", "erschöpft", "schwer", "energie", "erholen"],
    "english": ["feel", "exhausted", "hard", "recover", "energy", "cynical", "aversion"],
}
DEFAULT_LANGUAGE = "english"

NUMBERED_LINE = re.compile(r"^(\d+)[.):\s]+(.+)$")
BULLET_LINE = re.compile(r"^[-*•]\s+(.+)$")


class DocumentParseError(Exception):
    """A document that could not be turned into scale items.

    kind is one of "unsupported", "too_large", "corrupt" or "no_items".
    """

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass
class ParsedDocument:
    """Items extracted from an uploaded scale document."""

    filename: str
    items: List[str]
    language: str
    extracted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def item_count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "items": self.items,
            "language": self.language,
            "item_count": self.item_count,
            "extracted_at": self.extracted_at,
        }


def get_file_extension(filename: str) -> str:
    """Get lowercase file extension."""
    return Path(filename).suffix.lower()


def get_file_type(filename: str) -> Optional[str]:
    """Determine the type of file based on extension.

    Returns:
        'text', 'pdf', 'docx', or None if unsupported
    """
    ext = get_file_extension(filename)
    if ext in SUPPORTED_TEXT_TYPES:
        return "text"
    if ext in SUPPORTED_PDF_TYPES:
        return "pdf"
    if ext in SUPPORTED_WORD_TYPES:
        return "docx"
    return None


def validate_file(filename: str, content: bytes) -> Tuple[bool, Optional[str]]:
    """Validate an uploaded scale document.

    Args:
        filename: Original filename
        content: File content bytes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not get_file_type(filename):
        return False, "Unsupported file format. Please use .txt, .docx, or .pdf files."

    max_bytes = config.MAX_UPLOAD_MB * 1024 * 1024
    if len(content) > max_bytes:
        return False, f"File too large (max {config.MAX_UPLOAD_MB}MB)"

    return True, None


def extract_text_from_pdf(content: bytes) -> str:
    """Extract plain text from PDF bytes, one block per page.

    Raises:
        DocumentParseError: If the PDF cannot be opened
    """
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            return "\n".join(page.get_text() for page in doc)
    except Exception as e:
        logger.error("Failed to extract PDF text: %s", e)
        raise DocumentParseError(
            "corrupt",
            "Failed to parse PDF file. Please ensure it contains readable text.",
        ) from e


def extract_text_from_docx(content: bytes) -> str:
    """Extract plain text from .docx bytes: paragraphs, then table cells.

    Raises:
        DocumentParseError: If the file is not a valid Word document
    """
    try:
        doc = Document(io.BytesIO(content))
    except Exception as e:
        logger.error("Failed to open Word document: %s", e)
        raise DocumentParseError(
            "corrupt",
            "Failed to parse Word document. Please ensure it is a valid .docx file.",
        ) from e

    lines = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            lines.extend(cell.text for cell in row.cells)
    return "\n".join(lines)


def extract_text(filename: str, content: bytes) -> str:
    """Extract plain text from a supported document.

    Args:
        filename: Original filename (its extension picks the decoder)
        content: File content bytes

    Returns:
        Extracted text

    Raises:
        DocumentParseError: For unsupported, oversized or corrupt files
    """
    is_valid, error = validate_file(filename, content)
    if not is_valid:
        kind = "unsupported" if get_file_type(filename) is None else "too_large"
        raise DocumentParseError(kind, error)

    file_type = get_file_type(filename)

    if file_type == "pdf":
        return extract_text_from_pdf(content)
    if file_type == "docx":
        return extract_text_from_docx(content)

    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def detect_language(text: str) -> str:
    """Guess a document's language from keyword hits."""
    lowered = text.lower()
    scores = {
        language: sum(1 for keyword in keywords if keyword in lowered)
        for language, keywords in LANGUAGE_KEYWORDS.items()
    }
    language, score = max(scores.items(), key=lambda pair: pair[1])
    return language if score > 0 else DEFAULT_LANGUAGE


def extract_items(text: str, limit: int = MAX_ITEMS) -> List[str]:
    """Extract scale items from document text.

    Numbered lines ("1.", "1)", "1:") and bulleted lines ("-", "*", "•") are
    items when their text is longer than 2 characters. A document with
    neither pattern yields every line longer than 5 characters.
    """
    lines = [line.strip() for line in text.replace("\r\n", "\n").strip().split("\n")]
    lines = [line for line in lines if line]

    has_numbered = False
    has_bullets = False
    for line in lines:
        if NUMBERED_LINE.match(line):
            has_numbered = True
            break
        if BULLET_LINE.match(line):
            has_bullets = True
            break

    items: List[str] = []
    for line in lines:
        if len(items) >= limit:
            break

        numbered = NUMBERED_LINE.match(line)
        if numbered:
            item_text = numbered.group(2).strip()
            if len(item_text) > 2:
                items.append(item_text)
            continue

        bullet = BULLET_LINE.match(line)
        if bullet:
            item_text = bullet.group(1).strip()
            if len(item_text) > 2:
                items.append(item_text)
            continue

        if not has_numbered and not has_bullets and len(line) > 5:
            items.append(line)

    logger.debug(
        "Extracted %d items (numbered=%s, bullets=%s)", len(items), has_numbered, has_bullets
    )
    return items


def parse_document(filename: str, content: bytes) -> ParsedDocument:
    """Extract items and detect the language of an uploaded scale.

    Raises:
        DocumentParseError: If the file cannot be read or holds no items
    """
    text = extract_text(filename, content)
    items = extract_items(text)
    language = detect_language(text)

    if not items:
        raise DocumentParseError(
            "no_items",
            "No items found in document. Please ensure items are numbered or bulleted.",
        )

    logger.info("Parsed %s: %d items in %s", filename, len(items), language)
    return ParsedDocument(filename=filename, items=items, language=language)


def validate_item_count(item_count: int, expected_count: Optional[int] = None) -> Dict[str, Any]:
    """Compare an extracted item count with the expected scale length."""
    expected = config.EXPECTED_ITEM_COUNT if expected_count is None else expected_count
    is_valid = item_count == expected
    return {
        "is_valid": is_valid,
        "expected": expected,
        "received": item_count,
        "message": (
            f"Found exactly {item_count} items."
            if is_valid
            else f"Expected {expected} items, found {item_count}."
        ),
    }
