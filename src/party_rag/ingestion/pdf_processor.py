"""
PDF Processing

Extracts per-page text from a programme PDF and splits it into overlapping
chunks. The first chunk of every page is tagged with a chapter title when
its opening lines look like a heading.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from ..config import settings
from ..core.errors import IngestionStepError

MAX_TITLE_LENGTH = 100
MIN_TITLE_LENGTH = 5
MAX_LINES_TO_CHECK = 3

NUMBER_PREFIX_REGEX = re.compile(r"^\d+\.?\s")
CHAPTER_WORDS_REGEX = re.compile(
    r"^(del|kapittel|avsnitt|innledning|konklusjon|sammendrag)",
    re.IGNORECASE,
)

SEPARATORS = ["\n\n", "\n", ". ", "! ", "? ", " ", ""]


@dataclass
class ProcessedPage:
    page_number: int
    text: str

    @property
    def has_text(self) -> bool:
        return bool(self.text)


@dataclass
class ProcessedPDF:
    text: str
    total_pages: int
    pages: List[ProcessedPage] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class Chunk:
    """A bounded span of a programme's text; the unit of embedding."""
    content: str
    page_number: int
    chapter_title: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def process_pdf(file_path: str | Path) -> ProcessedPDF:
    """
    Extract text page by page.

    Raises
    ------
    IngestionStepError
        With step ``extract`` if the file cannot be read or parsed.
    """
    try:
        reader = PdfReader(str(file_path))
        pages: List[ProcessedPage] = []
        for number, page in enumerate(reader.pages, start=1):
            text = (page.extract_text() or "").strip()
            pages.append(ProcessedPage(page_number=number, text=text))
    except (OSError, PyPdfError, ValueError) as exc:
        raise IngestionStepError(
            "extract",
            f"Failed to process PDF: {exc}",
            document=str(file_path),
        ) from exc

    full_text = "\n".join(p.text for p in pages if p.has_text)

    return ProcessedPDF(
        text=full_text.strip(),
        total_pages=len(pages),
        pages=pages,
    )


def extract_chapter_title(content: str) -> Optional[str]:
    """
    Guess a heading from the first few non-empty lines.

    A line qualifies when it is short, and either starts with a number
    ("1. Innledning"), is all caps, or starts with a Norwegian chapter word.
    """
    lines = [line.strip() for line in content.split("\n")]
    lines = [line for line in lines if line]

    for line in lines[:MAX_LINES_TO_CHECK]:
        if not (MIN_TITLE_LENGTH < len(line) < MAX_TITLE_LENGTH):
            continue
        if (
            NUMBER_PREFIX_REGEX.match(line)
            or line == line.upper()
            or CHAPTER_WORDS_REGEX.match(line)
        ):
            return line

    return None


def chunk_pdf_content(
    processed: ProcessedPDF,
    max_chunk_size: Optional[int] = None,
    chunk_overlap: Optional[int] = None,
) -> List[Chunk]:
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=max_chunk_size or settings.chunk_size,
        chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
        length_function=len,
        separators=SEPARATORS,
    )

    chunks: List[Chunk] = []

    for page in processed.pages:
        if not page.text.strip():
            continue

        for index, piece in enumerate(splitter.split_text(page.text)):
            content = piece.strip()
            if not content:
                continue
            chunks.append(
                Chunk(
                    content=content,
                    page_number=page.page_number,
                    chapter_title=extract_chapter_title(piece) if index == 0 else None,
                )
            )

    return chunks
