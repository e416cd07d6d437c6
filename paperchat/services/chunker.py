# =============================================================================
# Character Chunker — Fixed-Size Sliding Window
# =============================================================================
#
# Splits a parsed document into fixed-size character windows that overlap by
# a configured number of characters.
#
# ALGORITHM:
# 1. Flatten the document's blocks with "\n\n" separators
#    (ParsedDocument.full_text)
# 2. Slide a window of chunk_size characters, advancing
#    step = chunk_size - chunk_overlap characters each time
# 3. Stop at the first window that reaches the end of the text; a short
#    trailing window is emitted as-is
# 4. Annotate each chunk with its start offset, starting page and a
#    tiktoken token count
#
# GUARANTEES (for valid size/overlap):
# - no chunk is longer than chunk_size
# - chunk i+1 starts with exactly the last chunk_overlap chars of chunk i
# - chunks[0] + chunk[overlap:] for the rest reconstructs the text exactly
# =============================================================================

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field

import tiktoken

from paperchat.errors import InvalidChunkConfigError
from paperchat.services.parser import BLOCK_SEPARATOR, ParsedDocument

logger = logging.getLogger(__name__)

# text-embedding-3-small accepts at most 8191 tokens per input
MAX_EMBEDDING_TOKENS = 8191


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ChunkResult:
    """A single chunk ready for embedding and storage."""

    content: str
    chunk_index: int  # 0-indexed position within the document
    start_offset: int  # Character offset of content in the full text
    page_number: int  # Page of the block the chunk starts in
    token_count: int
    document_id: str | None = None  # Set by the ingestion orchestrator
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tiktoken Encoder — Cached
# ---------------------------------------------------------------------------
# cl100k_base is the encoding used by text-embedding-3-small. The BPE file is
# read once per process.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_chunk_config(chunk_size: int, chunk_overlap: int) -> None:
    """Raise InvalidChunkConfigError unless 0 <= overlap < size."""
    if chunk_size <= 0:
        raise InvalidChunkConfigError(
            f"chunk_size must be positive, got {chunk_size}"
        )
    if chunk_overlap < 0:
        raise InvalidChunkConfigError(
            f"chunk_overlap must not be negative, got {chunk_overlap}"
        )
    if chunk_overlap >= chunk_size:
        raise InvalidChunkConfigError(
            f"chunk_overlap ({chunk_overlap}) must be smaller than "
            f"chunk_size ({chunk_size})"
        )


def split_text(
    text: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[tuple[int, str]]:
    """
    Split `text` into overlapping windows.

    Returns:
        (start_offset, chunk_text) pairs in document order. Empty text
        yields an empty list.

    Raises:
        InvalidChunkConfigError: If chunk_overlap >= chunk_size or either
            value is out of range.
    """
    validate_chunk_config(chunk_size, chunk_overlap)

    step = chunk_size - chunk_overlap
    windows: list[tuple[int, str]] = []

    for start in range(0, len(text), step):
        end = min(start + chunk_size, len(text))
        windows.append((start, text[start:end]))
        if end >= len(text):
            break

    return windows


def chunk_document(
    parsed_doc: ParsedDocument,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[ChunkResult]:
    """
    Split a parsed document into character chunks with metadata.

    Pipeline position: step 3 of ingestion (validate → extract → chunk →
    record → index → enqueue).
    """
    validate_chunk_config(chunk_size, chunk_overlap)

    if not parsed_doc.elements:
        logger.warning("No elements to chunk in '%s'", parsed_doc.filename)
        return []

    full_text = parsed_doc.full_text

    # Start offset of every block in full_text, for page lookup
    block_starts: list[int] = []
    offset = 0
    for element in parsed_doc.elements:
        block_starts.append(offset)
        offset += len(element.text) + len(BLOCK_SEPARATOR)

    encoder = _get_encoder()
    chunks: list[ChunkResult] = []

    for chunk_index, (start, content) in enumerate(
        split_text(full_text, chunk_size, chunk_overlap)
    ):
        block_idx = bisect.bisect_right(block_starts, start) - 1
        element = parsed_doc.elements[max(block_idx, 0)]
        token_count = len(encoder.encode(content, disallowed_special=()))

        if token_count > MAX_EMBEDDING_TOKENS:
            logger.warning(
                "Chunk %d of '%s' has %d tokens (embedding limit %d)",
                chunk_index, parsed_doc.filename, token_count,
                MAX_EMBEDDING_TOKENS,
            )

        chunks.append(ChunkResult(
            content=content,
            chunk_index=chunk_index,
            start_offset=start,
            page_number=element.page_number,
            token_count=token_count,
            metadata={"element_type": element.element_type},
        ))

    logger.info(
        "Chunked '%s' into %d chunks (%d chars, size=%d, overlap=%d)",
        parsed_doc.filename, len(chunks), len(full_text),
        chunk_size, chunk_overlap,
    )
    return chunks
