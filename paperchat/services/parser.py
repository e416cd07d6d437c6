# =============================================================================
# PDF Parser — Docling Document Intelligence
# =============================================================================
#
# Extracts the text of an uploaded PDF as an ordered list of blocks
# (headings, paragraphs, list items, tables) with page numbers.
#
# The upload never touches the disk: bytes are wrapped in a Docling
# DocumentStream and converted in memory.
#
# Downstream code only sees ParsedElement / ParsedDocument; Docling types
# stay inside this module.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO

from docling.datamodel.base_models import DocumentStream, InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption
from docling_core.types.doc.labels import DocItemLabel

from paperchat.errors import ExtractionError

logger = logging.getLogger(__name__)

# Separator placed between blocks when the document is flattened to text.
# The chunker and the summarization payload both use ParsedDocument.full_text,
# so chunk offsets always refer to the same string.
BLOCK_SEPARATOR = "\n\n"

_TEXT_LABELS = (
    DocItemLabel.TEXT,
    DocItemLabel.PARAGRAPH,
    DocItemLabel.LIST_ITEM,
    DocItemLabel.CAPTION,
    DocItemLabel.FOOTNOTE,
    DocItemLabel.FORMULA,
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ParsedElement:
    """One block of text in reading order."""

    text: str
    page_number: int  # 1-indexed; 0 when Docling has no provenance
    element_type: str = "text"  # "text", "table", or "heading"


@dataclass
class ParsedDocument:
    """All blocks extracted from a PDF, plus document-level metadata."""

    elements: list[ParsedElement] = field(default_factory=list)
    page_count: int = 0
    filename: str = ""

    @property
    def full_text(self) -> str:
        return BLOCK_SEPARATOR.join(e.text for e in self.elements)

    @classmethod
    def from_texts(
        cls,
        texts: list[str],
        filename: str = "",
        page_numbers: list[int] | None = None,
    ) -> ParsedDocument:
        """Build a document from plain strings (one block per string)."""
        pages = page_numbers or [1] * len(texts)
        elements = [
            ParsedElement(text=text, page_number=page)
            for text, page in zip(texts, pages, strict=True)
        ]
        return cls(
            elements=elements,
            page_count=max(pages) if pages else 0,
            filename=filename,
        )


# ---------------------------------------------------------------------------
# PDF Parser
# ---------------------------------------------------------------------------


class PdfParser:
    """
    Docling-backed PDF text extractor.

    The DocumentConverter loads layout models on first use (a few seconds),
    so one parser instance is built per process and reused.
    """

    def __init__(self, do_ocr: bool = False) -> None:
        self._do_ocr = do_ocr
        self._converter: DocumentConverter | None = None

    def _get_converter(self) -> DocumentConverter:
        if self._converter is None:
            logger.info(
                "Initializing Docling DocumentConverter "
                "(first use, may take a few seconds)..."
            )
            pipeline_options = PdfPipelineOptions()
            pipeline_options.do_table_structure = True
            pipeline_options.do_ocr = self._do_ocr

            self._converter = DocumentConverter(
                format_options={
                    InputFormat.PDF: PdfFormatOption(
                        pipeline_options=pipeline_options,
                    ),
                }
            )
        return self._converter

    def parse(self, filename: str, data: bytes) -> ParsedDocument:
        """
        Extract text blocks from PDF bytes.

        Raises:
            ExtractionError: If Docling cannot convert the document.
        """
        logger.info("Parsing PDF: %s (%d bytes)", filename, len(data))
        converter = self._get_converter()

        try:
            result = converter.convert(
                DocumentStream(name=filename, stream=BytesIO(data))
            )
        except Exception as exc:
            logger.exception("Docling failed to parse '%s'", filename)
            raise ExtractionError(
                f"Could not extract text from '{filename}': {exc}"
            ) from exc

        elements: list[ParsedElement] = []
        page_numbers_seen: set[int] = set()

        for item, _level in result.document.iterate_items():
            page_no = 0
            if getattr(item, "prov", None):
                page_no = item.prov[0].page_no
            page_numbers_seen.add(page_no)

            label = getattr(item, "label", None)

            if label in (DocItemLabel.SECTION_HEADER, DocItemLabel.TITLE):
                text = getattr(item, "text", "").strip()
                if text:
                    elements.append(ParsedElement(text, page_no, "heading"))

            elif label == DocItemLabel.TABLE:
                table_md = _table_to_markdown(item, result.document)
                if table_md:
                    elements.append(ParsedElement(table_md, page_no, "table"))

            elif label in _TEXT_LABELS:
                text = getattr(item, "text", "").strip()
                if text:
                    elements.append(ParsedElement(text, page_no, "text"))

        page_count = max(page_numbers_seen) if page_numbers_seen - {0} else 0

        logger.info(
            "Parsed '%s': %d blocks (%d tables), %d pages",
            filename,
            len(elements),
            sum(1 for e in elements if e.element_type == "table"),
            page_count,
        )
        return ParsedDocument(
            elements=elements,
            page_count=page_count,
            filename=filename,
        )


def _table_to_markdown(table_item: object, document: object) -> str:
    """Export a Docling TableItem as markdown; fall back to its plain text."""
    try:
        if hasattr(table_item, "export_to_markdown"):
            return table_item.export_to_markdown(doc=document).strip()
    except Exception as exc:
        logger.warning("Table export to markdown failed: %s", exc)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""
