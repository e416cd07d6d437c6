# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the character sliding-window chunking without external dependencies.
# No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from paperchat.errors import InvalidChunkConfigError, ValidationError
from paperchat.services.chunker import chunk_document, split_text, validate_chunk_config
from paperchat.services.parser import ParsedDocument, ParsedElement


def _make_parsed_doc(
    texts: list[str],
    page_numbers: list[int] | None = None,
) -> ParsedDocument:
    return ParsedDocument.from_texts(texts, filename="test.pdf", page_numbers=page_numbers)


def _reconstruct(windows: list[tuple[int, str]], chunk_overlap: int) -> str:
    text = windows[0][1] if windows else ""
    for _, chunk in windows[1:]:
        text += chunk[chunk_overlap:]
    return text


class TestSplitText:
    """Tests for split_text()."""

    def test_empty_text_returns_no_windows(self):
        assert split_text("", chunk_size=10, chunk_overlap=2) == []

    def test_short_text_is_one_window(self):
        assert split_text("hello", chunk_size=10, chunk_overlap=2) == [(0, "hello")]

    def test_windows_never_exceed_chunk_size(self):
        windows = split_text("x" * 95, chunk_size=10, chunk_overlap=3)
        assert all(len(chunk) <= 10 for _, chunk in windows)

    def test_consecutive_windows_share_overlap(self):
        text = "abcdefghijklmnopqrstuvwxyz" * 3
        windows = split_text(text, chunk_size=10, chunk_overlap=4)
        for (_, prev), (_, nxt) in zip(windows, windows[1:]):
            if len(prev) == 10:
                assert prev[-4:] == nxt[:4]

    def test_window_offsets_step_by_size_minus_overlap(self):
        windows = split_text("y" * 50, chunk_size=10, chunk_overlap=2)
        assert [start for start, _ in windows][:4] == [0, 8, 16, 24]

    def test_reconstruction_is_exact(self):
        text = "The quick brown fox.\n\nJumps over   the lazy dog!\n" * 7
        windows = split_text(text, chunk_size=37, chunk_overlap=11)
        assert _reconstruct(windows, 11) == text

    def test_last_window_reaches_end_without_extra_window(self):
        # 20 chars, size 10, overlap 0 → exactly two windows
        windows = split_text("a" * 20, chunk_size=10, chunk_overlap=0)
        assert len(windows) == 2
        assert windows[-1] == (10, "a" * 10)

    def test_whitespace_preserved(self):
        windows = split_text("  padded  ", chunk_size=100, chunk_overlap=0)
        assert windows == [(0, "  padded  ")]


class TestChunkConfig:
    def test_overlap_equal_to_size_rejected(self):
        with pytest.raises(InvalidChunkConfigError):
            validate_chunk_config(100, 100)

    def test_overlap_greater_than_size_rejected(self):
        with pytest.raises(InvalidChunkConfigError):
            split_text("text", chunk_size=10, chunk_overlap=20)

    def test_non_positive_size_rejected(self):
        with pytest.raises(InvalidChunkConfigError):
            validate_chunk_config(0, 0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(InvalidChunkConfigError):
            validate_chunk_config(10, -1)

    def test_invalid_config_is_a_validation_error(self):
        assert issubclass(InvalidChunkConfigError, ValidationError)


class TestChunkDocument:
    """Tests for chunk_document()."""

    def test_empty_document_returns_no_chunks(self):
        doc = _make_parsed_doc([])
        assert chunk_document(doc, chunk_size=64, chunk_overlap=10) == []

    def test_single_short_element_produces_one_chunk(self):
        doc = _make_parsed_doc(["This is a short sentence."])
        chunks = chunk_document(doc, chunk_size=64, chunk_overlap=10)
        assert len(chunks) == 1
        assert chunks[0].content == "This is a short sentence."
        assert chunks[0].chunk_index == 0
        assert chunks[0].start_offset == 0
        assert chunks[0].page_number == 1

    def test_chunk_indices_are_sequential(self):
        doc = _make_parsed_doc(["word " * 200])
        chunks = chunk_document(doc, chunk_size=32, chunk_overlap=5)
        assert len(chunks) > 1
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_index == i

    def test_blocks_joined_with_blank_line(self):
        doc = _make_parsed_doc(["First block.", "Second block."])
        chunks = chunk_document(doc, chunk_size=1000, chunk_overlap=200)
        assert chunks[0].content == "First block.\n\nSecond block."

    def test_chunks_reconstruct_full_text(self):
        texts = ["Abstract. " * 30, "Methods section. " * 40, "Results. " * 25]
        doc = _make_parsed_doc(texts)
        chunks = chunk_document(doc, chunk_size=120, chunk_overlap=30)
        windows = [(c.start_offset, c.content) for c in chunks]
        assert _reconstruct(windows, 30) == doc.full_text

    def test_page_number_is_page_of_block_where_chunk_starts(self):
        doc = _make_parsed_doc(
            texts=["p1 " * 20, "p2 " * 20, "p3 " * 20],
            page_numbers=[1, 2, 3],
        )
        chunks = chunk_document(doc, chunk_size=40, chunk_overlap=0)
        assert chunks[0].page_number == 1
        assert chunks[-1].page_number == 3
        pages = [c.page_number for c in chunks]
        assert pages == sorted(pages)

    def test_token_count_is_populated(self):
        doc = _make_parsed_doc(["Transformers use self-attention. " * 10])
        chunks = chunk_document(doc, chunk_size=100, chunk_overlap=10)
        assert all(c.token_count > 0 for c in chunks)

    def test_token_count_uses_cached_encoder(self):
        # conftest installs a whitespace encoder; nothing is fetched.
        doc = _make_parsed_doc(["Transformers use self-attention. " * 10])
        chunks = chunk_document(doc, chunk_size=100, chunk_overlap=10)
        assert [c.token_count for c in chunks] == [len(c.content.split()) for c in chunks]

    def test_element_type_in_metadata(self):
        doc = ParsedDocument(
            elements=[ParsedElement("| a | b |", 1, "table")],
            page_count=1,
            filename="test.pdf",
        )
        chunks = chunk_document(doc, chunk_size=100, chunk_overlap=0)
        assert chunks[0].metadata == {"element_type": "table"}
