"""Tests for character-offset chunking."""
from barkly.services.chunking import (
    DocumentChunker,
    analyze_chunk_content,
    find_page_number,
)
from tests.conftest import PUBLIC_TEXT


def _assert_offsets_match(text, chunks):
    for chunk in chunks:
        assert text[chunk["start_char"]:chunk["end_char"]].strip() == chunk["content"]


def test_empty_text_gives_no_chunks():
    chunker = DocumentChunker()
    assert chunker.chunk_document("") == []
    assert chunker.chunk_document("   \n\n ") == []


def test_short_text_is_one_chunk():
    chunks = DocumentChunker().chunk_document(PUBLIC_TEXT)

    assert len(chunks) == 1
    chunk = chunks[0]
    assert chunk["chunk_index"] == 0
    assert chunk["start_char"] == 0
    assert chunk["end_char"] == len(PUBLIC_TEXT)
    assert chunk["word_count"] == len(PUBLIC_TEXT.split())
    assert chunk["start_page"] is None


def test_long_text_chunks_overlap_and_respect_max_size():
    text = "\n\n".join([PUBLIC_TEXT] * 4)
    chunker = DocumentChunker(max_chunk_size=400, overlap_size=40, min_chunk_size=50)
    chunks = chunker.chunk_document(text)

    assert len(chunks) > 4
    assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert chunk["end_char"] - chunk["start_char"] <= 400
    for previous, current in zip(chunks, chunks[1:]):
        assert current["start_char"] < previous["end_char"]
        assert current["start_char"] > previous["start_char"]
    assert chunks[-1]["end_char"] == len(text)
    _assert_offsets_match(text, chunks)


def test_chunk_ends_at_paragraph_break():
    first = " ".join(["word"] * 30)
    second = " ".join(["other"] * 30)
    text = f"{first}\n\n{second}"
    chunks = DocumentChunker(max_chunk_size=200, overlap_size=0, min_chunk_size=20).chunk_document(text)

    assert chunks[0]["content"] == first
    assert chunks[1]["content"] == second


def test_chunk_ends_at_sentence_when_no_paragraph():
    text = "This is sentence number one. " * 20
    chunks = DocumentChunker(max_chunk_size=100, overlap_size=10, min_chunk_size=20).chunk_document(text)

    assert chunks[0]["content"].endswith(".")
    assert chunks[0]["end_char"] == 87
    _assert_offsets_match(text, chunks)


def test_hard_cut_without_boundaries():
    text = "x" * 250
    chunks = DocumentChunker(
        max_chunk_size=100,
        overlap_size=0,
        min_chunk_size=10,
    ).chunk_document(text)

    assert [(c["start_char"], c["end_char"]) for c in chunks] == [(0, 100), (100, 200), (200, 250)]


def test_short_trailing_chunk_is_dropped():
    text = "x" * 105
    chunks = DocumentChunker(max_chunk_size=100, overlap_size=0, min_chunk_size=10).chunk_document(text)

    assert len(chunks) == 1


def test_page_numbers_from_page_breaks():
    assert find_page_number(0, [100, 200]) == 1
    assert find_page_number(100, [100, 200]) == 1
    assert find_page_number(150, [100, 200]) == 2
    assert find_page_number(250, [100, 200]) == 3

    text = "a" * 300
    chunks = DocumentChunker(max_chunk_size=150, overlap_size=0, min_chunk_size=10).chunk_document(
        text, page_breaks=[100, 300]
    )
    assert (chunks[0]["start_page"], chunks[0]["end_page"]) == (1, 2)
    assert (chunks[1]["start_page"], chunks[1]["end_page"]) == (2, 2)


def test_semantic_chunks_stay_within_sections():
    intro = "# Introduction\n" + PUBLIC_TEXT[:300]
    methods = "# Methods\n" + PUBLIC_TEXT[300:700]
    text = f"{intro}\n{methods}"
    chunks = DocumentChunker(max_chunk_size=1500, min_chunk_size=50).create_semantic_chunks(text)

    assert [c["metadata"]["section_title"] for c in chunks] == ["Introduction", "Methods"]
    assert [c["chunk_index"] for c in chunks] == [0, 1]
    assert chunks[1]["start_char"] == text.index("# Methods")
    _assert_offsets_match(text, chunks)


def test_sliding_window_chunks():
    text = "y" * 2500
    chunks = DocumentChunker(min_chunk_size=50).create_sliding_window_chunks(text, window_size=1000, stride=500)

    assert [c["start_char"] for c in chunks] == [0, 500, 1000, 1500, 2000]
    assert chunks[0]["end_char"] == 1000
    assert chunks[-1]["end_char"] == 2500


def test_analyze_and_chunk_detects_academic_text():
    sentence = (
        "Participants in the program described a steady improvement in school attendance "
        "and in their confidence when speaking with adults outside the family. "
    )
    text = "# Findings\n" + sentence * 6 + "\n# Discussion\n" + sentence * 6
    result = DocumentChunker().analyze_and_chunk(text)

    assert result["analysis"]["document_type"] == "academic"
    assert result["recommended_strategy"] == "structural"
    assert result["analysis"]["has_structure"] is True
    assert result["chunks"]
    assert all(c["end_char"] - c["start_char"] <= 800 for c in result["chunks"])


def test_analyze_and_chunk_general_text():
    result = DocumentChunker().analyze_and_chunk(PUBLIC_TEXT)

    assert result["analysis"]["document_type"] == "general"
    assert result["recommended_strategy"] == "hybrid"
    assert len(result["chunks"]) == 1
    assert 0 < result["analysis"]["content_density"] <= 1


def test_analyze_chunk_content():
    assert analyze_chunk_content("# Title\n- item one\n- item two")["content_type"] == "mixed"
    assert analyze_chunk_content("- item one\n- item two")["content_type"] == "list"
    assert analyze_chunk_content("Day | Activity\nTuesday | Basketball")["content_type"] == "table"

    narrative = analyze_chunk_content('She said "having adults who listen matters most" to us.')
    assert narrative["content_type"] == "narrative"
    assert narrative["has_quotes"] is True
    assert narrative["has_headers"] is False
