from src.vectorization.chunking import (
    count_tokens,
    estimate_tokens,
    split_into_chunks,
    chunk_by_tokens,
    semantic_chunks,
    pages_for_span,
)


def test_estimate_tokens_is_quarter_of_length():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd" * 10) == 10


def test_split_into_chunks_packs_sentences():
    text = "First sentence here. Second one! Third one?"
    assert split_into_chunks(text, max_tokens=1000) == ["First sentence here. Second one! Third one?"]


def test_split_into_chunks_flushes_at_budget():
    sentence = "x" * 36 + "."
    text = " ".join([sentence] * 4)

    chunks = split_into_chunks(text, max_tokens=20)

    assert len(chunks) == 2
    assert all(estimate_tokens(c) <= 20 for c in chunks)
    assert " ".join(chunks) == text


def test_split_into_chunks_without_punctuation_keeps_whole_text():
    assert split_into_chunks("no punctuation at all") == ["no punctuation at all"]


def test_split_into_chunks_empty_text():
    assert split_into_chunks("") == []
    assert split_into_chunks("   ") == []


def test_chunk_by_tokens_joins_paragraphs_with_blank_line():
    text = "Para one.\n\nPara two.\n\n\n\nPara three."
    assert chunk_by_tokens(text, max_tokens=100) == ["Para one.\n\nPara two.\n\nPara three."]


def test_chunk_by_tokens_splits_large_paragraph_by_sentence():
    paragraph = " ".join(["This sentence is forty characters long."] * 6)

    chunks = chunk_by_tokens(paragraph, max_tokens=25, count=estimate_tokens)

    assert len(chunks) > 1
    assert all(c.strip() for c in chunks)
    assert all(estimate_tokens(c) <= 25 for c in chunks)


def test_chunk_by_tokens_halves_oversized_sentence():
    sentence = "a" * 400 + "."

    chunks = chunk_by_tokens(sentence, max_tokens=30, count=estimate_tokens)

    assert "".join(chunks) == sentence
    assert all(estimate_tokens(c) <= 30 for c in chunks)


def test_chunk_by_tokens_never_emits_empty_chunks():
    assert chunk_by_tokens("\n\n   \n\n") == []
    assert all(c.strip() for c in chunk_by_tokens("One.\n\n\n\nTwo.", max_tokens=1))


def test_chunk_by_tokens_counts_separators():
    paragraph = "x" * 5000

    chunks = chunk_by_tokens(paragraph + "\n\n" + paragraph, max_tokens=2500, count=estimate_tokens)

    assert chunks == [paragraph, paragraph]


def test_chunk_by_tokens_keeps_text_order_around_oversized_sentence():
    long_sentence = "b" * 12000 + "."

    chunks = chunk_by_tokens("First small paragraph.\n\n" + long_sentence, count=estimate_tokens)

    assert chunks[0] == "First small paragraph."
    assert "".join(chunks[1:]) == long_sentence
    assert all(estimate_tokens(c) <= 2500 for c in chunks)


def test_count_tokens_uses_tokenizer():
    assert count_tokens("three word text") == 3


def test_chunk_by_tokens_defaults_to_tokenizer_counts():
    text = "one two three.\n\nfour five six."

    assert chunk_by_tokens(text, max_tokens=6) == [text]
    assert len(chunk_by_tokens(text, max_tokens=6, count=estimate_tokens)) == 2


def test_pages_for_span_overlap():
    pages = [
        {"pageNumber": 1, "startIndex": 0, "endIndex": 99},
        {"pageNumber": 2, "startIndex": 101, "endIndex": 199},
        {"pageNumber": 3, "startIndex": 201, "endIndex": 299},
    ]
    assert pages_for_span(10, 50, pages) == [1]
    assert pages_for_span(90, 150, pages) == [1, 2]
    assert pages_for_span(0, 299, pages) == [1, 2, 3]


def test_semantic_chunks_tracks_offsets_and_pages():
    first = "Alpha beta gamma."
    second = "Delta epsilon."
    text = f"{first}\n\n{second}"
    pages = [
        {"pageNumber": 1, "startIndex": 0, "endIndex": len(first)},
        {"pageNumber": 2, "startIndex": len(first) + 2, "endIndex": len(text)},
    ]

    chunks = semantic_chunks(text, pages, max_tokens=5)

    assert [c["text"] for c in chunks] == [first, second]
    assert chunks[0]["start_index"] == 0
    assert chunks[0]["page_numbers"] == [1]
    assert chunks[1]["start_index"] == text.index(second)
    assert chunks[1]["page_numbers"] == [2]


def test_semantic_chunks_default_page():
    chunks = semantic_chunks("Only one sentence.")
    assert chunks[0]["page_numbers"] == [1]
