from relay_memory.chunking import Chunker, chunk_file, content_hash
from relay_memory.models import Missing


def _long_lines(count: int) -> str:
    return "\n".join(f"line {idx:02d} " + "x" * 42 for idx in range(1, count + 1))


def test_heading_starts_a_new_chunk():
    text = (
        "# Alpha\n"
        "The first section talks about quarterly planning.\n"
        "## Beta\n"
        "The second section is about the grocery budget."
    )

    chunks = chunk_file(text, "notes.md", overlap=0)

    assert [c.id for c in chunks] == ["notes.md:1-2", "notes.md:3-4"]
    assert chunks[0].text.startswith("# Alpha")
    assert chunks[1].text.startswith("## Beta")


def test_size_split_overlaps_previous_tail_without_skipping_lines():
    chunks = chunk_file(_long_lines(30), "big.md")

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 12), (10, 21), (19, 30)]
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_line == prev.end_line - 2
    assert all(len(c.text) <= 611 for c in chunks)


def test_trailing_buffer_is_flushed_without_trigger():
    text = _long_lines(14)

    chunks = chunk_file(text, "tail.md")

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 12), (10, 14)]
    assert chunks[-1].text.endswith("line 14 " + "x" * 42)


def test_tiny_buffers_are_discarded_or_merged():
    assert chunk_file("hi\n", "tiny.md") == []

    text = "# T\nshort\n## U\nmore text that is long enough to keep around"
    chunks = chunk_file(text, "merge.md")

    assert len(chunks) == 1
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 4)


def test_chunking_is_deterministic_and_hashes_text():
    text = "# Title\nThe quarterly budget was approved.\n" + _long_lines(20)
    chunker = Chunker()

    first = chunker.chunk(text, "a.md")
    second = chunker.chunk(text, "a.md")

    assert first == second
    assert all(c.content_hash == content_hash(c.text) for c in first)
    assert all(isinstance(c.embedding, Missing) for c in first)
    assert all(c.start_line <= c.end_line for c in first)


def test_content_hash_is_stable_and_content_sensitive():
    assert content_hash("milk") == content_hash("milk")
    assert content_hash("milk") != content_hash("milk ")
