"""
Unit tests for OutputClassifier
"""

import pytest

from gemma_bridge.output_handling.output_classifier import (
    ChunkKind,
    ClassifiedChunk,
    OutputClassifier,
)
from gemma_bridge.utils.config import MarkerConfig


def feed_all(classifier, chunks):
    results = []
    for chunk in chunks:
        results.extend(classifier.feed(chunk))
    return results


def content_of(results):
    return ''.join(chunk.text for chunk in results if chunk.kind == ChunkKind.CONTENT)


def kinds_of(results):
    return [chunk.kind for chunk in results if chunk.kind != ChunkKind.CONTENT]


class TestOutputClassifier:
    """Test cases for OutputClassifier"""

    def setup_method(self):
        """Set up test fixtures"""
        self.classifier = OutputClassifier()

    def test_plain_text_is_content(self):
        """Text without markers passes through verbatim"""
        results = self.classifier.feed("hello world")
        assert results == [ClassifiedChunk(ChunkKind.CONTENT, "hello world")]

    def test_exchange_scenario(self):
        """Loading, progress, content and ready chunks of one exchange"""
        results = feed_all(self.classifier, ["Reading prompt", "..", "..", "hello", " world", ">"])

        assert [chunk for chunk in results if chunk.kind == ChunkKind.CONTENT] == [
            ClassifiedChunk(ChunkKind.CONTENT, "hello"),
            ClassifiedChunk(ChunkKind.CONTENT, " world"),
        ]
        assert results[0].kind == ChunkKind.LOADING
        assert results[-1].kind == ChunkKind.READY

    def test_gemma_status_line(self):
        """The bracketed status line and its dots never reach content"""
        results = feed_all(self.classifier, [
            "[ Reading prompt ] ",
            "....",
            ".....",
            "Paris is the capital",
            " of France.\n\n",
            "> ",
        ])

        ready_index = [chunk.kind for chunk in results].index(ChunkKind.READY)
        assert content_of(results[:ready_index]) == "Paris is the capital of France.\n\n"
        assert kinds_of(results)[0] == ChunkKind.LOADING
        assert kinds_of(results)[-1] == ChunkKind.READY

    def test_content_after_loading_marker_is_verbatim(self):
        """Leading spaces of the response survive the loading marker"""
        results = feed_all(self.classifier, ["Reading prompt", " world", ">"])

        assert [chunk for chunk in results if chunk.kind == ChunkKind.CONTENT] == [
            ClassifiedChunk(ChunkKind.CONTENT, " world")
        ]

    def test_spaces_after_loading_marker_are_kept(self):
        results = feed_all(self.classifier, ["[ Reading prompt ]", "   indented", ">"])
        assert content_of(results) == "   indented"

    def test_space_before_dots_held_across_reads(self):
        """The space between the status line and its dots waits for the next read"""
        assert kinds_of(self.classifier.feed("[ Reading prompt ] ")) == [ChunkKind.LOADING]
        assert self.classifier.pending == " "

        assert self.classifier.feed("....") == []
        assert content_of(self.classifier.feed("Hi")) == "Hi"

    def test_held_space_released_when_text_follows(self):
        feed_all(self.classifier, ["Reading prompt "])
        assert content_of(self.classifier.feed("next")) == " next"

    def test_trailing_space_released_by_flush(self):
        self.classifier.feed("Reading prompt ")
        assert self.classifier.flush() == [ClassifiedChunk(ChunkKind.CONTENT, " ")]

    def test_marker_split_across_chunks(self):
        """A marker split over two reads is still recognized"""
        results = feed_all(self.classifier, ["answer[ Read", "ing prompt ]next"])

        assert [chunk.kind for chunk in results] == [
            ChunkKind.CONTENT, ChunkKind.LOADING, ChunkKind.CONTENT
        ]
        assert content_of(results) == "answernext"

    def test_split_marker_is_held_back(self):
        """A possible marker prefix is not emitted until it is decided"""
        assert self.classifier.feed("text Reading pro") == [
            ClassifiedChunk(ChunkKind.CONTENT, "text ")
        ]
        assert self.classifier.pending == "Reading pro"

        results = self.classifier.feed("mpt")
        assert results == [ClassifiedChunk(ChunkKind.LOADING, "Reading prompt")]
        assert self.classifier.pending == ""

    def test_false_prefix_is_released(self):
        """A prefix that turns out not to be a marker becomes content"""
        assert content_of(self.classifier.feed("Readi")) == ""
        results = self.classifier.feed("ng a book")
        assert content_of(results) == "Reading a book"
        assert kinds_of(results) == []

    def test_split_progress_marker(self):
        """'.' then '.' across reads is a progress marker, not content"""
        first = self.classifier.feed("wait.")
        second = self.classifier.feed(".")
        third = self.classifier.feed("x")

        assert content_of(first) == "wait"
        assert kinds_of(second) == [ChunkKind.PROGRESS]
        assert content_of(third) == "x"

    def test_single_dot_is_content(self):
        """A lone full stop is content once the next character arrives"""
        results = feed_all(self.classifier, ["Done.", " Next"])
        assert content_of(results) == "Done. Next"

    def test_odd_progress_run_is_absorbed(self):
        """Runs of three or more dots disappear entirely"""
        results = feed_all(self.classifier, ["Wait", "...", " what"])
        assert content_of(results) == "Wait what"
        assert kinds_of(results) == [ChunkKind.PROGRESS]

    def test_multiple_markers_in_one_chunk(self):
        """Markers inside one chunk are reported in stream order"""
        results = self.classifier.feed("Reading prompt....hi>")

        assert [chunk.kind for chunk in results] == [
            ChunkKind.LOADING, ChunkKind.CONTENT, ChunkKind.READY
        ]
        assert content_of(results) == "hi"

    def test_ready_marker_mid_chunk(self):
        """Content on both sides of the ready marker is kept apart"""
        results = self.classifier.feed("end of answer\n> ")

        assert results == [
            ClassifiedChunk(ChunkKind.CONTENT, "end of answer\n"),
            ClassifiedChunk(ChunkKind.READY, ">"),
            ClassifiedChunk(ChunkKind.CONTENT, " "),
        ]

    def test_flush_releases_pending(self):
        """Held-back text is released as content at end of stream"""
        self.classifier.feed("trailing Readi")
        assert self.classifier.flush() == [ClassifiedChunk(ChunkKind.CONTENT, "Readi")]
        assert self.classifier.pending == ""

    def test_flush_with_nothing_pending(self):
        assert self.classifier.flush() == []

    def test_empty_feed(self):
        assert self.classifier.feed("") == []

    def test_chunking_does_not_change_content(self):
        """Content is the same however the stream is split"""
        stream = "[ Reading prompt ] .......The answer: 3 > 2 is true.\n\n> "
        whole = OutputClassifier().feed(stream)

        for size in (1, 2, 3, 5, 7):
            classifier = OutputClassifier()
            pieces = [stream[i:i + size] for i in range(0, len(stream), size)]
            results = feed_all(classifier, pieces) + classifier.flush()
            assert content_of(results) == content_of(whole)
            assert kinds_of(results) == kinds_of(whole)

    def test_deterministic(self):
        """The same input always yields the same output"""
        chunks = ["Reading pr", "ompt ..", ". abc", "..d", ">"]
        assert feed_all(OutputClassifier(), chunks) == feed_all(OutputClassifier(), chunks)

    def test_custom_markers(self):
        """Markers come from configuration"""
        classifier = OutputClassifier(MarkerConfig(
            reading_prompt=("<thinking>",),
            ready=("\n$ ",),
            progress=("~~",)
        ))

        results = feed_all(classifier, ["<think", "ing>~~answer > 1", "\n$", " "])

        assert content_of(results) == "answer > 1"
        assert kinds_of(results) == [ChunkKind.LOADING, ChunkKind.PROGRESS, ChunkKind.READY]

    def test_reset(self):
        self.classifier.feed("Reading pr")
        self.classifier.reset()
        assert self.classifier.pending == ""
        assert content_of(self.classifier.feed("ompt")) == "ompt"


if __name__ == "__main__":
    pytest.main([__file__])
