"""
Output Classifier for Gemma Bridge

Incremental scanner that splits gemma's stdout into status markers and
response content.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ..utils.config import MarkerConfig
from ..utils.logging_setup import get_logger

logger = get_logger('output_classifier')


class ChunkKind(Enum):
    """What a piece of stdout text means"""
    LOADING = "loading"     # Prompt is being read
    READY = "ready"         # Waiting for the next line of input
    PROGRESS = "progress"   # Progress dots, log only
    CONTENT = "content"     # Response text


@dataclass(frozen=True)
class Marker:
    """A literal marker and the filler swallowed right after it.

    ``absorb`` characters directly after the marker are dropped. A single
    ``lead`` character is dropped too, but only when an absorbed character
    follows it; otherwise it is content.
    """
    kind: ChunkKind
    text: str
    absorb: str = ""
    lead: str = ""


@dataclass(frozen=True)
class ClassifiedChunk:
    """A classified piece of output"""
    kind: ChunkKind
    text: str


def build_markers(config: MarkerConfig) -> List[Marker]:
    """Markers for a configuration, longest first so the longest match wins"""
    markers = [Marker(ChunkKind.LOADING, text, absorb=".", lead=" ")
               for text in config.reading_prompt]
    markers += [Marker(ChunkKind.READY, text) for text in config.ready]
    markers += [Marker(ChunkKind.PROGRESS, text, absorb=".") for text in config.progress]
    return sorted(markers, key=lambda marker: len(marker.text), reverse=True)


class OutputClassifier:
    """Classifies an arbitrarily chunked text stream.

    Text is scanned left to right over a rolling buffer. When a marker is
    found, content before it is emitted, then the marker itself. A buffer
    tail that could still grow into a marker is held back until the next
    ``feed()`` or ``flush()``, so markers split across reads are recognized
    and never leak into content.

    The classifier knows nothing about session phases; the caller decides
    what to do with each ``ClassifiedChunk``. The same sequence of fed
    chunks always yields the same sequence of classified chunks.
    """

    def __init__(self, markers: Optional[MarkerConfig] = None):
        self.markers = build_markers(markers or MarkerConfig())
        self._first_chars = {marker.text[0] for marker in self.markers}
        self._pending = ""
        self._absorb = ""
        self._lead = ""

    @property
    def pending(self) -> str:
        """Text held back because it may be the start of a marker"""
        return self._pending

    def feed(self, text: str) -> List[ClassifiedChunk]:
        """Scan newly received text"""
        if not text:
            return []
        self._pending += text
        return self._scan(final=False)

    def flush(self) -> List[ClassifiedChunk]:
        """Release everything held back; call when the stream ends"""
        chunks = self._scan(final=True)
        self._absorb = ""
        self._lead = ""
        return chunks

    def reset(self):
        """Drop held-back text and absorb state"""
        self._pending = ""
        self._absorb = ""
        self._lead = ""

    def _scan(self, final: bool) -> List[ClassifiedChunk]:
        buffer = self._pending
        chunks: List[ClassifiedChunk] = []
        content_start = 0
        position = 0
        length = len(buffer)

        while position < length:
            if self._absorb:
                char = buffer[position]
                if char in self._absorb:
                    self._lead = ""
                    position += 1
                    content_start = position
                    continue
                if char in self._lead:
                    if position + 1 < length and buffer[position + 1] in self._absorb:
                        self._lead = ""
                        position += 1
                        content_start = position
                        continue
                    if position + 1 == length and not final:
                        break
                self._absorb = ""
                self._lead = ""

            if buffer[position] not in self._first_chars:
                position += 1
                continue

            marker, partial = self._match_at(buffer, position, final)
            if partial:
                break
            if marker is None:
                position += 1
                continue

            if position > content_start:
                chunks.append(ClassifiedChunk(ChunkKind.CONTENT, buffer[content_start:position]))
            chunks.append(ClassifiedChunk(marker.kind, marker.text))
            position += len(marker.text)
            content_start = position
            self._absorb = marker.absorb
            self._lead = marker.lead

        if position > content_start:
            chunks.append(ClassifiedChunk(ChunkKind.CONTENT, buffer[content_start:position]))

        self._pending = buffer[position:]
        if final and self._pending:
            chunks.append(ClassifiedChunk(ChunkKind.CONTENT, self._pending))
            self._pending = ""

        return chunks

    def _match_at(self, buffer: str, position: int, final: bool) -> Tuple[Optional[Marker], bool]:
        """Return (marker, partial) for the marker starting at ``position``.

        ``partial`` is True when the remaining text is a proper prefix of a
        longer marker, so no decision can be made yet.
        """
        remaining = len(buffer) - position
        for marker in self.markers:
            if not final and remaining < len(marker.text) and marker.text.startswith(buffer[position:]):
                return None, True
            if buffer.startswith(marker.text, position):
                return marker, False
        return None, False
