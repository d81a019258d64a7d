"""
Output handling components for Gemma Bridge

Contains stdout classification and the session transcript.
"""

from .output_classifier import OutputClassifier, ClassifiedChunk, ChunkKind, Marker
from .transcript import TranscriptWriter

__all__ = [
    "OutputClassifier",
    "ClassifiedChunk",
    "ChunkKind",
    "Marker",
    "TranscriptWriter"
]
