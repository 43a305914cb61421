"""
Text chunking service for the Document Intelligence Engine

This module splits page text into fixed-size, overlapping character
windows that serve as the unit of retrieval.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

from config import settings
from models.document import Chunk
from utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking parameters"""
    chunk_size: int = 1000  # Characters per window
    overlap: int = 200  # Characters shared by consecutive windows

    def validate(self) -> "ChunkingConfig":
        """Raise ConfigurationError unless 0 <= overlap < chunk_size"""
        if self.chunk_size <= 0:
            raise ConfigurationError(
                "chunk_size must be a positive integer",
                setting_name="chunk_size",
                setting_value=self.chunk_size
            )
        if self.overlap < 0:
            raise ConfigurationError(
                "overlap must be a non-negative integer",
                setting_name="chunk_overlap",
                setting_value=self.overlap
            )
        if self.overlap >= self.chunk_size:
            raise ConfigurationError(
                f"overlap ({self.overlap}) must be smaller than chunk_size ({self.chunk_size})",
                setting_name="chunk_overlap",
                setting_value=self.overlap
            )
        return self

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap

    @classmethod
    def from_settings(cls) -> "ChunkingConfig":
        return cls(chunk_size=settings.chunk_size, overlap=settings.chunk_overlap)


def expected_chunk_count(text_length: int, chunk_size: int, overlap: int) -> int:
    """Number of windows chunk_text produces for a text of the given length"""
    if text_length == 0:
        return 0
    if text_length <= chunk_size:
        return 1
    step = chunk_size - overlap
    # Windows start at 0, step, 2*step, ... and the last one reaches the end
    return -(-(text_length - overlap) // step)


class TextChunker:
    """
    Deterministic fixed-window chunker.

    Windows start at ``0, size-overlap, 2*(size-overlap), ...`` and stop as
    soon as a window reaches the end of the text, so the last chunk may be
    shorter than ``chunk_size``.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        """
        Initialize the text chunker with configuration.

        Args:
            config: Chunking configuration parameters

        Raises:
            ConfigurationError: If overlap is not smaller than chunk_size
        """
        self.config = (config or ChunkingConfig.from_settings()).validate()

        self.whitespace_pattern = re.compile(r'\s+')

    def normalize(self, text: str) -> str:
        """
        Collapse runs of whitespace into single spaces and trim the ends.

        Page text extractors join text runs with spaces and newlines in
        inconsistent ways; normalizing keeps chunk boundaries stable.
        """
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text).strip()

    def chunk_text(
        self,
        text: str,
        chunk_size: Optional[int] = None,
        overlap: Optional[int] = None
    ) -> List[Chunk]:
        """
        Split text into ordered, overlapping chunks.

        Args:
            text: The text content to chunk (used as-is, see ``normalize``)
            chunk_size: Optional override of the configured window size
            overlap: Optional override of the configured overlap

        Returns:
            List of Chunk objects in source order; empty for empty text

        Raises:
            ConfigurationError: If the overlap is not smaller than the window
        """
        config = self.config
        if chunk_size is not None or overlap is not None:
            config = ChunkingConfig(
                chunk_size=self.config.chunk_size if chunk_size is None else chunk_size,
                overlap=self.config.overlap if overlap is None else overlap
            ).validate()

        if not text:
            return []

        chunks = []
        text_length = len(text)
        start = 0

        while True:
            end = min(start + config.chunk_size, text_length)
            chunks.append(Chunk(index=len(chunks), start_offset=start, text=text[start:end]))
            if end >= text_length:
                break
            start += config.step

        return chunks

    def get_chunk_statistics(self, chunks: List[Chunk]) -> dict:
        """
        Get statistics about the generated chunks.

        Args:
            chunks: List of chunks to analyze

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "total_chunks": 0,
                "avg_chunk_size_chars": 0,
                "min_chunk_size_chars": 0,
                "max_chunk_size_chars": 0,
                "covered_characters": 0
            }

        sizes = [len(chunk.text) for chunk in chunks]

        return {
            "total_chunks": len(chunks),
            "avg_chunk_size_chars": sum(sizes) / len(chunks),
            "min_chunk_size_chars": min(sizes),
            "max_chunk_size_chars": max(sizes),
            "covered_characters": chunks[-1].end_offset
        }
