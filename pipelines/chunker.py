"""Document chunking pipeline for crawlsearch.

Splits document text into fixed-size, overlapping windows of words.
"""

import logging
from dataclasses import dataclass
from typing import List, Dict, Any

logger = logging.getLogger(__name__)


@dataclass
class DocumentChunk:
    """Represents a chunk of a document."""
    chunk_index: int
    content: str
    start_word: int
    end_word: int

    @property
    def word_count(self) -> int:
        return self.end_word - self.start_word

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chunk_index": self.chunk_index,
            "content": self.content,
            "start_word": self.start_word,
            "end_word": self.end_word,
        }


class DocumentChunker:
    """Sliding word window over whitespace-delimited tokens."""

    def __init__(self, chunk_size: int = 200, chunk_overlap: int = 40):
        """Initialize chunker.

        Args:
            chunk_size: Number of words per window
            chunk_overlap: Number of words shared by consecutive windows
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap must not be negative")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    @property
    def step(self) -> int:
        return max(1, self.chunk_size - self.chunk_overlap)

    def chunk(self, text: str) -> List[DocumentChunk]:
        """Chunk ``text``; the last window may be short and reaches the end once."""
        words = (text or "").split()
        if not words:
            return []

        chunks = []
        for start in range(0, len(words), self.step):
            end = min(start + self.chunk_size, len(words))
            chunks.append(DocumentChunk(
                chunk_index=len(chunks),
                content=" ".join(words[start:end]),
                start_word=start,
                end_word=end,
            ))
            if end == len(words):
                break

        return chunks


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Convenience wrapper returning only the chunk texts."""
    return [c.content for c in DocumentChunker(chunk_size, overlap).chunk(text)]
