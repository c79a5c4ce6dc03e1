"""Token-window chunking of document text."""

import logging
import hashlib
from typing import List, Tuple

import tiktoken

from storage.models import ContentChunk


logger = logging.getLogger("research-retrieval.chunking")


class ChunkingService:
    """Splits documents into ordered, non-overlapping token windows."""

    def __init__(
        self,
        single_piece_max: int = 600,
        chunk_target: int = 500
    ):
        """
        Initialize chunking service.

        Args:
            single_piece_max: Documents above this many tokens get chunked
            chunk_target: Tokens per chunk (the last chunk may be shorter)
        """
        if chunk_target <= 0:
            raise ValueError(f"chunk_target must be positive, got {chunk_target}")

        self.single_piece_max = single_piece_max
        self.chunk_target = chunk_target
        self.encoding = tiktoken.get_encoding("cl100k_base")

    def should_chunk(self, text: str) -> Tuple[bool, int]:
        """
        Determine if text needs chunking.

        Args:
            text: Text to evaluate

        Returns:
            Tuple of (should_chunk, token_count)
        """
        token_count = len(self.encoding.encode(text))
        should_chunk = token_count > self.single_piece_max

        logger.debug(
            f"Chunk decision: token_count={token_count}, "
            f"threshold={self.single_piece_max}, will_chunk={should_chunk}"
        )

        return should_chunk, token_count

    def chunk_text(self, text: str, source_id: str) -> List[ContentChunk]:
        """
        Chunk text into consecutive token windows.

        Args:
            text: Document text
            source_id: Parent document ID

        Returns:
            Chunks ordered by zero-based chunk_index (empty if text fits in one piece)
        """
        tokens = self.encoding.encode(text)
        token_count = len(tokens)
        if token_count <= self.single_piece_max:
            return []

        chunks = []
        start_char = 0

        for chunk_index, pos in enumerate(range(0, token_count, self.chunk_target)):
            chunk_tokens = tokens[pos : pos + self.chunk_target]
            chunk_content = self.encoding.decode(chunk_tokens)
            end_char = start_char + len(chunk_content)

            content_hash = hashlib.sha256(chunk_content.encode()).hexdigest()

            chunks.append(ContentChunk(
                id=f"{source_id}::chunk::{chunk_index:03d}::{content_hash[:8]}",
                source_id=source_id,
                chunk_index=chunk_index,
                content=chunk_content,
                metadata={
                    "start_char": start_char,
                    "end_char": end_char,
                    "token_count": len(chunk_tokens),
                    "type": "arbitrary"
                }
            ))
            start_char = end_char

        logger.info(
            f"Text chunked: source_id={source_id}, total_tokens={token_count}, "
            f"num_chunks={len(chunks)}, chunk_target={self.chunk_target}"
        )

        return chunks

    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text using tiktoken.

        Args:
            text: Text to count

        Returns:
            Number of tokens
        """
        return len(self.encoding.encode(text))
