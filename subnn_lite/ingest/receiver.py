"""ModelBuffer for reassembling an uploaded model from chunks."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from subnn_lite.errors import ChunkOrderError
from subnn_lite.ingest.container import peek_total_length

logger = logging.getLogger(__name__)


@dataclass
class ModelBuffer:
    """Raw container bytes under construction.

    Chunks are appended in the order the caller delivers them. Without offsets
    nothing is reordered or deduplicated; with offsets, gaps and overlaps are
    rejected before the buffer is touched.

    Attributes:
        data: Bytes received so far.
        chunks_received: Number of accepted chunks.
    """

    data: bytearray = field(default_factory=bytearray)
    chunks_received: int = 0

    @property
    def received(self) -> int:
        """Number of bytes received so far."""
        return len(self.data)

    @property
    def declared_length(self) -> Optional[int]:
        """Total length from the container header, once the header has arrived."""
        length = peek_total_length(self.data)
        return None if length < 0 else length

    @property
    def is_complete(self) -> bool:
        """True when the received bytes match the declared total length."""
        declared = self.declared_length
        return declared is not None and declared == self.received

    def append(self, chunk: bytes, offset: Optional[int] = None, require_offset: bool = False) -> None:
        """Append a chunk to the end of the buffer.

        Args:
            chunk: Bytes to append.
            offset: Position the caller believes the chunk starts at. When
                given it must equal the bytes received so far.
            require_offset: Reject chunks that carry no offset.

        Raises:
            ChunkOrderError: If the offset is missing while required, or would
                leave a gap or overlap.
        """
        if offset is None and require_offset:
            raise ChunkOrderError(self.received, None)
        if offset is not None and offset != self.received:
            raise ChunkOrderError(self.received, offset)

        self.data.extend(chunk)
        self.chunks_received += 1
        logger.debug(
            "Chunk %d accepted: %d bytes (%d/%s received)",
            self.chunks_received,
            len(chunk),
            self.received,
            self.declared_length if self.declared_length is not None else "?",
        )

    def snapshot(self) -> bytes:
        """Immutable copy of the current contents."""
        return bytes(self.data)

    def clear(self) -> None:
        """Drop all received bytes."""
        self.data = bytearray()
        self.chunks_received = 0
