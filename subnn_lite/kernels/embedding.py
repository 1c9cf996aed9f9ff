"""
Token embedding lookup kernel.

This module implements the embedding layer that converts token IDs to dense
vectors by selecting rows of a [vocab_size, hidden_size] table.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F

from subnn_lite.errors import TokenRangeError


class EmbeddingLookup(nn.Module):
    """Embedding table lookup.

    Attributes:
        vocab_size: Number of rows in the table.
        hidden_size: Dimension of each embedding vector.
        weight: Embedding table of shape [vocab_size, hidden_size].
    """

    def __init__(self, table: torch.Tensor) -> None:
        """Initialize EmbeddingLookup.

        Args:
            table: Float32 tensor of shape [vocab_size, hidden_size]. The
                module takes ownership of it.
        """
        super().__init__()

        self.vocab_size, self.hidden_size = table.shape
        self.weight = nn.Parameter(table, requires_grad=False)

    def forward(self, input_ids: torch.Tensor) -> torch.Tensor:
        """Forward pass of embedding lookup.

        Args:
            input_ids: int64 token IDs of any shape.

        Returns:
            Embedding tensor of shape [*input_ids.shape, hidden_size].

        Raises:
            TokenRangeError: If an id is not a valid row index.
        """
        if input_ids.numel() > 0:
            low = int(input_ids.min())
            high = int(input_ids.max())
            if low < 0 or high >= self.vocab_size:
                bad = low if low < 0 else high
                raise TokenRangeError(
                    f"Token id {bad} out of range for embedding table with "
                    f"{self.vocab_size} rows"
                )
        return F.embedding(input_ids, self.weight)
