"""Test utilities for subnn_lite."""

from tests.utils.comparison import assert_output_close, assert_tensors_close
from tests.utils.container_builder import (
    ContainerBuilder,
    embedding_identity_model,
    seeded,
    tensor_weight,
    transformer_block_model,
)

__all__ = [
    # Comparison utilities
    "assert_tensors_close",
    "assert_output_close",
    # Container fixtures
    "ContainerBuilder",
    "embedding_identity_model",
    "seeded",
    "tensor_weight",
    "transformer_block_model",
]
