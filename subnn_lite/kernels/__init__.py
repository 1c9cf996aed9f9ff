"""
Inference kernels, one module per supported operation.

Components:
- EmbeddingLookup: Token id to vector table lookup
- MatMul, BiasAdd: Projection and bias
- LayerNorm: Layer normalization
- GELU: Designated nonlinearity
- SelfAttention: Multi-head self-attention block
- Identity, ResidualAdd: Structural pass-through and residual sum
"""

from subnn_lite.kernels.activation import GELU
from subnn_lite.kernels.attention import SelfAttention, compute_attention
from subnn_lite.kernels.elementwise import Identity, ResidualAdd
from subnn_lite.kernels.embedding import EmbeddingLookup
from subnn_lite.kernels.layernorm import LayerNorm
from subnn_lite.kernels.linear import BiasAdd, MatMul

__all__ = [
    "GELU",
    "SelfAttention",
    "compute_attention",
    "Identity",
    "ResidualAdd",
    "EmbeddingLookup",
    "LayerNorm",
    "BiasAdd",
    "MatMul",
]
