"""
Matrix multiply and bias-add kernels.

Weights use the [in_features, out_features] row-major layout of the container,
so the projection is `x @ W` with no transpose.
"""

import torch
import torch.nn as nn


class MatMul(nn.Module):
    """Projection of the last dimension: [..., in] -> [..., out].

    Attributes:
        in_features: Size of the input feature dimension.
        out_features: Size of the output feature dimension.
        weight: Weight matrix of shape [in_features, out_features].
    """

    def __init__(self, weight: torch.Tensor) -> None:
        super().__init__()

        self.in_features, self.out_features = weight.shape
        self.weight = nn.Parameter(weight, requires_grad=False)

    def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
        """Project hidden states of shape [..., in_features] to [..., out_features]."""
        return torch.matmul(hidden_states, self.weight)


class BiasAdd(nn.Module):
    """Broadcast add of a bias vector over the last dimension."""

    def __init__(self, bias: torch.Tensor) -> None:
        super().__init__()

        self.hidden_size = bias.shape[0]
        self.bias = nn.Parameter(bias, requires_grad=False)

    def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
        return hidden_states + self.bias
