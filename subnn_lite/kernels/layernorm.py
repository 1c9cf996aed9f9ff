"""
Layer normalization kernel.

Formula: LayerNorm(x) = (x - mean(x)) * rsqrt(var(x) + eps) * gamma + beta

where:
- mean(x), var(x): mean and biased variance over the last dimension
- rsqrt: reciprocal square root (1 / sqrt(x))
- eps: small constant to prevent division by zero
- gamma, beta: per-feature scale and shift loaded from the container
"""

import torch
import torch.nn as nn

DEFAULT_EPS = 1e-5


class LayerNorm(nn.Module):
    """
    Layer normalization over the last dimension.

    Args:
        gamma: Scale of shape (hidden_size,)
        beta: Shift of shape (hidden_size,)
        eps: Small constant for numerical stability (default: 1e-5)
    """

    def __init__(self, gamma: torch.Tensor, beta: torch.Tensor, eps: float = DEFAULT_EPS) -> None:
        super().__init__()
        self.hidden_size = gamma.shape[0]
        self.eps = eps
        self.weight = nn.Parameter(gamma, requires_grad=False)
        self.bias = nn.Parameter(beta, requires_grad=False)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Apply layer normalization to input tensor.

        Args:
            x: Input tensor of shape [..., hidden_size]

        Returns:
            Normalized tensor of same shape as input
        """
        mean = torch.mean(x, dim=-1, keepdim=True)
        centered = x - mean
        variance = torch.mean(centered * centered, dim=-1, keepdim=True)

        x_normalized = centered * torch.rsqrt(variance + self.eps)

        return x_normalized * self.weight + self.bias
