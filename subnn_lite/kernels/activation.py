"""
Nonlinearity kernel.

The designated nonlinearity is GELU with the tanh approximation, the variant
GPT-2 style checkpoints are trained with:

    GELU(x) = 0.5 * x * (1 + tanh(sqrt(2 / pi) * (x + 0.044715 * x^3)))
"""

import torch
import torch.nn as nn
import torch.nn.functional as F


class GELU(nn.Module):
    """Elementwise tanh-approximated GELU."""

    def __init__(self, hidden_size: int) -> None:
        super().__init__()
        self.hidden_size = hidden_size

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return F.gelu(x, approximate="tanh")
