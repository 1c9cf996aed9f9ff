"""Weightless structural kernels: pass-through and residual add."""

import torch
import torch.nn as nn


class Identity(nn.Module):
    """Returns its input unchanged (token ids included)."""

    def __init__(self, hidden_size: int) -> None:
        super().__init__()
        self.hidden_size = hidden_size

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x


class ResidualAdd(nn.Module):
    """Elementwise sum of two same-shaped tensors."""

    def __init__(self, hidden_size: int) -> None:
        super().__init__()
        self.hidden_size = hidden_size

    def forward(self, x: torch.Tensor, residual: torch.Tensor) -> torch.Tensor:
        return x + residual
