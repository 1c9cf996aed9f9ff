"""
Multi-head self-attention kernel.

This module implements the attention block of GPT-2 style checkpoints:
- A fused Q/K/V projection with bias ([hidden, 3 * hidden] weight)
- Scaled dot-product attention per head, optionally causal
- Output projection with bias

The block expects inputs of shape [..., seq_len, hidden_size]; all leading
dimensions are treated as independent sequences.
"""

import torch
import torch.nn as nn


def compute_attention(
    query: torch.Tensor,
    key: torch.Tensor,
    value: torch.Tensor,
    causal: bool = True,
) -> torch.Tensor:
    """Compute scaled dot-product attention.

    Args:
        query: Query tensor of shape [batch_size, num_heads, seq_len, head_dim].
        key: Key tensor of shape [batch_size, num_heads, seq_len, head_dim].
        value: Value tensor of shape [batch_size, num_heads, seq_len, head_dim].
        causal: Mask out positions after the query position.

    Returns:
        Attention output of shape [batch_size, num_heads, seq_len, head_dim].
    """
    head_dim = query.shape[-1]
    seq_len = query.shape[-2]

    # Compute attention scores
    scores = torch.matmul(query, key.transpose(-2, -1)) / (head_dim ** 0.5)

    if causal:
        mask = torch.ones(seq_len, seq_len, dtype=torch.bool).triu(diagonal=1)
        scores = scores.masked_fill(mask, float("-inf"))

    attn_weights = torch.softmax(scores, dim=-1)

    return torch.matmul(attn_weights, value)


class SelfAttention(nn.Module):
    """Multi-head self-attention with fused QKV projection.

    Attributes:
        hidden_size: Model dimension.
        num_heads: Number of attention heads.
        head_dim: Dimension of each attention head.
        causal: Whether the attention mask is causal.
        w_qkv: Fused projection weight of shape [hidden_size, 3 * hidden_size].
        b_qkv: Fused projection bias of shape [3 * hidden_size].
        w_out: Output projection weight of shape [hidden_size, hidden_size].
        b_out: Output projection bias of shape [hidden_size].
    """

    def __init__(
        self,
        w_qkv: torch.Tensor,
        b_qkv: torch.Tensor,
        w_out: torch.Tensor,
        b_out: torch.Tensor,
        num_heads: int,
        causal: bool = True,
    ) -> None:
        """Initialize SelfAttention.

        Args:
            w_qkv: Fused Q/K/V weight, [hidden_size, 3 * hidden_size].
            b_qkv: Fused Q/K/V bias, [3 * hidden_size].
            w_out: Output weight, [hidden_size, hidden_size].
            b_out: Output bias, [hidden_size].
            num_heads: Number of heads; must divide hidden_size.
            causal: Apply a causal mask.

        Raises:
            ValueError: If hidden_size is not divisible by num_heads.
        """
        super().__init__()

        self.hidden_size = w_out.shape[0]
        if num_heads <= 0 or self.hidden_size % num_heads != 0:
            raise ValueError(
                f"hidden_size ({self.hidden_size}) must be divisible by "
                f"num_heads ({num_heads})"
            )
        self.num_heads = num_heads
        self.head_dim = self.hidden_size // num_heads
        self.causal = causal

        self.w_qkv = nn.Parameter(w_qkv, requires_grad=False)
        self.b_qkv = nn.Parameter(b_qkv, requires_grad=False)
        self.w_out = nn.Parameter(w_out, requires_grad=False)
        self.b_out = nn.Parameter(b_out, requires_grad=False)

    def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
        """Forward pass of self-attention.

        Args:
            hidden_states: Input of shape [..., seq_len, hidden_size]; a 1-D
                input is treated as a single position.

        Returns:
            Output tensor of the same shape as the input.
        """
        single_position = hidden_states.dim() == 1
        if single_position:
            hidden_states = hidden_states.unsqueeze(0)

        *leading, seq_len, _ = hidden_states.shape
        x = hidden_states.reshape(-1, seq_len, self.hidden_size)
        batch_size = x.shape[0]

        # 1. Fused Q/K/V projection
        qkv = torch.matmul(x, self.w_qkv) + self.b_qkv
        q, k, v = qkv.split(self.hidden_size, dim=-1)

        # 2. Split heads: [batch_size, num_heads, seq_len, head_dim]
        q = q.reshape(batch_size, seq_len, self.num_heads, self.head_dim).transpose(1, 2)
        k = k.reshape(batch_size, seq_len, self.num_heads, self.head_dim).transpose(1, 2)
        v = v.reshape(batch_size, seq_len, self.num_heads, self.head_dim).transpose(1, 2)

        # 3. Attention and head merge
        attn = compute_attention(q, k, v, causal=self.causal)
        attn = attn.transpose(1, 2).reshape(batch_size, seq_len, self.hidden_size)

        # 4. Output projection
        output = torch.matmul(attn, self.w_out) + self.b_out

        output = output.reshape(*leading, seq_len, self.hidden_size)
        if single_position:
            output = output.squeeze(0)
        return output
