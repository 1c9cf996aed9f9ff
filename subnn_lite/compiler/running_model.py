"""
RunningModel: the compiled, immutable, directly executable model.

Besides the compiled layers, a RunningModel records where execution may be
resumed. Position k is a resumable entry point when exactly one value made
before k (a layer output or the external input) is still needed at or after
k; the caller's tensor then stands in for that value.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple

import torch.nn as nn

from subnn_lite.ingest.plan import OpKind
from subnn_lite.tensor import ElementType

# Operations that take one input; ADD is the only binary op.
UNARY_OPS = frozenset(kind for kind in OpKind if kind.arity == 1)
BINARY_OPS = frozenset(kind for kind in OpKind if kind.arity == 2)


@dataclass(frozen=True)
class CompiledLayer:
    """One executable layer.

    Attributes:
        index: Position in the model; also the ref consumers use.
        op_kind: Dispatch tag selecting how the kernel is invoked.
        input_refs: Values the kernel consumes, in order.
        module: Kernel owning its weights (frozen, eval mode).
        shape: Output feature shape as declared in the container.
        in_features: Expected size of the input's last dimension, None for
            token id inputs.
        out_features: Size of the output's last dimension.
        accepted_types: Element types the layer accepts as a window input.
        cost_per_row: Estimated multiply-accumulates per input row.
    """

    index: int
    op_kind: OpKind
    input_refs: Tuple[int, ...]
    module: nn.Module = field(compare=False, repr=False)
    shape: Tuple[int, ...] = ()
    in_features: Optional[int] = None
    out_features: Optional[int] = None
    accepted_types: FrozenSet[ElementType] = frozenset({ElementType.FLOAT32})
    cost_per_row: int = 0

    def estimate_cost(self, rows: int, seq_len: int) -> int:
        """Estimated work for `rows` input rows in sequences of `seq_len`."""
        cost = rows * self.cost_per_row
        if self.op_kind is OpKind.ATTENTION:
            # score and weighted-sum products grow with sequence length
            cost += 2 * rows * seq_len * (self.out_features or 0)
        return cost


@dataclass(frozen=True)
class RunningModel:
    """Compiled model: indexed layers plus resumption metadata.

    Attributes:
        layers: Compiled layers 0..N-1.
        entry_refs: Maps each resumable entry index to the single live value
            the caller's tensor replaces.
        embedding_layer: Index of the first embedding layer, if any.
    """

    layers: Tuple[CompiledLayer, ...]
    entry_refs: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))
    embedding_layer: Optional[int] = None

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    @property
    def boundaries(self) -> FrozenSet[int]:
        """Layer indices at which a forward-pass window may start."""
        return frozenset(self.entry_refs)

    def is_entry_point(self, index: int) -> bool:
        return index in self.entry_refs

    def next_boundary(self, index: int) -> int:
        """First entry point after `index`, or layer_count if none remains."""
        for candidate in range(index + 1, self.layer_count):
            if candidate in self.entry_refs:
                return candidate
        return self.layer_count
