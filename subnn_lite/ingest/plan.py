"""
Plan: the parsed, graph-shaped representation of a model.

A Plan is produced by the parser and consumed by the compiler. All of its
types are frozen dataclasses holding only immutable values (tuples, bytes,
floats), so two Plans parsed from identical bytes compare equal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from subnn_lite.tensor import ElementType, shape_numel

# Input reference designating the tensor supplied by the caller.
EXTERNAL_INPUT = -1


class OpKind(Enum):
    """Closed set of layer operations, keyed by container op code."""

    EMBEDDING = 1
    MATMUL = 2
    BIAS_ADD = 3
    LAYER_NORM = 4
    GELU = 5
    ATTENTION = 6
    IDENTITY = 7
    ADD = 8

    @property
    def attr_names(self) -> Tuple[str, ...]:
        """Positional attribute names carried in the container for this op."""
        return _ATTR_NAMES.get(self, ())

    @property
    def arity(self) -> int:
        """Number of input tensors the op consumes."""
        return 2 if self is OpKind.ADD else 1


_ATTR_NAMES: Dict[OpKind, Tuple[str, ...]] = {
    OpKind.LAYER_NORM: ("eps",),
    OpKind.ATTENTION: ("num_heads", "causal"),
}


@dataclass(frozen=True)
class WeightSpec:
    """One weight tensor of a layer, as declared in the layer table.

    Attributes:
        element_type: Declared element type of the blob.
        shape: Declared dimensions of the tensor.
        offset: Absolute byte offset of the blob in the container.
        length: Byte length of the blob.
        data: The raw blob, row-major.
    """

    element_type: ElementType
    shape: Tuple[int, ...]
    offset: int
    length: int
    data: bytes

    @property
    def numel(self) -> int:
        return shape_numel(self.shape)


@dataclass(frozen=True)
class LayerSpec:
    """One operation node of the Plan.

    Attributes:
        index: Position of the layer; also the reference other layers use.
        op_kind: Operation performed by the layer.
        input_refs: Prior layer indices (or EXTERNAL_INPUT) feeding the layer.
        weights: Weight tensors in the op's positional order.
        shape: Declared output feature shape (trailing dimensions only).
        attrs: Named scalar attributes as sorted (name, value) pairs.
    """

    index: int
    op_kind: OpKind
    input_refs: Tuple[int, ...]
    weights: Tuple[WeightSpec, ...]
    shape: Tuple[int, ...]
    attrs: Tuple[Tuple[str, float], ...] = ()

    @property
    def output_ref(self) -> int:
        return self.index

    def attr(self, name: str, default: Optional[float] = None) -> Optional[float]:
        """Look up an attribute by name."""
        for key, value in self.attrs:
            if key == name:
                return value
        return default


@dataclass(frozen=True)
class Plan:
    """Ordered, topologically sorted layer graph with its weights.

    Attributes:
        version: Container format version the plan was parsed from.
        total_length: Byte length of the source container.
        layers: Layer specs in execution order.
    """

    version: int
    total_length: int
    layers: Tuple[LayerSpec, ...]

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def consumers(self, index: int) -> Tuple[int, ...]:
        """Indices of layers that read the output of layer `index`."""
        return tuple(
            layer.index for layer in self.layers if index in layer.input_refs
        )
