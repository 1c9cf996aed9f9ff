"""
Flat tensor value type exchanged across inference calls.

A Tensor is what crosses the host boundary: an element type, a flat tuple of
elements and a shape. Kernels work on torch tensors, so conversion in both
directions lives here.
"""

import math
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple, Union

import torch

from subnn_lite.errors import ElementTypeError, ShapeError


class ElementType(Enum):
    """Element types of the container format and of inference inputs."""

    FLOAT32 = 1
    INT64 = 2

    @property
    def itemsize(self) -> int:
        """Size of one element in bytes."""
        return 4 if self is ElementType.FLOAT32 else 8

    @property
    def torch_dtype(self) -> torch.dtype:
        """Matching torch dtype."""
        return torch.float32 if self is ElementType.FLOAT32 else torch.int64

    @classmethod
    def from_torch(cls, dtype: torch.dtype) -> "ElementType":
        if dtype == torch.int64:
            return cls.INT64
        if dtype == torch.float32:
            return cls.FLOAT32
        raise ValueError(f"Unsupported torch dtype {dtype}")


def is_integral(value: Union[int, float]) -> bool:
    """Whether value is an integer or a float with no fractional part."""
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Integral):
        return True
    return isinstance(value, float) and value.is_integer()


def shape_numel(shape: Sequence[int]) -> int:
    """Product of a shape (1 for the empty shape)."""
    return math.prod(shape)


@dataclass(frozen=True)
class Tensor:
    """Flat numeric buffer plus the shape describing it.

    Attributes:
        element_type: Element type of every entry in data.
        data: Flattened elements in row-major order.
        shape: Dimension sizes; their product equals len(data).
    """

    element_type: ElementType
    data: Tuple[Union[int, float], ...]
    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        if any(dim < 0 for dim in self.shape):
            raise ShapeError(f"Shape {list(self.shape)} has a negative dimension")
        expected = shape_numel(self.shape)
        if expected != len(self.data):
            raise ShapeError(
                f"Shape {list(self.shape)} describes {expected} elements, "
                f"got {len(self.data)}"
            )

    @classmethod
    def create(
        cls,
        element_type: ElementType,
        data: Sequence[Union[int, float]],
        shape: Sequence[int],
    ) -> "Tensor":
        """Build a Tensor from caller-supplied sequences, validating the shape.

        Raises:
            ShapeError: If a dimension is negative or not integral, or the
                element count does not match the shape.
            ElementTypeError: If int64 data holds a non-integral value.
        """
        for dim in shape:
            if not is_integral(dim):
                raise ShapeError(f"Shape {list(shape)} has a non-integral dimension {dim!r}")
        tensor = cls(element_type, tuple(data), tuple(int(dim) for dim in shape))
        if element_type is not ElementType.INT64:
            return tensor
        for value in tensor.data:
            if not is_integral(value):
                raise ElementTypeError(f"int64 data contains non-integral value {value!r}")
        return cls(element_type, tuple(int(value) for value in tensor.data), tensor.shape)

    def to_torch(self) -> torch.Tensor:
        """Materialize as a torch tensor with the declared shape."""
        flat = torch.tensor(self.data, dtype=self.element_type.torch_dtype)
        return flat.reshape(self.shape)

    @classmethod
    def from_torch(cls, tensor: torch.Tensor) -> "Tensor":
        """Capture a torch tensor as a flat float32 Tensor.

        Inference results are always reported as float32, whatever dtype the
        last kernel produced.
        """
        as_float = tensor.detach().to(torch.float32).contiguous()
        return cls(
            ElementType.FLOAT32,
            tuple(as_float.reshape(-1).tolist()),
            tuple(as_float.shape),
        )
