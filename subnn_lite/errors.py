"""
Exception types for the model pipeline.

Every failure raised by the pipeline, the engine or the embedding service is a
SubnnError, so hosts can map them to stable error codes in one place.
"""

from typing import Optional


class SubnnError(Exception):
    """Base exception for all pipeline and inference errors."""

    def __init__(self, message: str, layer_index: Optional[int] = None):
        self.message = message
        self.layer_index = layer_index
        super().__init__(message)


class StateError(SubnnError):
    """Raised when an operation is not valid for the current pipeline state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while pipeline is {state}")
        self.operation = operation
        self.state = state


class ChunkOrderError(SubnnError):
    """Raised when an offset-tagged chunk would leave a gap or overlap."""

    def __init__(self, expected_offset: int, offset: Optional[int]):
        if offset is None:
            reason = "offset is required"
        elif offset > expected_offset:
            reason = f"gap of {offset - expected_offset} bytes"
        else:
            reason = f"overlap of {expected_offset - offset} bytes"
        super().__init__(
            f"Chunk rejected at offset {offset}, expected {expected_offset}: {reason}"
        )
        self.expected_offset = expected_offset
        self.offset = offset


class ParseError(SubnnError):
    """Raised when the model container is malformed."""


class CompileError(SubnnError):
    """Raised when a plan cannot be turned into a running model."""


class LayerIndexError(SubnnError, IndexError):
    """Raised when a layer index is out of range or not a resumable entry point."""


class InputError(SubnnError, ValueError):
    """Base class for inference inputs the model cannot accept."""


class ShapeError(InputError):
    """Raised when input data is inconsistent with its declared shape."""


class ElementTypeError(ShapeError):
    """Raised when the input element type does not suit the start layer."""


class TokenRangeError(InputError):
    """Raised when a token id is not a valid row of the embedding table."""


class UnsupportedOpError(SubnnError):
    """Raised when a layer carries a dispatch tag with no kernel."""


class ResourceExhausted(SubnnError):
    """Raised when a call would exceed the host's per-call compute budget."""

    def __init__(self, estimated_cost: int, budget: int, start_layer: int, end_layer: int):
        super().__init__(
            f"Window [{start_layer}, {end_layer}) needs ~{estimated_cost} ops, "
            f"call budget is {budget}",
            start_layer,
        )
        self.estimated_cost = estimated_cost
        self.budget = budget
        self.end_layer = end_layer


# Stable codes for host-side error reporting. Subclasses are listed before
# their parents so the first isinstance match is the most specific.
ERROR_CODE_MAP = {
    StateError: 1001,
    ChunkOrderError: 1002,
    ParseError: 1003,
    CompileError: 1004,
    LayerIndexError: 1005,
    ElementTypeError: 1007,
    ShapeError: 1006,
    TokenRangeError: 1008,
    UnsupportedOpError: 1009,
    ResourceExhausted: 1010,
    SubnnError: 1099,
}


def error_code(exc: BaseException) -> int:
    """Return the reporting code for an exception (1099 for unknown ones)."""
    for exc_type, code in ERROR_CODE_MAP.items():
        if isinstance(exc, exc_type):
            return code
    return ERROR_CODE_MAP[SubnnError]
