"""
Binary model container layout.

The container is produced offline by the partitioning tool and arrives here in
chunks. All integers are little-endian.

Layout:
    Header      <4sHHIQ  magic, version, reserved, layer count, total length
    Layer table one entry per layer:
                  <HBBBB   op code, input count, weight count, attr count, out rank
                  <Q * r   output feature shape
                  <i * n   input refs (-1 = external input)
                  <d * a   attributes, positional per op
                  per weight: <BB element type and rank, <Q * rank dims,
                              <QQ absolute offset and byte length of the blob
    Weight data raw blobs, row-major, in the declared element type
"""

import struct
from dataclasses import dataclass
from typing import List, Tuple

from subnn_lite.errors import ParseError

MAGIC = b"SBNN"
VERSION = 1
SUPPORTED_VERSIONS = (VERSION,)

HEADER = struct.Struct("<4sHHIQ")
LAYER_ENTRY = struct.Struct("<HBBBB")
WEIGHT_ENTRY = struct.Struct("<BB")
WEIGHT_EXTENT = struct.Struct("<QQ")
DIM = struct.Struct("<Q")
REF = struct.Struct("<i")
ATTR = struct.Struct("<d")


@dataclass(frozen=True)
class Header:
    magic: bytes
    version: int
    reserved: int
    layer_count: int
    total_length: int


@dataclass(frozen=True)
class RawWeight:
    """Weight entry exactly as written in the table (codes not yet resolved)."""

    type_code: int
    shape: Tuple[int, ...]
    offset: int
    length: int


@dataclass(frozen=True)
class RawLayer:
    """Layer table entry exactly as written (op code not yet resolved)."""

    op_code: int
    shape: Tuple[int, ...]
    input_refs: Tuple[int, ...]
    attrs: Tuple[float, ...]
    weights: Tuple[RawWeight, ...]


def peek_total_length(buffer: bytes) -> int:
    """Return the declared total length, or -1 if the header is incomplete."""
    if len(buffer) < HEADER.size:
        return -1
    return HEADER.unpack_from(buffer, 0)[4]


def read_header(buffer: bytes) -> Header:
    """Decode the fixed header.

    Raises:
        ParseError: If the buffer is shorter than a header.
    """
    if len(buffer) < HEADER.size:
        raise ParseError(
            f"Container truncated: {len(buffer)} bytes is shorter than the "
            f"{HEADER.size}-byte header"
        )
    return Header(*HEADER.unpack_from(buffer, 0))


class _Cursor:
    """Sequential struct reader over the layer table."""

    def __init__(self, buffer: bytes, offset: int):
        self.buffer = buffer
        self.offset = offset

    def read(self, fmt: struct.Struct, what: str) -> tuple:
        try:
            values = fmt.unpack_from(self.buffer, self.offset)
        except struct.error as exc:
            raise ParseError(
                f"Layer table truncated while reading {what} at byte {self.offset}"
            ) from exc
        self.offset += fmt.size
        return values

    def read_many(self, fmt: struct.Struct, count: int, what: str) -> Tuple:
        return tuple(self.read(fmt, what)[0] for _ in range(count))


def read_layer_table(buffer: bytes, layer_count: int) -> Tuple[List[RawLayer], int]:
    """Decode the layer table that follows the header.

    Args:
        buffer: Complete container bytes.
        layer_count: Number of entries declared in the header.

    Returns:
        Tuple of (raw layer entries, byte offset where the table ends).

    Raises:
        ParseError: If the table runs past the end of the buffer.
    """
    cursor = _Cursor(buffer, HEADER.size)
    layers = []

    for index in range(layer_count):
        what = f"layer {index}"
        op_code, n_inputs, n_weights, n_attrs, rank = cursor.read(LAYER_ENTRY, what)
        shape = cursor.read_many(DIM, rank, f"{what} shape")
        refs = cursor.read_many(REF, n_inputs, f"{what} input refs")
        attrs = cursor.read_many(ATTR, n_attrs, f"{what} attributes")

        weights = []
        for w in range(n_weights):
            w_what = f"{what} weight {w}"
            type_code, w_rank = cursor.read(WEIGHT_ENTRY, w_what)
            w_shape = cursor.read_many(DIM, w_rank, f"{w_what} shape")
            offset, length = cursor.read(WEIGHT_EXTENT, f"{w_what} extent")
            weights.append(RawWeight(type_code, w_shape, offset, length))

        layers.append(RawLayer(op_code, shape, refs, attrs, tuple(weights)))

    return layers, cursor.offset
