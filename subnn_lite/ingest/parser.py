"""
Model parser: container bytes to Plan.

This module decodes the binary container into a Plan and validates it. The
checks run in a fixed order:
1. Header magic and version are recognized
2. Declared total length matches the received byte count
3. Layer table decodes without running past the buffer
4. Every weight blob's byte length equals product(shape) * element size and
   lies inside the weight region
5. Every input ref names the external input or a prior layer
6. Every op code is recognized, with no more attributes than the op names,
   and every attribute is finite

Parsing is a pure function of the bytes: the same buffer always yields an
equal Plan.
"""

import logging
import math
from typing import List, Tuple

from subnn_lite.errors import ParseError
from subnn_lite.ingest.container import (
    MAGIC,
    SUPPORTED_VERSIONS,
    Header,
    RawLayer,
    read_header,
    read_layer_table,
)
from subnn_lite.ingest.plan import EXTERNAL_INPUT, LayerSpec, OpKind, Plan, WeightSpec
from subnn_lite.tensor import ElementType, shape_numel

logger = logging.getLogger(__name__)


def validate_header(header: Header, buffer_length: int) -> None:
    """Check magic, version and declared length against the buffer.

    Raises:
        ParseError: If the header is not recognized or the declared total
            length differs from the number of bytes received.
    """
    if header.magic != MAGIC:
        raise ParseError(f"Unrecognized format tag {header.magic!r}, expected {MAGIC!r}")
    if header.version not in SUPPORTED_VERSIONS:
        raise ParseError(
            f"Unsupported container version {header.version}, "
            f"supported: {list(SUPPORTED_VERSIONS)}"
        )
    if header.reserved != 0:
        raise ParseError(f"Reserved header field must be 0, got {header.reserved}")
    if header.total_length != buffer_length:
        raise ParseError(
            f"Declared total length {header.total_length} does not match "
            f"{buffer_length} received bytes"
        )


def validate_weight_extents(
    raw_layers: List[RawLayer], data_start: int, total_length: int
) -> None:
    """Check every weight blob's size and placement.

    Raises:
        ParseError: If an element type code is unknown, a byte length does not
            match its shape, or a blob falls outside the weight region.
    """
    for index, raw in enumerate(raw_layers):
        for w, weight in enumerate(raw.weights):
            where = f"layer {index} weight {w}"
            try:
                element_type = ElementType(weight.type_code)
            except ValueError:
                raise ParseError(
                    f"{where}: unknown element type code {weight.type_code}"
                ) from None

            expected = shape_numel(weight.shape) * element_type.itemsize
            if weight.length != expected:
                raise ParseError(
                    f"{where}: byte length {weight.length} does not match shape "
                    f"{list(weight.shape)} ({expected} bytes of {element_type.name.lower()})"
                )
            if weight.offset < data_start or weight.offset + weight.length > total_length:
                raise ParseError(
                    f"{where}: blob [{weight.offset}, {weight.offset + weight.length}) "
                    f"lies outside the weight region [{data_start}, {total_length})"
                )


def validate_input_refs(raw_layers: List[RawLayer]) -> None:
    """Check that the layers form a DAG with no forward references.

    Raises:
        ParseError: If a ref names the layer itself, a later layer, or a
            negative index other than the external input.
    """
    for index, raw in enumerate(raw_layers):
        for ref in raw.input_refs:
            if ref != EXTERNAL_INPUT and not 0 <= ref < index:
                raise ParseError(
                    f"Layer {index} input ref {ref} does not name the external "
                    f"input or a prior layer"
                )


def resolve_op_kinds(raw_layers: List[RawLayer]) -> List[OpKind]:
    """Map op codes to OpKind and check attribute counts and values.

    Raises:
        ParseError: If an op code is unknown, carries too many attributes or
            has a NaN or infinite attribute.
    """
    kinds = []
    for index, raw in enumerate(raw_layers):
        try:
            kind = OpKind(raw.op_code)
        except ValueError:
            raise ParseError(f"Layer {index}: unknown op code {raw.op_code}") from None
        if len(raw.attrs) > len(kind.attr_names):
            raise ParseError(
                f"Layer {index}: {kind.name} takes at most {len(kind.attr_names)} "
                f"attributes, got {len(raw.attrs)}"
            )
        for name, value in zip(kind.attr_names, raw.attrs):
            if not math.isfinite(value):
                raise ParseError(
                    f"Layer {index}: {kind.name} attribute {name} must be finite, got {value}"
                )
        kinds.append(kind)
    return kinds


def _build_layer(buffer: bytes, index: int, raw: RawLayer, kind: OpKind) -> LayerSpec:
    weights = tuple(
        WeightSpec(
            element_type=ElementType(w.type_code),
            shape=w.shape,
            offset=w.offset,
            length=w.length,
            data=bytes(buffer[w.offset:w.offset + w.length]),
        )
        for w in raw.weights
    )
    attrs: Tuple[Tuple[str, float], ...] = tuple(
        sorted(zip(kind.attr_names, raw.attrs))
    )
    return LayerSpec(
        index=index,
        op_kind=kind,
        input_refs=raw.input_refs,
        weights=weights,
        shape=raw.shape,
        attrs=attrs,
    )


def parse_container(buffer: bytes) -> Plan:
    """Decode and validate a complete container.

    Args:
        buffer: The reassembled container bytes.

    Returns:
        Plan with layers in container order.

    Raises:
        ParseError: On the first validation failure, in the documented order.
    """
    header = read_header(buffer)
    validate_header(header, len(buffer))

    raw_layers, table_end = read_layer_table(buffer, header.layer_count)
    validate_weight_extents(raw_layers, table_end, header.total_length)
    validate_input_refs(raw_layers)
    kinds = resolve_op_kinds(raw_layers)

    layers = tuple(
        _build_layer(buffer, index, raw, kind)
        for index, (raw, kind) in enumerate(zip(raw_layers, kinds))
    )
    logger.debug(
        "Parsed container v%d: %d layers, %d bytes",
        header.version, len(layers), header.total_length,
    )
    return Plan(version=header.version, total_length=header.total_length, layers=layers)
