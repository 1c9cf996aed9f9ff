"""
Caller-side helpers.

The host accepts small messages and bounded work per call, so a caller uploads
the container in offset-tagged chunks and drives a forward pass through
several windows, feeding each output back as the next input.
"""

import logging
from typing import Optional, Sequence, Union

from subnn_lite.core.inference_engine import WindowResult
from subnn_lite.core.pipeline import ModelPipeline
from subnn_lite.errors import ResourceExhausted
from subnn_lite.tensor import ElementType, Tensor

logger = logging.getLogger(__name__)


def upload_model(pipeline: ModelPipeline, data: bytes, chunk_size: int) -> int:
    """Upload a container in chunks of at most chunk_size bytes.

    Args:
        pipeline: Target pipeline (EMPTY or UPLOADING).
        data: Complete container bytes.
        chunk_size: Maximum bytes per upload call.

    Returns:
        Number of chunks sent.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    base = pipeline.uploaded_bytes
    chunks = 0
    for start in range(0, len(data), chunk_size):
        pipeline.upload(data[start:start + chunk_size], offset=base + start)
        chunks += 1
    logger.debug("Uploaded %d bytes in %d chunks", len(data), chunks)
    return chunks


def run_forward(
    pipeline: ModelPipeline,
    data: Sequence[Union[int, float]],
    shape: Sequence[int],
    element_type: ElementType = ElementType.FLOAT32,
    start_layer: int = 0,
    max_layers: Optional[int] = None,
) -> WindowResult:
    """Drive a forward pass from start_layer to the end of the model.

    When a window is rejected with ResourceExhausted, the layer limit is
    halved and the same window retried. Once the rejected window was a
    single segment there is nothing left to split and the error propagates.

    Returns:
        WindowResult of the last window.
    """
    tensor = Tensor.create(element_type, data, shape)
    layer = start_layer
    limit = max_layers

    while True:
        try:
            result = pipeline.run_window(layer, tensor, max_layers=limit)
        except ResourceExhausted as exc:
            span = exc.end_layer - layer
            if span <= 1 or pipeline.running_model.next_boundary(layer) >= exc.end_layer:
                raise
            limit = max(1, span // 2)
            logger.info(
                "Window at layer %d over budget, retrying with at most %d layers",
                layer, limit,
            )
            continue

        if result.done:
            return result
        layer, tensor = result.next_layer, result.output
