"""
External operations exposed to the host.

Each function maps one host entry point onto the process pipeline. They all
accept an explicit `pipeline=` so tests and embedders can run isolated
instances; without it the lazily created process pipeline is used.
"""

import threading
from typing import List, Optional, Sequence, Tuple

from subnn_lite.core.pipeline import ModelPipeline
from subnn_lite.errors import LayerIndexError

# Layer indices cross the host boundary as uint8.
MAX_LAYER_INDEX = 255

_pipeline: Optional[ModelPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> ModelPipeline:
    """Get the process pipeline, creating it on first use (thread-safe)."""
    global _pipeline

    if _pipeline is not None:
        return _pipeline

    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = ModelPipeline()
        return _pipeline


def _resolve(pipeline: Optional[ModelPipeline]) -> ModelPipeline:
    return pipeline if pipeline is not None else get_pipeline()


# Checked after the pipeline state, so a call on an unloaded pipeline is a
# StateError whatever the index.
def _check_layer_index(layer_index: int) -> int:
    if not 0 <= layer_index <= MAX_LAYER_INDEX:
        raise LayerIndexError(
            f"Layer index {layer_index} does not fit in an unsigned byte", layer_index
        )
    return layer_index


def upload_model_chunks(
    chunk: bytes, offset: Optional[int] = None, pipeline: Optional[ModelPipeline] = None
) -> None:
    """Append one chunk of the model container."""
    _resolve(pipeline).upload(chunk, offset)


def initialize_model_pipeline(pipeline: Optional[ModelPipeline] = None) -> None:
    """Discard every uploaded, parsed and compiled artifact."""
    _resolve(pipeline).reset()


def model_bytes_to_plan(pipeline: Optional[ModelPipeline] = None) -> None:
    """Parse the uploaded bytes into a Plan."""
    _resolve(pipeline).parse()


def plan_to_running_model(pipeline: Optional[ModelPipeline] = None) -> None:
    """Compile the Plan into a RunningModel."""
    _resolve(pipeline).compile()


def word_embeddings(text: str, pipeline: Optional[ModelPipeline] = None) -> List[float]:
    """Embedding vector(s) for text."""
    return _resolve(pipeline).word_embeddings(text)


def sub_nn_compute_i64(
    layer_index: int,
    data: Sequence[int],
    shape: Sequence[int],
    pipeline: Optional[ModelPipeline] = None,
) -> Tuple[List[float], List[int]]:
    """Run a forward-pass window from layer_index on int64 input.

    Returns:
        Tuple of (float32 output data, output shape).
    """
    target = _resolve(pipeline)
    target.ready_model("run inference")
    return target.compute_i64(_check_layer_index(layer_index), data, shape)


def sub_nn_compute_f32(
    layer_index: int,
    data: Sequence[float],
    shape: Sequence[int],
    pipeline: Optional[ModelPipeline] = None,
) -> Tuple[List[float], List[int]]:
    """Run a forward-pass window from layer_index on float32 input.

    Returns:
        Tuple of (float32 output data, output shape).
    """
    target = _resolve(pipeline)
    target.ready_model("run inference")
    return target.compute_f32(_check_layer_index(layer_index), data, shape)
