"""
subnn_lite: staged model ingestion and resumable inference for constrained hosts.

This package provides:
- Chunked upload and reassembly of a binary model container
- Parsing of the container into a Plan and compilation into a RunningModel
- Forward passes executed in bounded, resumable layer windows
- Text embeddings through an external tokenizer
"""

__version__ = "0.1.0"
__author__ = "subnn-lite contributors"

from subnn_lite.config import Config, configure_logging, get_config, initialize_config, load_config
from subnn_lite.core import ModelPipeline, PipelineState, WindowResult
from subnn_lite.errors import SubnnError
from subnn_lite.tensor import ElementType, Tensor

__all__ = [
    "Config",
    "configure_logging",
    "get_config",
    "initialize_config",
    "load_config",
    "ModelPipeline",
    "PipelineState",
    "WindowResult",
    "SubnnError",
    "ElementType",
    "Tensor",
]
