"""
Model ingestion: chunk reassembly and container parsing.

Provides:
- ModelBuffer: Accumulates uploaded chunks
- parse_container: Decodes container bytes into a Plan
- Plan, LayerSpec, WeightSpec, OpKind: Parsed model representation
"""

from subnn_lite.ingest.receiver import ModelBuffer
from subnn_lite.ingest.parser import parse_container
from subnn_lite.ingest.plan import EXTERNAL_INPUT, LayerSpec, OpKind, Plan, WeightSpec

__all__ = [
    "ModelBuffer",
    "parse_container",
    "EXTERNAL_INPUT",
    "LayerSpec",
    "OpKind",
    "Plan",
    "WeightSpec",
]
