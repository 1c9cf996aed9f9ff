"""
Core runtime module.

Provides the main API and orchestrates all components:
- ModelPipeline: Upload/parse/compile state machine and inference entry points
- InferenceEngine: Bounded, resumable forward-pass windows
- EmbeddingService: Text to embedding vectors
- Tokenizer adapters for the embedding service
"""

from subnn_lite.core.embedding_service import EmbeddingService
from subnn_lite.core.inference_engine import InferenceEngine, WindowResult
from subnn_lite.core.pipeline import ModelPipeline, PipelineState
from subnn_lite.core.tokenizers import HuggingFaceTokenizer, IdListTokenizer, Tokenizer

__all__ = [
    "EmbeddingService",
    "InferenceEngine",
    "WindowResult",
    "ModelPipeline",
    "PipelineState",
    "HuggingFaceTokenizer",
    "IdListTokenizer",
    "Tokenizer",
]
