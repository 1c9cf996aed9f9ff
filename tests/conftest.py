"""
Pytest configuration and shared fixtures for subnn-lite tests.

This module provides reusable fixtures for testing, including:
- Runtime configurations (default and unbounded windows)
- Fixture model containers written by the test-side container builder
- Pipelines loaded to READY
"""

import os
from typing import Callable, Optional, Tuple

import pytest
import torch

from subnn_lite.config import Config
from subnn_lite.core.pipeline import ModelPipeline
from tests.utils.container_builder import embedding_identity_model, transformer_block_model

# Force CPU-only testing by disabling CUDA
os.environ["CUDA_VISIBLE_DEVICES"] = ""


@pytest.fixture
def test_config() -> Config:
    """Default configuration with DEBUG logging."""
    return Config({"logging": {"level": "DEBUG"}})


@pytest.fixture
def unbounded_config() -> Config:
    """Configuration whose windows always run to the end of the model."""
    return Config({"engine": {"max_layers_per_call": 0, "window_budget": 0}})


@pytest.fixture(scope="session")
def embedding_identity() -> Tuple[bytes, torch.Tensor]:
    """
    10 x 4 embedding table followed by an identity layer.

    Returns:
        Tuple of (container bytes, embedding table)
    """
    return embedding_identity_model(vocab_size=10, hidden_size=4)


@pytest.fixture(scope="session")
def block_container() -> bytes:
    """Embedding plus one transformer block (11 layers, hidden size 8)."""
    return transformer_block_model()


@pytest.fixture
def load_pipeline(test_config: Config) -> Callable[..., ModelPipeline]:
    """
    Factory loading container bytes into a fresh pipeline and compiling it.

    Usage:
        pipeline = load_pipeline(data)
        pipeline = load_pipeline(data, config=Config(...), chunk_size=7)
    """

    def _load(
        data: bytes, config: Optional[Config] = None, chunk_size: Optional[int] = None
    ) -> ModelPipeline:
        pipeline = ModelPipeline(config=config or test_config)
        step = chunk_size or len(data) or 1
        for start in range(0, len(data), step):
            pipeline.upload(data[start:start + step])
        pipeline.parse()
        pipeline.compile()
        return pipeline

    return _load
