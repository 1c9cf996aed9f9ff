"""Tests for the caller-side upload and forward-pass helpers."""

import pytest

from subnn_lite.client import run_forward, upload_model
from subnn_lite.config import Config
from subnn_lite.core.pipeline import ModelPipeline, PipelineState
from subnn_lite.errors import ResourceExhausted
from subnn_lite.tensor import ElementType, Tensor
from tests.utils.comparison import assert_tensors_close

TOKENS = [4, 0, 11]

# Estimated costs of the block fixture's segments for three tokens:
# [0, 1) = 24, [1, 4) = 1032, [4, 10) = 984, [10, 11) = 24
SPLIT_BUDGET = 1040


def _ids() -> Tensor:
    return Tensor.create(ElementType.INT64, TOKENS, [1, len(TOKENS)])


def _ready(data: bytes, config: Config, chunk_size: int = 32) -> ModelPipeline:
    pipeline = ModelPipeline(config=config)
    upload_model(pipeline, data, chunk_size)
    pipeline.parse()
    pipeline.compile()
    return pipeline


class TestUploadModel:
    """Test chunked uploads."""

    @pytest.mark.unit
    def test_chunk_count(self, embedding_identity):
        """Test the container is split into ceil(len / chunk_size) chunks."""
        data, _ = embedding_identity
        pipeline = ModelPipeline(config=Config({"upload": {"require_offsets": True}}))

        chunks = upload_model(pipeline, data, 100)

        assert chunks == -(-len(data) // 100)
        assert pipeline.uploaded_bytes == len(data)
        assert pipeline.state is PipelineState.UPLOADING

    @pytest.mark.unit
    def test_resumes_partial_upload(self, embedding_identity, test_config):
        """Test offsets continue from bytes already in the buffer."""
        data, _ = embedding_identity
        pipeline = ModelPipeline(config=test_config)
        pipeline.upload(data[:5], offset=0)

        upload_model(pipeline, data[5:], 16)
        pipeline.parse()

        assert pipeline.state is PipelineState.PARSED

    @pytest.mark.unit
    def test_invalid_chunk_size(self, test_config):
        """Test chunk_size must be positive."""
        with pytest.raises(ValueError, match="chunk_size must be positive"):
            upload_model(ModelPipeline(config=test_config), b"abc", 0)


class TestRunForward:
    """Test driving a forward pass across windows."""

    @pytest.mark.integration
    def test_reaches_end(self, block_container, test_config, unbounded_config):
        """Test the driver resumes until the model is done."""
        single = _ready(block_container, unbounded_config).run_window(0, _ids())

        result = run_forward(
            _ready(block_container, test_config),
            TOKENS,
            [1, len(TOKENS)],
            element_type=ElementType.INT64,
            max_layers=1,
        )

        assert result.done
        assert result.start_layer == 10
        assert_tensors_close(result.output.to_torch(), single.output.to_torch(), atol=1e-6)

    @pytest.mark.integration
    def test_narrows_window_on_budget(self, block_container, unbounded_config):
        """Test ResourceExhausted is recovered from by splitting the window."""
        config = Config({"engine": {"call_budget": SPLIT_BUDGET}})
        pipeline = _ready(block_container, config)

        with pytest.raises(ResourceExhausted) as exc_info:
            pipeline.run_window(0, _ids())
        assert exc_info.value.end_layer == 4

        result = run_forward(pipeline, TOKENS, [1, len(TOKENS)], element_type=ElementType.INT64)

        single = _ready(block_container, unbounded_config).run_window(0, _ids())
        assert result.done
        assert_tensors_close(result.output.to_torch(), single.output.to_torch(), atol=1e-6)

    @pytest.mark.unit
    def test_single_segment_over_budget_propagates(self, block_container):
        """Test a window that cannot be split re-raises ResourceExhausted."""
        pipeline = _ready(block_container, Config({"engine": {"call_budget": 1}}))
        with pytest.raises(ResourceExhausted) as exc_info:
            run_forward(pipeline, TOKENS, [1, len(TOKENS)], element_type=ElementType.INT64)
        assert exc_info.value.end_layer == 1
