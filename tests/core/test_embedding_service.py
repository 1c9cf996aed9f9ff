"""Tests for EmbeddingService and word_embeddings through the pipeline."""

import logging

import pytest
import torch

from subnn_lite.compiler import compile_plan
from subnn_lite.config import Config
from subnn_lite.core.embedding_service import EmbeddingService
from subnn_lite.core.inference_engine import InferenceEngine
from subnn_lite.core.pipeline import ModelPipeline
from subnn_lite.core.tokenizers import HuggingFaceTokenizer
from subnn_lite.errors import UnsupportedOpError
from subnn_lite.ingest import parse_container
from tests.utils.container_builder import ContainerBuilder, embedding_identity_model


class FakeHFTokenizer:
    """Stands in for a transformers tokenizer: words map to fixed ids."""

    vocab = {"hello": 3, "world": 1, "again": 7}

    def encode(self, text, add_special_tokens=True):
        return [self.vocab[word] for word in text.split()]

    def convert_ids_to_tokens(self, ids):
        inverse = {v: k for k, v in self.vocab.items()}
        return [inverse[i] for i in ids]


@pytest.fixture
def model():
    data, _ = embedding_identity_model()
    return compile_plan(parse_container(data))


@pytest.fixture
def table():
    return embedding_identity_model()[1]


def _service(config: Config = None, tokenizer=None) -> EmbeddingService:
    config = config or Config()
    return EmbeddingService(InferenceEngine(config), tokenizer, config)


class TestWordEmbeddings:
    """Test text to vector mapping."""

    @pytest.mark.unit
    def test_single_token(self, model, table):
        """Test one token returns its table row."""
        assert _service().word_embeddings(model, "[3]") == table[3].tolist()

    @pytest.mark.unit
    def test_per_token_vectors_concatenated(self, model, table):
        """Test the default policy concatenates per-token vectors in order."""
        result = _service().word_embeddings(model, "[3, 1]")
        assert result == table[3].tolist() + table[1].tolist()

    @pytest.mark.unit
    def test_mean_pooling(self, model, table):
        """Test mean pooling returns one hidden-size vector."""
        service = _service(Config({"embedding": {"pooling": "mean"}}))

        result = service.word_embeddings(model, "[3, 1]")

        expected = torch.stack([table[3], table[1]]).mean(dim=0)
        assert len(result) == 4
        assert torch.allclose(torch.tensor(result), expected)

    @pytest.mark.unit
    def test_stops_after_embedding_layer(self, model):
        """Test the service runs only the embedding segment."""
        service = _service()
        layer = service.embedding_layer(model)
        assert layer == 0
        assert model.next_boundary(layer) == 1

    @pytest.mark.unit
    def test_configured_layer(self, model):
        """Test embedding.layer overrides the model's embedding layer."""
        service = _service(Config({"embedding": {"layer": 0}}))
        assert service.embedding_layer(model) == 0


class TestDegradedResults:
    """Test inputs that produce no embeddings."""

    @pytest.mark.unit
    @pytest.mark.parametrize("text", ["", "[]", "  "])
    def test_no_tokens(self, model, text, caplog):
        """Test text without tokens returns an empty list."""
        caplog.set_level(logging.WARNING, logger="subnn_lite")
        assert _service().word_embeddings(model, text) == []
        assert "no tokens" in caplog.text

    @pytest.mark.unit
    def test_tokenizer_failure(self, model, caplog):
        """Test unparseable text returns an empty list."""
        caplog.set_level(logging.WARNING, logger="subnn_lite")
        assert _service().word_embeddings(model, "[3, x]") == []
        assert "Tokenization failed" in caplog.text

    @pytest.mark.unit
    def test_none_text(self, model):
        """Test None is treated as a tokenizer failure."""
        assert _service().word_embeddings(model, None) == []

    @pytest.mark.unit
    def test_out_of_vocabulary(self, model, caplog):
        """Test ids outside the table return an empty list."""
        caplog.set_level(logging.WARNING, logger="subnn_lite")
        assert _service().word_embeddings(model, "[42]") == []
        assert "rejected tokens" in caplog.text

    @pytest.mark.unit
    def test_model_without_embedding(self):
        """Test a model lacking an embedding layer is unsupported."""
        builder = ContainerBuilder()
        builder.identity(4, -1)
        model = compile_plan(parse_container(builder.build()))
        with pytest.raises(UnsupportedOpError, match="no embedding layer"):
            _service().word_embeddings(model, "[1]")


@pytest.mark.integration
def test_pipeline_with_huggingface_adapter(test_config, table):
    """Test word_embeddings through a pipeline using a wrapped tokenizer."""
    data, _ = embedding_identity_model()
    pipeline = ModelPipeline(config=test_config, tokenizer=HuggingFaceTokenizer(FakeHFTokenizer()))
    pipeline.upload(data)
    pipeline.parse()
    pipeline.compile()

    result = pipeline.word_embeddings("hello world")

    assert result == table[3].tolist() + table[1].tolist()
