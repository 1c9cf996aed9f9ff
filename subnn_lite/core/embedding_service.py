"""
Embedding service: text to vectors.

Composes an external tokenizer with the inference engine. Token ids are fed to
the embedding layer as an int64 tensor of shape [1, num_tokens] and one window
segment is executed from there.

Multi-token policy:
- "none" (default): per-token vectors, concatenated row-major
  (num_tokens * hidden_size floats)
- "mean": a single hidden_size vector, the mean over tokens
"""

import logging
from typing import List, Optional

from subnn_lite.compiler.running_model import RunningModel
from subnn_lite.config import Config, get_config
from subnn_lite.core.inference_engine import InferenceEngine
from subnn_lite.core.tokenizers import IdListTokenizer, Tokenizer
from subnn_lite.errors import InputError, UnsupportedOpError
from subnn_lite.tensor import ElementType

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Maps text to embedding vectors through a tokenizer and the engine."""

    def __init__(
        self,
        engine: InferenceEngine,
        tokenizer: Optional[Tokenizer] = None,
        config: Optional[Config] = None,
    ) -> None:
        self.engine = engine
        self.tokenizer = tokenizer or IdListTokenizer()
        self.config = config or get_config()

    def embedding_layer(self, model: RunningModel) -> int:
        """Layer index the service starts from.

        Raises:
            UnsupportedOpError: If no layer is configured and the model has no
                embedding layer.
        """
        if self.config.embedding_layer is not None:
            return self.config.embedding_layer
        if model.embedding_layer is None:
            raise UnsupportedOpError("Model has no embedding layer")
        return model.embedding_layer

    def word_embeddings(self, model: RunningModel, text: str) -> List[float]:
        """Embed text.

        Args:
            model: Ready model to run.
            text: Text handed to the tokenizer.

        Returns:
            Embedding floats under the configured pooling policy, or an empty
            list when the text yields no usable tokens.
        """
        try:
            token_ids = self.tokenizer.encode(text)
        except (TypeError, ValueError) as exc:
            logger.warning("Tokenization failed, returning no embeddings: %s", exc)
            return []
        if not token_ids:
            logger.warning("Text produced no tokens, returning no embeddings")
            return []

        start_layer = self.embedding_layer(model)
        try:
            result = self.engine.execute(
                model,
                start_layer,
                ElementType.INT64,
                token_ids,
                [1, len(token_ids)],
                max_layers=1,
            )
        except InputError as exc:
            logger.warning("Embedding lookup rejected tokens: %s", exc)
            return []

        output = result.output
        if self.config.pooling == "mean":
            pooled = output.to_torch().mean(dim=-2)
            return pooled.reshape(-1).tolist()
        return list(output.data)
