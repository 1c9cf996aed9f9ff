"""
Model pipeline: the explicit context owning upload, parse, compile and inference.

State machine:
    EMPTY --upload--> UPLOADING --upload*--> UPLOADING --parse--> PARSED
    PARSED --compile--> READY
    any state --reset--> EMPTY

Failed parse or compile calls leave the state, the buffer and the plan as
they were, so the caller can fix the input and retry.
"""

import logging
import threading
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from subnn_lite.compiler import RunningModel, compile_plan
from subnn_lite.config import Config, get_config
from subnn_lite.core.embedding_service import EmbeddingService
from subnn_lite.core.inference_engine import InferenceEngine, WindowResult
from subnn_lite.core.tokenizers import Tokenizer
from subnn_lite.errors import CompileError, ParseError, StateError
from subnn_lite.ingest import ModelBuffer, Plan, parse_container
from subnn_lite.tensor import ElementType, Tensor

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """Lifecycle stage of the model-loading process."""

    EMPTY = "empty"  # Nothing uploaded
    UPLOADING = "uploading"  # Receiving chunks
    PARSED = "parsed"  # Plan built, buffer kept until compile succeeds
    READY = "ready"  # RunningModel built, buffer and plan released


class ModelPipeline:
    """Owns the ModelBuffer, Plan and RunningModel of one process.

    State-changing operations are serialized by a lock. Inference reads the
    immutable RunningModel without locking.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        tokenizer: Optional[Tokenizer] = None,
    ) -> None:
        """Initialize an empty pipeline.

        Args:
            config: Runtime configuration (defaults to the global config).
            tokenizer: Collaborator used by word_embeddings (defaults to
                IdListTokenizer).
        """
        self.config = config or get_config()
        self.engine = InferenceEngine(self.config)
        self.embedding_service = EmbeddingService(self.engine, tokenizer, self.config)

        self._lock = threading.RLock()
        self._state = PipelineState.EMPTY
        self._buffer = ModelBuffer()
        self._plan: Optional[Plan] = None
        self._model: Optional[RunningModel] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def uploaded_bytes(self) -> int:
        """Bytes currently held in the model buffer (0 once READY)."""
        return self._buffer.received

    @property
    def plan(self) -> Optional[Plan]:
        return self._plan

    @property
    def running_model(self) -> Optional[RunningModel]:
        return self._model

    @property
    def layer_count(self) -> int:
        """Number of layers of the ready model (0 before compile)."""
        return self._model.layer_count if self._model is not None else 0

    def reset(self) -> None:
        """Discard all raw and derived state and return to EMPTY."""
        with self._lock:
            previous = self._state
            self._buffer = ModelBuffer()
            self._plan = None
            self._model = None
            self._state = PipelineState.EMPTY
        logger.info("Pipeline reset (was %s)", previous.value)

    def upload(self, chunk: bytes, offset: Optional[int] = None) -> None:
        """Append a chunk to the model buffer.

        Args:
            chunk: Next piece of the container.
            offset: Byte position of the chunk; checked when given (and
                required when the config demands offsets).

        Raises:
            StateError: If the pipeline has advanced past UPLOADING.
            ChunkOrderError: If the offset leaves a gap or overlap.
        """
        with self._lock:
            self._require("upload model chunks", PipelineState.EMPTY, PipelineState.UPLOADING)
            self._buffer.append(bytes(chunk), offset, require_offset=self.config.require_offsets)
            if self._state is PipelineState.EMPTY:
                self._transition(PipelineState.UPLOADING)

    def parse(self) -> None:
        """Decode the buffer into a Plan.

        Raises:
            StateError: If the pipeline is not UPLOADING.
            ParseError: If the container is malformed; the buffer is kept.
        """
        with self._lock:
            self._require("parse the model", PipelineState.UPLOADING)
            try:
                plan = parse_container(self._buffer.snapshot())
            except ParseError as exc:
                logger.warning("Parse failed, staying in %s: %s", self._state.value, exc)
                raise
            self._plan = plan
            self._transition(PipelineState.PARSED)

    def compile(self) -> None:
        """Compile the Plan into a RunningModel.

        Raises:
            StateError: If the pipeline is not PARSED.
            CompileError: If the plan cannot be compiled; the plan and buffer
                are kept.
        """
        with self._lock:
            self._require("compile the plan", PipelineState.PARSED)
            try:
                model = compile_plan(self._plan)
            except CompileError as exc:
                logger.warning("Compile failed, staying in %s: %s", self._state.value, exc)
                raise
            self._model = model
            self._buffer = ModelBuffer()
            self._plan = None
            self._transition(PipelineState.READY)

    def run_window(
        self,
        start_layer: int,
        tensor: Tensor,
        max_layers: Optional[int] = None,
    ) -> WindowResult:
        """Run one forward-pass window and report where to resume.

        Raises:
            StateError: If the pipeline is not READY.
        """
        model = self.ready_model("run inference")
        return self.engine.run(model, start_layer, tensor, max_layers=max_layers)

    def compute_i64(
        self,
        start_layer: int,
        data: Sequence[int],
        shape: Sequence[int],
        max_layers: Optional[int] = None,
    ) -> Tuple[List[float], List[int]]:
        """Run a window from int64 input; returns (float32 data, shape)."""
        return self._compute(start_layer, ElementType.INT64, data, shape, max_layers)

    def compute_f32(
        self,
        start_layer: int,
        data: Sequence[float],
        shape: Sequence[int],
        max_layers: Optional[int] = None,
    ) -> Tuple[List[float], List[int]]:
        """Run a window from float32 input; returns (float32 data, shape)."""
        return self._compute(start_layer, ElementType.FLOAT32, data, shape, max_layers)

    def word_embeddings(self, text: str) -> List[float]:
        """Embed text with the ready model.

        Raises:
            StateError: If the pipeline is not READY.
        """
        model = self.ready_model("compute word embeddings")
        return self.embedding_service.word_embeddings(model, text)

    def _compute(
        self,
        start_layer: int,
        element_type: ElementType,
        data: Sequence,
        shape: Sequence[int],
        max_layers: Optional[int],
    ) -> Tuple[List[float], List[int]]:
        model = self.ready_model("run inference")
        result = self.engine.execute(
            model, start_layer, element_type, data, shape, max_layers=max_layers
        )
        return list(result.output.data), list(result.output.shape)

    def ready_model(self, operation: str) -> RunningModel:
        """The RunningModel, for callers that must check readiness first.

        Raises:
            StateError: If the pipeline is not READY.
        """
        model = self._model
        if model is None:
            raise StateError(operation, self._state.value)
        return model

    def _require(self, operation: str, *allowed: PipelineState) -> None:
        if self._state not in allowed:
            logger.warning("Rejected %s in state %s", operation, self._state.value)
            raise StateError(operation, self._state.value)

    def _transition(self, new_state: PipelineState) -> None:
        logger.info("Pipeline %s -> %s", self._state.value, new_state.value)
        self._state = new_state
