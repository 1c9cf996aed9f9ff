"""
Core inference engine: bounded, resumable forward-pass windows.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import torch

from subnn_lite.compiler.running_model import BINARY_OPS, UNARY_OPS, CompiledLayer, RunningModel
from subnn_lite.config import Config, get_config
from subnn_lite.errors import (
    ElementTypeError,
    InputError,
    LayerIndexError,
    ResourceExhausted,
    ShapeError,
    UnsupportedOpError,
)
from subnn_lite.tensor import ElementType, Tensor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowResult:
    """Outcome of one forward-pass window.

    Attributes:
        output: Float32 result; the input of the next call.
        start_layer: First layer executed.
        next_layer: Layer to resume from (layer_count once the pass is done).
        estimated_cost: Estimated multiply-accumulates spent in the window.
        layer_count: Number of layers in the model.
    """

    output: Tensor
    start_layer: int
    next_layer: int
    estimated_cost: int
    layer_count: int

    @property
    def done(self) -> bool:
        """True when the window reached the end of the model."""
        return self.next_layer >= self.layer_count


class InferenceEngine:
    """Executes bounded windows of a RunningModel.

    The engine holds no per-call state: each window is computed from the
    immutable model and the caller's tensor alone, so identical inputs give
    bit-identical outputs and any call can be replayed.
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize inference engine.

        Args:
            config: Runtime configuration (defaults to the global config).
                Applies the kernel thread count and deterministic mode.
        """
        self.config = config or get_config()

        torch.set_num_threads(self.config.num_threads)
        if self.config.deterministic:
            torch.use_deterministic_algorithms(True)

    def execute(
        self,
        model: RunningModel,
        start_layer: int,
        element_type: ElementType,
        data: Sequence[Union[int, float]],
        shape: Sequence[int],
        max_layers: Optional[int] = None,
    ) -> WindowResult:
        """Validate raw caller input and run one window.

        Checks run in order: layer index, then input shape, then suitability
        of the input for the start layer.

        Raises:
            LayerIndexError: If start_layer is out of range or not resumable.
            ShapeError: If len(data) != product(shape) or features mismatch.
            ElementTypeError: If the start layer cannot take this element type.
            TokenRangeError: If an embedding id is out of range.
            ResourceExhausted: If the window exceeds the call budget.
        """
        self.check_start_layer(model, start_layer)
        tensor = Tensor.create(element_type, data, shape)
        return self.run(model, start_layer, tensor, max_layers=max_layers)

    @staticmethod
    def check_start_layer(model: RunningModel, start_layer: int) -> None:
        """Ensure start_layer indexes the model and is a resumable entry point."""
        if not 0 <= start_layer < model.layer_count:
            raise LayerIndexError(
                f"Layer index {start_layer} out of range for model with "
                f"{model.layer_count} layers",
                start_layer,
            )
        if not model.is_entry_point(start_layer):
            raise LayerIndexError(
                f"Layer {start_layer} is not a resumable entry point; valid entry "
                f"points: {sorted(model.boundaries)}",
                start_layer,
            )

    def run(
        self,
        model: RunningModel,
        start_layer: int,
        tensor: Tensor,
        max_layers: Optional[int] = None,
    ) -> WindowResult:
        """Run one forward-pass window starting at start_layer.

        Args:
            model: Compiled model.
            start_layer: Resumable entry point to begin at.
            tensor: Input standing in for the value live at start_layer.
            max_layers: Per-call layer limit overriding the configured one.

        Returns:
            WindowResult with the output tensor and the layer to resume from.
        """
        self.check_start_layer(model, start_layer)
        if max_layers is not None and max_layers < 1:
            raise InputError(f"max_layers must be >= 1, got {max_layers}")

        entry_ref = model.entry_refs[start_layer]
        self._check_input(model, start_layer, entry_ref, tensor)

        rows, seq_len = self._rows(tensor)
        end_layer, cost = self.plan_window(model, start_layer, rows, seq_len, max_layers)

        values: Dict[int, torch.Tensor] = {entry_ref: tensor.to_torch()}
        with torch.no_grad():
            for index in range(start_layer, end_layer):
                layer = model.layers[index]
                args = [values[ref] for ref in layer.input_refs]
                values[index] = self._dispatch(layer, args)

        output = Tensor.from_torch(values[end_layer - 1])
        logger.debug(
            "Window [%d, %d) executed, ~%d ops, output shape %s",
            start_layer, end_layer, cost, list(output.shape),
        )
        result = WindowResult(
            output=output,
            start_layer=start_layer,
            next_layer=end_layer,
            estimated_cost=cost,
            layer_count=model.layer_count,
        )
        return result

    def plan_window(
        self,
        model: RunningModel,
        start_layer: int,
        rows: int,
        seq_len: int,
        max_layers: Optional[int] = None,
    ) -> Tuple[int, int]:
        """Choose where a window starting at start_layer stops.

        Whole segments between entry points are added while the layer count
        stays within the layer limit and the estimated cost within the window
        budget. The first segment is always taken.

        Returns:
            Tuple of (exclusive end layer, estimated cost).

        Raises:
            ResourceExhausted: If the chosen window exceeds the call budget.
        """
        limit = self.config.max_layers_per_call if max_layers is None else max_layers
        budget = self.config.window_budget

        end = model.next_boundary(start_layer)
        cost = self._segment_cost(model, start_layer, end, rows, seq_len)
        while end < model.layer_count:
            next_end = model.next_boundary(end)
            segment = self._segment_cost(model, end, next_end, rows, seq_len)
            if limit and next_end - start_layer > limit:
                break
            if budget and cost + segment > budget:
                break
            end, cost = next_end, cost + segment

        if self.config.call_budget and cost > self.config.call_budget:
            logger.warning(
                "Window [%d, %d) estimated at %d ops exceeds call budget %d",
                start_layer, end, cost, self.config.call_budget,
            )
            raise ResourceExhausted(cost, self.config.call_budget, start_layer, end)
        return end, cost

    @staticmethod
    def _segment_cost(model: RunningModel, start: int, end: int, rows: int, seq_len: int) -> int:
        return sum(model.layers[i].estimate_cost(rows, seq_len) for i in range(start, end))

    @staticmethod
    def _rows(tensor: Tensor) -> Tuple[int, int]:
        """Number of independent rows and sequence length of an input."""
        shape = tensor.shape
        if tensor.element_type is ElementType.INT64:
            return len(tensor.data), (shape[-1] if shape else 1)
        features = shape[-1] if shape else 1
        rows = len(tensor.data) // features if features else 0
        return rows, (shape[-2] if len(shape) >= 2 else 1)

    @staticmethod
    def _check_input(model: RunningModel, start_layer: int, entry_ref: int, tensor: Tensor) -> None:
        consumers: List[CompiledLayer] = [
            layer for layer in model.layers[start_layer:] if entry_ref in layer.input_refs
        ]
        for layer in consumers:
            if tensor.element_type not in layer.accepted_types:
                accepted = sorted(t.name.lower() for t in layer.accepted_types)
                raise ElementTypeError(
                    f"Layer {layer.index} ({layer.op_kind.name}) accepts {accepted} input, "
                    f"got {tensor.element_type.name.lower()}",
                    layer.index,
                )
            if tensor.element_type is ElementType.INT64 or layer.in_features is None:
                continue
            if not tensor.shape or tensor.shape[-1] != layer.in_features:
                raise ShapeError(
                    f"Layer {layer.index} ({layer.op_kind.name}) expects "
                    f"{layer.in_features} features in the last dimension, got shape "
                    f"{list(tensor.shape)}",
                    layer.index,
                )

    @staticmethod
    def _dispatch(layer: CompiledLayer, args: List[torch.Tensor]) -> torch.Tensor:
        try:
            if layer.op_kind in UNARY_OPS:
                return layer.module(args[0])
            if layer.op_kind in BINARY_OPS:
                return layer.module(args[0], args[1])
        except RuntimeError as exc:
            raise ShapeError(
                f"Layer {layer.index} ({layer.op_kind.name}) rejected its input: {exc}",
                layer.index,
            ) from exc
        raise UnsupportedOpError(
            f"Layer {layer.index}: no dispatch for {layer.op_kind!r}", layer.index
        )
