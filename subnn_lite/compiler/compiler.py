"""Plan compiler: binds weights and kernels, checks shapes, builds a RunningModel."""

import logging
import math
from types import MappingProxyType
from typing import Callable, Dict, List, Optional, Tuple

import torch
import torch.nn as nn

from subnn_lite.compiler.running_model import CompiledLayer, RunningModel
from subnn_lite.errors import CompileError
from subnn_lite.ingest.plan import EXTERNAL_INPUT, LayerSpec, OpKind, Plan, WeightSpec
from subnn_lite.kernels import (
    GELU,
    BiasAdd,
    EmbeddingLookup,
    Identity,
    LayerNorm,
    MatMul,
    ResidualAdd,
    SelfAttention,
)
from subnn_lite.kernels.layernorm import DEFAULT_EPS
from subnn_lite.tensor import ElementType

logger = logging.getLogger(__name__)

# (module, in_features, out_features, cost_per_row)
KernelBinding = Tuple[nn.Module, Optional[int], int, int]


def weight_to_tensor(spec: WeightSpec) -> torch.Tensor:
    """Copy a weight blob into an owned tensor of its declared shape.

    Blobs are little-endian; torch reads the host byte order, which matches
    on every platform torch ships for.
    """
    dtype = spec.element_type.torch_dtype
    if spec.numel == 0:
        return torch.empty(spec.shape, dtype=dtype)
    return torch.frombuffer(bytearray(spec.data), dtype=dtype).reshape(spec.shape)


def _check_weights(layer: LayerSpec, expected: List[Tuple[int, ...]]) -> List[torch.Tensor]:
    """Validate weight count, element type and shapes against expectations.

    Raises:
        CompileError: On any mismatch.
    """
    name = layer.op_kind.name
    if len(layer.weights) != len(expected):
        raise CompileError(
            f"Layer {layer.index}: {name} needs {len(expected)} weight tensors, "
            f"got {len(layer.weights)}",
            layer.index,
        )
    tensors = []
    for position, (spec, shape) in enumerate(zip(layer.weights, expected)):
        if spec.element_type is not ElementType.FLOAT32:
            raise CompileError(
                f"Layer {layer.index}: {name} weight {position} must be float32, "
                f"got {spec.element_type.name.lower()}",
                layer.index,
            )
        if spec.shape != shape:
            raise CompileError(
                f"Layer {layer.index}: {name} weight {position} shape mismatch: "
                f"expected {shape}, got {spec.shape}",
                layer.index,
            )
        tensors.append(weight_to_tensor(spec))
    return tensors


def _feature_size(layer: LayerSpec) -> int:
    if not layer.shape:
        raise CompileError(
            f"Layer {layer.index}: {layer.op_kind.name} declares an empty output shape",
            layer.index,
        )
    return layer.shape[-1]


def _rank(layer: LayerSpec, position: int, rank: int) -> Tuple[int, ...]:
    if position >= len(layer.weights):
        raise CompileError(
            f"Layer {layer.index}: {layer.op_kind.name} is missing weight {position}",
            layer.index,
        )
    shape = layer.weights[position].shape
    if len(shape) != rank:
        raise CompileError(
            f"Layer {layer.index}: {layer.op_kind.name} weight {position} must have "
            f"rank {rank}, got shape {shape}",
            layer.index,
        )
    return shape


def _bind_embedding(layer: LayerSpec) -> KernelBinding:
    vocab, hidden = _rank(layer, 0, 2)
    (table,) = _check_weights(layer, [(vocab, hidden)])
    return EmbeddingLookup(table), None, hidden, hidden


def _bind_matmul(layer: LayerSpec) -> KernelBinding:
    in_features, out_features = _rank(layer, 0, 2)
    (weight,) = _check_weights(layer, [(in_features, out_features)])
    return MatMul(weight), in_features, out_features, in_features * out_features


def _bind_bias_add(layer: LayerSpec) -> KernelBinding:
    (hidden,) = _rank(layer, 0, 1)
    (bias,) = _check_weights(layer, [(hidden,)])
    return BiasAdd(bias), hidden, hidden, hidden


def _bind_layer_norm(layer: LayerSpec) -> KernelBinding:
    (hidden,) = _rank(layer, 0, 1)
    gamma, beta = _check_weights(layer, [(hidden,), (hidden,)])
    eps = layer.attr("eps", DEFAULT_EPS)
    if not math.isfinite(eps) or eps <= 0:
        raise CompileError(
            f"Layer {layer.index}: eps must be positive and finite, got {eps}", layer.index
        )
    return LayerNorm(gamma, beta, eps), hidden, hidden, 4 * hidden


def _bind_attention(layer: LayerSpec) -> KernelBinding:
    hidden, _ = _rank(layer, 2, 2)
    w_qkv, b_qkv, w_out, b_out = _check_weights(
        layer, [(hidden, 3 * hidden), (3 * hidden,), (hidden, hidden), (hidden,)]
    )
    num_heads = layer.attr("num_heads")
    if (
        num_heads is None
        or not math.isfinite(num_heads)
        or num_heads != int(num_heads)
        or num_heads <= 0
    ):
        raise CompileError(
            f"Layer {layer.index}: ATTENTION needs a positive integer num_heads, got {num_heads}",
            layer.index,
        )
    causal = bool(layer.attr("causal", 1.0))
    try:
        module = SelfAttention(w_qkv, b_qkv, w_out, b_out, int(num_heads), causal)
    except ValueError as exc:
        raise CompileError(f"Layer {layer.index}: {exc}", layer.index) from exc
    return module, hidden, hidden, 4 * hidden * hidden


def _bind_weightless(factory: Callable[[int], nn.Module]) -> Callable[[LayerSpec], KernelBinding]:
    def bind(layer: LayerSpec) -> KernelBinding:
        _check_weights(layer, [])
        hidden = _feature_size(layer)
        return factory(hidden), hidden, hidden, hidden

    return bind


# Closed dispatch table: every OpKind has exactly one binder.
KERNEL_BINDERS: Dict[OpKind, Callable[[LayerSpec], KernelBinding]] = {
    OpKind.EMBEDDING: _bind_embedding,
    OpKind.MATMUL: _bind_matmul,
    OpKind.BIAS_ADD: _bind_bias_add,
    OpKind.LAYER_NORM: _bind_layer_norm,
    OpKind.GELU: _bind_weightless(GELU),
    OpKind.ATTENTION: _bind_attention,
    OpKind.IDENTITY: _bind_weightless(Identity),
    OpKind.ADD: _bind_weightless(ResidualAdd),
}


def _accepted_types(kind: OpKind) -> frozenset:
    if kind is OpKind.EMBEDDING:
        return frozenset({ElementType.INT64})
    if kind is OpKind.IDENTITY:
        return frozenset({ElementType.INT64, ElementType.FLOAT32})
    return frozenset({ElementType.FLOAT32})


class PlanCompiler:
    """
    Compiles a Plan into a RunningModel.

    The Plan is only read; a failed compile leaves it exactly as it was.
    """

    def compile(self, plan: Plan) -> RunningModel:
        """
        Compile a plan.

        Args:
            plan: Parsed, topologically ordered plan.

        Returns:
            Immutable RunningModel.

        Raises:
            CompileError: On unbound weights, shape mismatches between
                connected layers, unresolved refs, or unused outputs.
        """
        if plan.layer_count == 0:
            raise CompileError("Plan has no layers")

        layers: List[CompiledLayer] = []
        # Value kinds: "features", or "any" for the external input and identities over it
        value_kinds: Dict[int, str] = {EXTERNAL_INPUT: "any"}

        for spec in plan.layers:
            compiled = self._compile_layer(spec)
            self._check_inputs(compiled, layers, value_kinds)
            value_kinds[spec.index] = self._output_kind(compiled, value_kinds)
            layers.append(compiled)

        entry_refs = self._find_entry_points(layers)
        embedding_layer = next(
            (layer.index for layer in layers if layer.op_kind is OpKind.EMBEDDING), None
        )

        model = RunningModel(
            layers=tuple(layers),
            entry_refs=MappingProxyType(entry_refs),
            embedding_layer=embedding_layer,
        )
        logger.info(
            "Compiled %d layers, %d resumable entry points",
            model.layer_count, len(entry_refs),
        )
        return model

    def _compile_layer(self, spec: LayerSpec) -> CompiledLayer:
        binder = KERNEL_BINDERS.get(spec.op_kind)
        if binder is None:
            raise CompileError(
                f"Layer {spec.index}: no kernel for {spec.op_kind.name}", spec.index
            )
        if len(spec.input_refs) != spec.op_kind.arity:
            raise CompileError(
                f"Layer {spec.index}: {spec.op_kind.name} takes {spec.op_kind.arity} "
                f"input(s), got {len(spec.input_refs)}",
                spec.index,
            )

        module, in_features, out_features, cost_per_row = binder(spec)
        if spec.shape and spec.shape[-1] != out_features:
            raise CompileError(
                f"Layer {spec.index}: declared output shape {list(spec.shape)} does not "
                f"match {spec.op_kind.name} output features {out_features}",
                spec.index,
            )
        module.eval()

        return CompiledLayer(
            index=spec.index,
            op_kind=spec.op_kind,
            input_refs=spec.input_refs,
            module=module,
            shape=spec.shape,
            in_features=in_features,
            out_features=out_features,
            accepted_types=_accepted_types(spec.op_kind),
            cost_per_row=cost_per_row,
        )

    def _check_inputs(
        self,
        layer: CompiledLayer,
        compiled: List[CompiledLayer],
        value_kinds: Dict[int, str],
    ) -> None:
        for ref in layer.input_refs:
            if ref not in value_kinds:
                raise CompileError(
                    f"Layer {layer.index}: input ref {ref} is not defined", layer.index
                )
            kind = value_kinds[ref]
            if kind == "any":
                continue

            if layer.op_kind is OpKind.EMBEDDING:
                raise CompileError(
                    f"Layer {layer.index}: EMBEDDING needs token ids but layer "
                    f"{ref} produces features",
                    layer.index,
                )

            producer = compiled[ref]
            if producer.out_features != layer.in_features:
                raise CompileError(
                    f"Layer {layer.index}: expects {layer.in_features} input features "
                    f"but layer {ref} ({producer.op_kind.name}) produces "
                    f"{producer.out_features}",
                    layer.index,
                )

    @staticmethod
    def _output_kind(layer: CompiledLayer, value_kinds: Dict[int, str]) -> str:
        if layer.op_kind is OpKind.IDENTITY:
            return value_kinds[layer.input_refs[0]]
        return "features"

    @staticmethod
    def _find_entry_points(layers: List[CompiledLayer]) -> Dict[int, int]:
        last_use: Dict[int, int] = {}
        for layer in layers:
            for ref in layer.input_refs:
                last_use[ref] = max(last_use.get(ref, -1), layer.index)

        for layer in layers[:-1]:
            if layer.index not in last_use:
                raise CompileError(
                    f"Layer {layer.index}: output is never consumed", layer.index
                )

        entry_refs = {}
        for position in range(len(layers)):
            live = [ref for ref, last in last_use.items() if ref < position and last >= position]
            if len(live) == 1:
                entry_refs[position] = live[0]
        return entry_refs


def compile_plan(plan: Plan) -> RunningModel:
    """
    Main compilation interface.

    Args:
        plan: Parsed plan.

    Returns:
        Compiled RunningModel.
    """
    return PlanCompiler().compile(plan)
