"""Tests for plan compilation and resumable entry points."""

from dataclasses import replace

import pytest
import torch

from subnn_lite.compiler import compile_plan
from subnn_lite.compiler.compiler import weight_to_tensor
from subnn_lite.errors import CompileError
from subnn_lite.ingest import EXTERNAL_INPUT, OpKind, Plan, parse_container
from subnn_lite.tensor import ElementType
from tests.utils.container_builder import (
    ADD,
    MATMUL,
    ContainerBuilder,
    embedding_identity_model,
    seeded,
    tensor_weight,
    transformer_block_model,
)


def _with_attrs(builder: ContainerBuilder, **attrs: float) -> Plan:
    """Parse a single-layer container, then swap in attribute values."""
    plan = parse_container(builder.build())
    layer = replace(plan.layers[0], attrs=tuple(sorted(attrs.items())))
    return replace(plan, layers=(layer,))


def _compile(builder: ContainerBuilder):
    return compile_plan(parse_container(builder.build()))


class TestCompileValidPlans:
    """Test compiled structure of well-formed plans."""

    @pytest.mark.unit
    def test_embedding_identity(self):
        """Test features, entry points and embedding layer of the small model."""
        data, _ = embedding_identity_model()
        model = compile_plan(parse_container(data))

        assert model.layer_count == 2
        assert model.embedding_layer == 0
        assert dict(model.entry_refs) == {0: EXTERNAL_INPUT, 1: 0}
        assert model.layers[0].in_features is None
        assert model.layers[0].out_features == 4
        assert model.layers[0].accepted_types == frozenset({ElementType.INT64})
        assert model.layers[1].accepted_types == frozenset(
            {ElementType.INT64, ElementType.FLOAT32}
        )

    @pytest.mark.unit
    def test_transformer_block_entry_points(self):
        """Test positions inside residual spans are not entry points."""
        model = compile_plan(parse_container(transformer_block_model()))

        assert model.layer_count == 11
        assert model.boundaries == frozenset({0, 1, 4, 10})
        assert dict(model.entry_refs) == {0: EXTERNAL_INPUT, 1: 0, 4: 3, 10: 9}
        assert not model.is_entry_point(2)

    @pytest.mark.unit
    def test_next_boundary(self):
        """Test next_boundary skips to the following entry point or the end."""
        model = compile_plan(parse_container(transformer_block_model()))
        assert model.next_boundary(0) == 1
        assert model.next_boundary(1) == 4
        assert model.next_boundary(4) == 10
        assert model.next_boundary(10) == 11

    @pytest.mark.unit
    def test_kernels_frozen(self):
        """Test compiled kernels are in eval mode with frozen parameters."""
        model = compile_plan(parse_container(transformer_block_model()))
        for layer in model.layers:
            assert not layer.module.training
            assert all(not p.requires_grad for p in layer.module.parameters())

    @pytest.mark.unit
    def test_attention_cost_grows_with_sequence(self):
        """Test attention cost estimates include the sequence length term."""
        model = compile_plan(parse_container(transformer_block_model()))
        attention = model.layers[2]
        assert attention.op_kind is OpKind.ATTENTION
        assert attention.estimate_cost(4, 4) > attention.estimate_cost(4, 1)
        assert model.layers[5].estimate_cost(4, 4) == model.layers[5].estimate_cost(4, 1)

    @pytest.mark.unit
    def test_plan_untouched(self):
        """Test compiling leaves the plan equal to a fresh parse."""
        data = transformer_block_model()
        plan = parse_container(data)
        compile_plan(plan)
        assert plan == parse_container(data)

    @pytest.mark.unit
    def test_identity_passes_ids_to_embedding(self):
        """Test an identity over the external input may feed an embedding."""
        builder = ContainerBuilder()
        ids = builder.identity(1, EXTERNAL_INPUT)
        builder.embedding(seeded(10, 4), ids)
        model = _compile(builder)
        assert model.embedding_layer == 1
        assert dict(model.entry_refs) == {0: EXTERNAL_INPUT, 1: 0}

    @pytest.mark.unit
    def test_weight_to_tensor_owns_copy(self):
        """Test weight tensors decode blobs into writable float32 tensors."""
        table = seeded(3, 2)
        builder = ContainerBuilder()
        builder.embedding(table)
        spec = parse_container(builder.build()).layers[0].weights[0]

        tensor = weight_to_tensor(spec)

        assert tensor.dtype == torch.float32
        assert torch.equal(tensor, table)
        tensor.zero_()
        assert torch.equal(weight_to_tensor(spec), table)


class TestCompileErrors:
    """Test plans the compiler must reject."""

    @pytest.mark.unit
    def test_empty_plan(self):
        """Test a plan with no layers is rejected."""
        with pytest.raises(CompileError, match="no layers"):
            compile_plan(Plan(version=1, total_length=20, layers=()))

    @pytest.mark.unit
    def test_unconsumed_output(self):
        """Test a non-final layer whose output is never read is rejected."""
        builder = ContainerBuilder()
        builder.identity(4, EXTERNAL_INPUT)
        builder.identity(4, EXTERNAL_INPUT)
        with pytest.raises(CompileError, match="Layer 0: output is never consumed"):
            _compile(builder)

    @pytest.mark.unit
    def test_wrong_arity(self):
        """Test ADD with a single input is rejected."""
        builder = ContainerBuilder()
        builder.add(ADD, [EXTERNAL_INPUT], shape=[4])
        with pytest.raises(CompileError, match="takes 2 input"):
            _compile(builder)

    @pytest.mark.unit
    def test_missing_weight(self):
        """Test MATMUL without a weight tensor is rejected."""
        builder = ContainerBuilder()
        builder.add(MATMUL, [EXTERNAL_INPUT], shape=[4])
        with pytest.raises(CompileError, match="missing weight 0"):
            _compile(builder)

    @pytest.mark.unit
    def test_int64_weight(self):
        """Test kernels only bind float32 weights."""
        builder = ContainerBuilder()
        builder.add(MATMUL, [EXTERNAL_INPUT], [tensor_weight(torch.ones(2, 2, dtype=torch.int64))], [2])
        with pytest.raises(CompileError, match="must be float32"):
            _compile(builder)

    @pytest.mark.unit
    def test_layer_norm_shape_mismatch(self):
        """Test gamma and beta must share the hidden size."""
        builder = ContainerBuilder()
        builder.layer_norm(torch.ones(4), torch.zeros(3), EXTERNAL_INPUT)
        with pytest.raises(CompileError, match="shape mismatch"):
            _compile(builder)

    @pytest.mark.unit
    def test_layer_norm_non_positive_eps(self):
        """Test eps must be positive."""
        builder = ContainerBuilder()
        builder.layer_norm(torch.ones(4), torch.zeros(4), EXTERNAL_INPUT, eps=0.0)
        with pytest.raises(CompileError, match="eps must be positive"):
            _compile(builder)

    @pytest.mark.unit
    def test_feature_mismatch(self):
        """Test a consumer expecting other features than its producer makes."""
        builder = ContainerBuilder()
        embed = builder.embedding(seeded(10, 4))
        builder.matmul(seeded(6, 2), embed)
        with pytest.raises(CompileError, match="expects 6 input features"):
            _compile(builder)

    @pytest.mark.unit
    def test_add_inputs_must_agree(self):
        """Test both ADD inputs must carry the same feature size."""
        builder = ContainerBuilder()
        embed = builder.embedding(seeded(10, 4))
        wide = builder.matmul(seeded(4, 6), embed)
        builder.residual(4, embed, wide)
        with pytest.raises(CompileError, match="Layer 2: expects 4 input features"):
            _compile(builder)

    @pytest.mark.unit
    def test_embedding_needs_ids(self):
        """Test an embedding cannot consume feature vectors."""
        builder = ContainerBuilder()
        first = builder.embedding(seeded(10, 4))
        builder.embedding(seeded(10, 4), first)
        with pytest.raises(CompileError, match="EMBEDDING needs token ids"):
            _compile(builder)

    @pytest.mark.unit
    def test_declared_shape_mismatch(self):
        """Test the declared output shape must match the kernel's output."""
        builder = ContainerBuilder()
        builder.add(MATMUL, [EXTERNAL_INPUT], [tensor_weight(seeded(4, 5))], [7])
        with pytest.raises(CompileError, match="declared output shape"):
            _compile(builder)

    @pytest.mark.unit
    def test_attention_heads_must_divide(self):
        """Test num_heads must divide the hidden size."""
        h = 8
        builder = ContainerBuilder()
        builder.attention(
            seeded(h, 3 * h), seeded(3 * h), seeded(h, h), seeded(h), 3, EXTERNAL_INPUT
        )
        with pytest.raises(CompileError, match="divisible"):
            _compile(builder)

    @pytest.mark.unit
    @pytest.mark.parametrize("num_heads", [float("inf"), float("nan")])
    def test_attention_non_finite_heads(self, num_heads):
        """Test a non-finite num_heads is a CompileError, not a conversion error."""
        h = 4
        builder = ContainerBuilder()
        builder.attention(
            seeded(h, 3 * h), seeded(3 * h), seeded(h, h), seeded(h), 2, EXTERNAL_INPUT
        )
        plan = _with_attrs(builder, num_heads=num_heads, causal=1.0)
        with pytest.raises(CompileError, match="positive integer num_heads"):
            compile_plan(plan)

    @pytest.mark.unit
    @pytest.mark.parametrize("eps", [float("nan"), float("inf")])
    def test_layer_norm_non_finite_eps(self, eps):
        """Test a NaN or infinite eps is rejected."""
        builder = ContainerBuilder()
        builder.layer_norm(torch.ones(4), torch.zeros(4), EXTERNAL_INPUT)
        with pytest.raises(CompileError, match="eps must be positive and finite"):
            compile_plan(_with_attrs(builder, eps=eps))
