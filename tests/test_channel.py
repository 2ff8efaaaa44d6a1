"""Unit tests for Channel."""

import numpy as np
import pytest

from clear_deep_network import Channel, Dense, Nonlinearity, Pooling, PreconditionViolation, Shape, Tensor


class TestChannelValidation:
    """Test source resolution and shape walking."""

    def test_single_source(self, static_stage):
        stage = static_stage(a=(np.zeros(12), [4, 3]))
        channel = Channel("c", ["a"], [Pooling('maximum', [2, 3])])
        assert channel.validate(stage, 0) == []
        assert channel.input_shape == Shape([4, 3])
        assert channel.output_shape == Shape([2, 1])

    def test_no_operators_passes_input_through(self, static_stage):
        stage = static_stage(a=(np.arange(3.0), [3]))
        channel = Channel("c", "a")
        assert channel.validate(stage, 0) == []
        np.testing.assert_array_equal(channel.forward(stage), [0.0, 1.0, 2.0])

    def test_unresolved_source(self, static_stage):
        stage = static_stage(a=(np.zeros(3), [3]))
        channel = Channel("c", ["a", "missing"])
        errors = channel.validate(stage, 2)
        assert len(errors) == 1
        assert errors[0].layer_index == 2
        assert errors[0].channel_id == "c"
        assert "missing" in str(errors[0])
        assert channel.output_shape is None

    def test_incompatible_sources(self, static_stage):
        stage = static_stage(a=(np.zeros(6), [2, 3]), b=(np.zeros(9), [3, 3]))
        errors = Channel("c", ["a", "b"]).validate(stage, 0)
        assert len(errors) == 1
        assert "cannot be added" in str(errors[0])

    def test_no_sources(self, static_stage):
        assert len(Channel("c", []).validate(static_stage(), 0)) == 1

    def test_empty_result(self, static_stage):
        stage = static_stage(a=(np.zeros(2), [2]))
        errors = Channel("c", ["a"], [Pooling('average', [4])]).validate(stage, 0)
        assert len(errors) == 1
        assert "empty result" in str(errors[0])

    def test_forward_without_validation(self, static_stage):
        with pytest.raises(PreconditionViolation):
            Channel("c", ["a"]).forward(static_stage(a=(np.zeros(2), [2])))


class TestChannelComputation:
    """Test forward concatenation and backward gradient slicing."""

    def test_concatenates_sources_in_order(self, static_stage):
        stage = static_stage(a=(np.arange(6.0), [2, 3]), b=(np.array([10.0, 11.0]), [2]))
        channel = Channel("c", ["a", "b"])
        channel.validate(stage, 0)
        assert channel.input_shape == Shape([2, 4])
        np.testing.assert_array_equal(channel.forward(stage), [0, 1, 2, 3, 4, 5, 10, 11])

    def test_output_is_read_only(self, static_stage):
        stage = static_stage(a=(np.zeros(3), [3]))
        channel = Channel("c", ["a"], [Nonlinearity('tanh')])
        channel.validate(stage, 0)
        output = channel.forward(stage)
        with pytest.raises(ValueError):
            output[0] = 1.0

    def test_gradient_for_each_source(self, static_stage):
        stage = static_stage(a=(np.zeros(6), [2, 3]), b=(np.zeros(2), [2]))
        channel = Channel("c", ["a", "b"])
        channel.validate(stage, 0)
        channel.forward(stage)
        channel.backward(np.arange(8.0))
        np.testing.assert_array_equal(channel.gradient_for_source("a"), np.arange(6.0))
        np.testing.assert_array_equal(channel.gradient_for_source("b"), [6.0, 7.0])
        assert channel.gradient_for_source("z") is None

    def test_repeated_source_gradients_are_summed(self, static_stage):
        stage = static_stage(a=(np.zeros(2), [2]))
        channel = Channel("c", ["a", "a"])
        channel.validate(stage, 0)
        np.testing.assert_array_equal(channel.forward(stage), np.zeros(4))
        channel.backward(np.array([1.0, 2.0, 3.0, 4.0]))
        np.testing.assert_array_equal(channel.gradient_for_source("a"), [4.0, 6.0])

    def test_backward_runs_operators_in_reverse(self, static_stage):
        stage = static_stage(a=(np.array([0.5, -0.5]), [2]))
        weights = np.array([[2.0, 0.0, 0.0],
                            [0.0, 3.0, 0.0]])
        channel = Channel("c", ["a"], [Dense('none', 2, num_inputs=2, initial_weights=weights),
                                       Nonlinearity('tanh')])
        channel.validate(stage, 0)
        output = channel.forward(stage)
        gradient = channel.backward(np.ones(2))
        np.testing.assert_allclose(gradient, [2.0 * (1 - output[0] ** 2), 3.0 * (1 - output[1] ** 2)])
        np.testing.assert_array_equal(channel.input_gradient, gradient)

    def test_get_operator_result(self, static_stage):
        stage = static_stage(a=(np.arange(4.0), [4]))
        channel = Channel("c", ["a"], [Pooling('maximum', [2]), Nonlinearity('none')])
        channel.validate(stage, 0)
        channel.forward(stage)
        result = channel.get_operator_result(0)
        assert isinstance(result, Tensor)
        np.testing.assert_array_equal(result.values, [1.0, 3.0])
        assert result.shape == Shape([2])


class TestChannelBuilder:
    """Test operator editing."""

    def test_edits_bump_revision(self):
        channel = Channel("c", ["a"])
        revision = channel.revision
        channel.add_operator(Nonlinearity('tanh'))
        channel.add_operator(Nonlinearity('relu'))
        channel.replace_operator(0, Nonlinearity('sigmoid'))
        removed = channel.remove_operator(1)
        assert removed.details() == 'relu'
        assert channel.revision == revision + 4
        assert channel.num_operators == 1
        assert channel.get_operator(0).details() == 'sigmoid'

    def test_uses_source(self):
        channel = Channel("c", ["a", "b"])
        assert channel.uses_source("b")
        assert not channel.uses_source("c")

    def test_bad_operator_index(self):
        with pytest.raises(IndexError):
            Channel("c", ["a"]).get_operator(0)
