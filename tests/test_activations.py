"""Unit tests for the activation functions."""

import numpy as np
import pytest

from clear_deep_network.activations import ACTIVATION_FUNCTIONS, Linear, Sigmoid, SoftSign, Softmax, Tanh, get_activation

ELEMENTWISE = ['none', 'tanh', 'sigmoid', 'sigmoid_cross_entropy', 'relu', 'soft_sign']


class TestActivationDerivatives:
    """backward(g, h) must match a central difference of g * f(x)."""

    @pytest.mark.parametrize("name", ELEMENTWISE)
    def test_elementwise_derivative(self, name):
        activation = get_activation(name)
        # keep away from the ReLU kink
        x = np.array([-2.0, -0.7, -0.3, 0.4, 0.9, 1.8])
        gradient = np.array([0.5, -1.0, 2.0, 1.5, -0.25, 1.0])
        epsilon = 1e-6
        numeric = gradient * (activation.forward(x + epsilon) - activation.forward(x - epsilon)) / (2 * epsilon)
        analytic = activation.backward(gradient, activation.forward(x))
        np.testing.assert_allclose(analytic, numeric, atol=1e-6)

    def test_softmax_jacobian_vector_product(self):
        softmax = Softmax()
        x = np.array([0.3, -1.2, 2.0, 0.1])
        gradient = np.array([1.0, -0.5, 0.25, 2.0])
        epsilon = 1e-6
        numeric = np.zeros_like(x)
        for i in range(x.size):
            plus, minus = x.copy(), x.copy()
            plus[i] += epsilon
            minus[i] -= epsilon
            numeric[i] = (np.dot(gradient, softmax.forward(plus)) - np.dot(gradient, softmax.forward(minus))) / (2 * epsilon)
        np.testing.assert_allclose(softmax.backward(gradient, softmax.forward(x)), numeric, atol=1e-6)


class TestActivationValues:
    """Test forward values and ranges."""

    def test_tanh_backward_closed_form(self):
        h = np.array([-0.5, 0.0, 0.8])
        np.testing.assert_allclose(Tanh().backward(np.ones(3), h), 1 - h * h)

    def test_sigmoid_backward_closed_form(self):
        h = np.array([0.1, 0.5, 0.9])
        np.testing.assert_allclose(Sigmoid().backward(np.ones(3), h), h - h * h)

    def test_relu_blocks_non_positive_outputs(self):
        relu = get_activation('relu')
        np.testing.assert_array_equal(relu.backward(np.array([3.0, 3.0, 3.0]), np.array([0.0, 0.2, 0.0])),
                                      [0.0, 3.0, 0.0])

    def test_sigmoid_large_inputs_stay_finite(self):
        outputs = Sigmoid().forward(np.array([-1e6, 0.0, 1e6]))
        assert np.all(np.isfinite(outputs))
        np.testing.assert_allclose(outputs, [0.0, 0.5, 1.0], atol=1e-12)

    def test_softmax_is_normalized(self):
        outputs = Softmax().forward(np.array([1000.0, 1001.0, 1002.0]))
        assert np.isclose(outputs.sum(), 1.0)
        assert np.all(np.isfinite(outputs))

    def test_soft_sign_forward(self):
        np.testing.assert_allclose(SoftSign().forward(np.array([-3.0, 0.0, 1.0])), [-0.75, 0.0, 0.5])

    def test_soft_sign_reconstructs_inputs(self):
        x = np.array([-4.0, -0.5, 0.0, 0.25, 9.0])
        np.testing.assert_allclose(SoftSign.reconstruct_inputs(SoftSign().forward(x)), x, rtol=1e-9, atol=1e-12)

    def test_soft_sign_saturated_outputs_stay_finite(self):
        gradient = SoftSign().backward(np.ones(2), np.array([1.0, -1.0]))
        assert np.all(np.isfinite(gradient))

    def test_output_ranges(self):
        assert get_activation('tanh').output_range == (-1.0, 1.0)
        assert get_activation('soft_sign').output_range == (-1.0, 1.0)
        assert get_activation('sigmoid').output_range == (0.0, 1.0)


class TestGetActivation:
    """Test the activation factory."""

    def test_all_names(self):
        for name, cls in ACTIVATION_FUNCTIONS.items():
            activation = get_activation(name)
            assert isinstance(activation, cls)
            assert activation.name == name

    def test_case_insensitive(self):
        assert isinstance(get_activation('TANH'), Tanh)

    def test_none_is_identity(self):
        assert isinstance(get_activation(None), Linear)

    def test_instance_passthrough(self):
        tanh = Tanh()
        assert get_activation(tanh) is tanh

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            get_activation('swish')
