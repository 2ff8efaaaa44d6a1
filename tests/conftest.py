"""Shared fixtures for the deep network tests."""

import numpy as np
import pytest

from clear_deep_network import Network, SerialScheduler, Shape


class StaticStage:
    """A previous stage with fixed, named outputs."""

    def __init__(self, **sources):
        self.values = {name: np.asarray(values, dtype=float).reshape(-1) for name, (values, _) in sources.items()}
        self.shapes = {name: Shape(dims) for name, (_, dims) in sources.items()}

    def get_input_shape(self, source_id):
        return self.shapes.get(source_id)

    def get_values(self, source_id):
        return self.values.get(source_id)


@pytest.fixture(autouse=True)
def seeded():
    """Every test starts from the same random state."""
    np.random.seed(1234)


@pytest.fixture
def static_stage():
    """Factory for a StaticStage: static_stage(a=(values, dims), ...)."""
    return StaticStage


@pytest.fixture
def single_channel_network():
    """Factory for a one-layer network with one input 'x' and one channel 'c'."""
    networks = []

    def build(input_dims, operators, input_values=None):
        network = Network(scheduler=SerialScheduler())
        network.add_input("x", input_dims)
        network.add_layer()
        network.add_channel(0, "c", ["x"], operators)
        size = Shape(input_dims).total_size
        values = np.random.randn(size) if input_values is None else input_values
        network.set_input_values("x", values)
        networks.append(network)
        return network

    yield build
    for network in networks:
        network.close()


@pytest.fixture
def run_gradient_check():
    """Runs one forward/backward pass against a random target, then the finite-difference check."""

    def check(network, epsilon=1e-4, tolerance=1e-2):
        network.start_batch()
        output = network.feed_forward()
        target = np.random.uniform(-1.0, 1.0, output.size)
        network.back_propagate(target)
        return network.gradient_check(epsilon, tolerance)

    return check


def numeric_input_gradient(operator, inputs, shape, upstream, epsilon=1e-6):
    """Central-difference estimate of d(sum(upstream * forward(x)))/dx."""
    gradient = np.zeros_like(inputs)
    for index in range(inputs.size):
        plus = inputs.copy()
        plus[index] += epsilon
        minus = inputs.copy()
        minus[index] -= epsilon
        f_plus = np.sum(upstream * operator.forward(plus, shape))
        f_minus = np.sum(upstream * operator.forward(minus, shape))
        gradient[index] = (f_plus - f_minus) / (2 * epsilon)
    return gradient


@pytest.fixture
def input_gradient_estimate():
    return numeric_input_gradient
