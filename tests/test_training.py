"""Tests for the training helpers."""

import numpy as np
import pytest

from clear_deep_network import (ArraySampleProvider, Dense, Network, SerialScheduler, classification_accuracy, fit,
                                train_batch, train_one)


@pytest.fixture
def regression_network():
    network = Network(scheduler=SerialScheduler())
    network.add_input("x", [2])
    network.add_layer()
    network.add_channel(0, "out", ["x"], [Dense('none', 1)])
    network.validate()
    yield network
    network.close()


@pytest.fixture
def line_provider():
    """y = 2 * a - b + 0.5"""
    inputs = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [0.5, -0.5]])
    targets = [[2 * a - b + 0.5] for a, b in inputs]
    return ArraySampleProvider(inputs, targets)


class TestTrainingSteps:
    """Test single-sample and batch steps."""

    def test_train_one_reduces_loss(self, regression_network):
        first = train_one(regression_network, [1.0, 2.0], [3.0], 0.1)
        for _ in range(20):
            last = train_one(regression_network, [1.0, 2.0], [3.0], 0.1)
        assert last < first

    def test_train_batch_applies_summed_gradient(self, regression_network, line_provider):
        dense = regression_network.get_operator(0, "out", 0)
        weights = dense.weights.copy()
        expected_gradient = np.zeros_like(weights)
        for index in range(3):
            x = np.append(line_provider.get_input(index), 1.0)
            error = weights @ x - line_provider.get_expected(index)[0]
            expected_gradient += np.outer(error, x)

        train_batch(regression_network, line_provider, [0, 1, 2], 0.1)
        np.testing.assert_allclose(dense.weights, weights - 0.1 * expected_gradient)

    def test_fit_history(self, regression_network, line_provider):
        history = fit(regression_network, line_provider, epochs=300, training_rate=0.1, log_every=100)
        assert set(history) == {'epoch', 'loss', 'time_per_epoch'}
        assert history['epoch'] == list(range(300))
        assert history['loss'][-1] < history['loss'][0]
        assert history['loss'][-1] < 1e-3
        np.testing.assert_allclose(regression_network.get_operator(0, "out", 0).weights, [[2.0, -1.0, 0.5]],
                                   atol=0.05)

    def test_fit_order_and_batches(self, regression_network, line_provider):
        history = fit(regression_network, line_provider, epochs=2, order=[4, 0], batch_size=2)
        assert len(history['loss']) == 2

    def test_fit_rejects_bad_arguments(self, regression_network, line_provider):
        with pytest.raises(ValueError):
            fit(regression_network, line_provider, batch_size=0)
        with pytest.raises(ValueError):
            fit(regression_network, line_provider, order=[])

    def test_provider_length_mismatch(self):
        with pytest.raises(ValueError):
            ArraySampleProvider([[0.0], [1.0]], [0])


class TestClassificationAccuracy:
    """Test accuracy measurement with class and vector targets."""

    def build(self):
        network = Network(scheduler=SerialScheduler())
        network.add_input("x", [1])
        network.add_layer()
        network.add_channel(0, "out", ["x"], [Dense('sigmoid', 1, num_inputs=1, initial_weights=[[4.0, 0.0]])])
        return network

    def test_class_targets(self):
        with self.build() as network:
            provider = ArraySampleProvider([[1.0], [-1.0], [2.0], [-3.0]], [1, 0, 0, 0])
            assert classification_accuracy(network, provider) == pytest.approx(0.75)

    def test_vector_targets(self):
        with self.build() as network:
            provider = ArraySampleProvider([[1.0], [-1.0]], [[1.0], [1.0]])
            assert classification_accuracy(network, provider) == pytest.approx(0.5)
            assert classification_accuracy(network, provider, indices=[0]) == pytest.approx(1.0)
