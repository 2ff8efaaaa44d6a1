"""Simple training loops on top of Network.

The network itself never stores or shuffles samples. These helpers pull
samples from a provider in the order the caller asks for, accumulating
gradients over a batch before each weight update.
"""

import logging
import time
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np

from .network import Expected, Network

InputValues = Union[Mapping[str, Sequence[float]], Sequence[float], np.ndarray]


class SampleProvider(Protocol):
    """Source of training samples, addressed by index."""

    def get_input(self, index: int) -> InputValues:
        """Input vector, or a mapping of input id to vector."""
        ...

    def get_expected(self, index: int) -> Expected:
        """Target vector or class index."""
        ...

    def count(self) -> int:
        ...


class ArraySampleProvider:
    """SampleProvider over in-memory arrays: one row of ``inputs`` per sample."""

    def __init__(self, inputs, expected):
        self.inputs = np.asarray(inputs, dtype=float)
        self.expected = list(expected)
        if len(self.inputs) != len(self.expected):
            raise ValueError("Number of samples in inputs and expected must match.")

    def get_input(self, index: int) -> np.ndarray:
        return self.inputs[index]

    def get_expected(self, index: int) -> Expected:
        return self.expected[index]

    def count(self) -> int:
        return len(self.expected)


def train_one(network: Network, inputs: InputValues, expected: Expected,
              training_rate: float, weight_decay: float = 1.0) -> float:
    """
    One full training step on a single sample.

    Returns:
        The sample's summed squared-error loss before the update.
    """
    network.start_batch()
    network.set_inputs(inputs)
    network.feed_forward()
    network.back_propagate(expected)
    loss = float(np.sum(network.get_result_loss()))
    network.update_weights(training_rate, weight_decay)
    return loss


def train_batch(network: Network, provider: SampleProvider, indices: Sequence[int],
                training_rate: float, weight_decay: float = 1.0) -> float:
    """
    Accumulates gradients over ``indices`` and applies one weight update.

    Returns:
        The summed loss over the batch, measured before the update.
    """
    network.start_batch()
    total_loss = 0.0
    for index in indices:
        network.set_inputs(provider.get_input(index))
        network.feed_forward()
        network.back_propagate(provider.get_expected(index))
        total_loss += float(np.sum(network.get_result_loss()))
    network.update_weights(training_rate, weight_decay)
    return total_loss


def fit(
    network: Network,
    provider: SampleProvider,
    epochs: int = 100,
    training_rate: float = 0.1,
    weight_decay: float = 1.0,
    order: Optional[Sequence[int]] = None,
    batch_size: int = 1,
    log_every: int = 10,
) -> Dict[str, List]:
    """
    Trains the network for a number of epochs.

    Args:
        network: The network to train.
        provider: Sample source.
        epochs: Number of passes over the samples.
        training_rate: Step size for update_weights.
        weight_decay: Multiplier applied to the parameters on every update.
        order: Sample indices to visit each epoch. Defaults to every sample in
               index order; any shuffling is up to the caller.
        batch_size: Samples accumulated per weight update.
        log_every: Log progress every `log_every` epochs.

    Returns:
        A dictionary with the training history (epoch, loss, time_per_epoch).
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    indices = list(order) if order is not None else list(range(provider.count()))
    if not indices:
        raise ValueError("No samples to train on.")

    history: Dict[str, List] = {'epoch': [], 'loss': [], 'time_per_epoch': []}
    for epoch in range(epochs):
        epoch_start_time = time.time()
        epoch_loss = 0.0
        for start in range(0, len(indices), batch_size):
            epoch_loss += train_batch(network, provider, indices[start:start + batch_size],
                                      training_rate, weight_decay)
        epoch_loss /= len(indices)
        epoch_time = time.time() - epoch_start_time

        history['epoch'].append(epoch)
        history['loss'].append(epoch_loss)
        history['time_per_epoch'].append(epoch_time)

        if epoch % log_every == 0 or epoch == epochs - 1:
            logging.info(f"Epoch {epoch + 1}/{epochs} - loss: {epoch_loss:.5f} - time: {epoch_time:.2f}s")

    logging.info("Training finished.")
    return history


def classification_accuracy(network: Network, provider: SampleProvider,
                            indices: Optional[Sequence[int]] = None) -> float:
    """Fraction of samples whose get_result_class() matches the expected class."""
    indices = list(indices) if indices is not None else list(range(provider.count()))
    if not indices:
        return 0.0
    correct = 0
    for index in indices:
        network.set_inputs(provider.get_input(index))
        network.feed_forward()
        expected = provider.get_expected(index)
        if not isinstance(expected, (int, np.integer)):
            expected = _class_of(network, np.asarray(expected, dtype=float).reshape(-1))
        if network.get_result_class() == int(expected):
            correct += 1
    return correct / len(indices)


def _class_of(network: Network, target: np.ndarray) -> int:
    if target.size == 1:
        return 1 if target[0] > (network.result_max + network.result_min) * 0.5 else 0
    return int(np.argmax(target))
