import logging
import weakref
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError as DocumentValidationError

from .channel import Channel
from .config import DEFAULT_MAX_WORKERS, FORMAT_VERSION, GRADIENT_CHECK_EPSILON, GRADIENT_CHECK_TOLERANCE
from .documents import InputDocument, NetworkDocument
from .errors import NumericError, PersistenceError, PreconditionViolation, ValidationError
from .layer import Layer
from .operators import Operator
from .scheduler import ThreadPoolScheduler
from .shape import Shape, Tensor, as_flat_array, read_only

Expected = Union[int, Sequence[float], np.ndarray]


class NetworkInput:
    """A named network input: a fixed shape and the values for the next forward pass."""

    def __init__(self, id: str, shape: Union[Shape, Sequence[int]]):
        self.id = str(id)
        self.shape = shape if isinstance(shape, Shape) else Shape(shape)
        self.values = read_only(np.zeros(self.shape.total_size))

    def set_values(self, values):
        values = np.array(values, dtype=float).reshape(-1)
        if values.size != self.shape.total_size:
            raise ValueError(f"Input '{self.id}' expects {self.shape.total_size} values, got {values.size}")
        self.values = read_only(values)

    def to_document(self) -> InputDocument:
        return InputDocument(id=self.id, dimensions=list(self.shape.dimensions))

    @classmethod
    def from_document(cls, document: InputDocument) -> "NetworkInput":
        return cls(document.id, document.dimensions)

    def __repr__(self):
        return f"NetworkInput(id={self.id!r}, shape={self.shape!r})"


class _OutputGradient:
    """Error vector of the last forward pass, handed out per last-layer channel."""

    def __init__(self, layer: Layer, error: np.ndarray):
        self._slices: Dict[str, Tuple[int, int]] = {}
        offset = 0
        for channel in layer.channels:
            size = channel.output.size
            self._slices[channel.id] = (offset, size)
            offset += size
        self._error = error

    def gradient_for_source(self, source_id: str, size: int) -> np.ndarray:
        offset, length = self._slices[source_id]
        return self._error[offset:offset + length]


class Network:
    """
    A feed-forward network of named inputs and sequential layers of channels.

    The first layer reads the network inputs, every later layer reads the
    channels of the layer before it. Channels within a layer run concurrently
    on the network's scheduler; layers run strictly one after the other.

    Any change to the topology (inputs, layers, channels or operators) marks
    the network as needing validation; ``feed_forward`` validates on demand and
    refuses to run a network that has errors.

    A network created without a scheduler owns its ThreadPoolScheduler: the
    worker threads are shut down by ``close()``, on leaving a ``with`` block,
    or when the network is garbage collected. A scheduler passed in stays
    owned by the caller, though ``close()`` still shuts it down.
    """

    def __init__(self, scheduler=None, max_workers: Optional[int] = DEFAULT_MAX_WORKERS):
        """
        Args:
            scheduler: Runs the per-channel tasks of each layer. Defaults to a
                       ThreadPoolScheduler; pass a SerialScheduler for
                       single-threaded, deterministic runs.
            max_workers: Worker count for the default scheduler.
        """
        if scheduler is None:
            scheduler = ThreadPoolScheduler(max_workers)
            self._finalizer = weakref.finalize(self, scheduler.close)
        else:
            self._finalizer = None
        self.scheduler = scheduler
        self.inputs: List[NetworkInput] = []
        self.layers: List[Layer] = []

        self.output = np.zeros(0)
        self.error = np.zeros(0)
        self.last_target: Optional[np.ndarray] = None
        self.result_min = 0.0
        self.result_max = 1.0

        self._revision = 0
        self._validated_revision = None
        self._forwarded = False

    # --- topology bookkeeping ---

    def _changed(self):
        self._revision += 1
        self._forwarded = False

    def _topology_revision(self) -> tuple:
        return (self._revision,) + tuple(layer.topology_revision() for layer in self.layers)

    @property
    def validated(self) -> bool:
        return self._validated_revision is not None and self._validated_revision == self._topology_revision()

    def _renumber_layers(self):
        for index, layer in enumerate(self.layers):
            layer.id = index

    # --- inputs ---

    def add_input(self, id: str, shape: Union[Shape, Sequence[int]]) -> NetworkInput:
        if self.get_input_index(id) is not None:
            raise ValueError(f"Network already has an input '{id}'")
        network_input = NetworkInput(id, shape)
        self.inputs.append(network_input)
        self._changed()
        logging.info(f"Added input '{id}' with shape {network_input.shape}")
        return network_input

    def get_input_index(self, id: str) -> Optional[int]:
        for index, network_input in enumerate(self.inputs):
            if network_input.id == id:
                return index
        return None

    def get_input(self, input_id: Union[str, int]) -> NetworkInput:
        if isinstance(input_id, str):
            index = self.get_input_index(input_id)
            if index is None:
                raise KeyError(f"Network has no input '{input_id}'")
            return self.inputs[index]
        return self.inputs[input_id]

    def remove_input(self, input_id: Union[str, int]) -> NetworkInput:
        network_input = self.get_input(input_id)
        self.inputs.remove(network_input)
        self._changed()
        return network_input

    def set_input_values(self, input_id: Union[str, int], values):
        self.get_input(input_id).set_values(values)

    def set_inputs(self, values: Union[Mapping[str, object], Sequence[float], np.ndarray]):
        """
        Sets the values of several inputs at once.

        Args:
            values: A mapping of input id to values, or a plain vector for a
                    network with exactly one input.
        """
        if isinstance(values, Mapping):
            for input_id, input_values in values.items():
                self.set_input_values(input_id, input_values)
            return
        if len(self.inputs) != 1:
            raise ValueError(f"A plain vector needs a single-input network, this one has {len(self.inputs)} inputs")
        self.inputs[0].set_values(values)

    # Previous-stage interface for the first layer
    def get_input_shape(self, input_id: str) -> Optional[Shape]:
        index = self.get_input_index(input_id)
        return None if index is None else self.inputs[index].shape

    def get_values(self, input_id: str) -> Optional[np.ndarray]:
        index = self.get_input_index(input_id)
        return None if index is None else self.inputs[index].values

    # --- layers, channels and operators ---

    def add_layer(self, layer: Optional[Layer] = None) -> Layer:
        layer = layer if layer is not None else Layer()
        self.layers.append(layer)
        self._renumber_layers()
        self._changed()
        logging.info(f"Added layer {layer.id}")
        return layer

    def get_layer(self, index: int) -> Layer:
        return self.layers[index]

    def remove_layer(self, index: int) -> Layer:
        layer = self.layers.pop(index)
        self._renumber_layers()
        self._changed()
        return layer

    def add_channel(self, layer_index: int, id: str, sources: Sequence[str],
                    operators: Optional[Sequence[Operator]] = None) -> Channel:
        return self.layers[layer_index].add_channel(Channel(id, sources, operators))

    def remove_channel(self, layer_index: int, channel: Union[str, int]) -> Channel:
        return self.layers[layer_index].remove_channel(channel)

    def get_channel(self, layer_index: int, channel: Union[str, int]) -> Channel:
        return self.layers[layer_index].get_channel(channel)

    def add_operator(self, layer_index: int, channel: Union[str, int], operator: Operator) -> Operator:
        return self.get_channel(layer_index, channel).add_operator(operator)

    def get_operator(self, layer_index: int, channel: Union[str, int], index: int) -> Operator:
        return self.get_channel(layer_index, channel).get_operator(index)

    def replace_operator(self, layer_index: int, channel: Union[str, int], index: int, operator: Operator) -> Operator:
        return self.get_channel(layer_index, channel).replace_operator(index, operator)

    def remove_operator(self, layer_index: int, channel: Union[str, int], index: int) -> Operator:
        return self.get_channel(layer_index, channel).remove_operator(index)

    def get_operator_result(self, layer_index: int, channel: Union[str, int], index: int) -> Tensor:
        return self.get_channel(layer_index, channel).get_operator_result(index)

    # --- validation ---

    def validate(self) -> List[ValidationError]:
        """
        Checks every layer in order and caches shapes and the output range.

        Returns:
            Every problem found. The network is usable when the list is empty.
        """
        errors = []
        self._validated_revision = None
        self._forwarded = False

        if not self.inputs:
            errors.append(ValidationError("Network has no inputs"))
        if not self.layers:
            errors.append(ValidationError("Network has no layers"))

        previous = self
        for layer in self.layers:
            errors.extend(layer.validate(previous))
            previous = layer

        if errors:
            logging.info(f"Network validation failed with {len(errors)} error(s)")
            for error in errors:
                logging.debug(f"Validation error: {error}")
            return errors

        last_channel = self.layers[-1].channels[-1]
        result_range = last_channel.result_range()
        if result_range is None:
            result_range = (0.0, 1.0)
        self.result_min, self.result_max = result_range

        self._validated_revision = self._topology_revision()
        logging.info(f"Network validated: {len(self.inputs)} input(s), {len(self.layers)} layer(s), "
                     f"{self.output_size} output(s)")
        return errors

    @property
    def output_size(self) -> int:
        if not self.layers:
            return 0
        return self.layers[-1].output_size

    @property
    def result_range(self) -> Tuple[float, float]:
        return self.result_min, self.result_max

    # --- computation ---

    def _ensure_valid(self):
        if self.validated:
            return
        errors = self.validate()
        if errors:
            raise PreconditionViolation("Network is not valid", errors)

    def feed_forward(self) -> np.ndarray:
        """
        Runs every layer in order on the current input values.

        Returns:
            The last layer's channel outputs, concatenated in declaration order.
        """
        self._ensure_valid()
        previous = self
        for layer in self.layers:
            layer.forward(previous, self.scheduler)
            previous = layer

        output = self.layers[-1].get_all_values()
        if not np.all(np.isfinite(output)):
            logging.error("NaN or Inf detected in network output")
            raise NumericError("Network output contains NaN or Inf values")
        self.output = output
        self._forwarded = True
        return self.output

    def _target_vector(self, expected: Expected) -> np.ndarray:
        if isinstance(expected, (int, np.integer)):
            target = self.get_expected_output(int(expected))
            if target.size != self.output.size:
                raise PreconditionViolation(
                    f"Class target has {target.size} values but the last output has {self.output.size}; "
                    "run feed_forward() again after changing the network")
            return target
        target = as_flat_array(expected)
        if target.size != self.output.size:
            raise ValueError(f"Expected {self.output.size} target values, got {target.size}")
        return target

    def back_propagate(self, expected: Expected):
        """
        Propagates dE/d(output) = output - expected back through every layer.

        Args:
            expected: Target vector, or a class index expanded with get_expected_output.
        """
        if not self._forwarded:
            raise PreconditionViolation("Must call feed_forward() before back_propagate()")
        if not self.validated:
            raise PreconditionViolation("Network changed since the last feed_forward(); run it again first")
        target = self._target_vector(expected)
        error = self.output - target
        if not np.all(np.isfinite(error)):
            logging.error("NaN or Inf detected in error vector")
            raise NumericError("Error vector contains NaN or Inf values")
        self.last_target = target
        self.error = error
        self._forwarded = False

        downstream = _OutputGradient(self.layers[-1], error)
        for layer in reversed(self.layers):
            layer.backward(downstream, self.scheduler)
            downstream = layer

    def get_expected_output(self, result_class: int) -> np.ndarray:
        """Target vector for a class, using the achievable output range."""
        if self.output_size == 1:
            return np.array([self.result_max if result_class == 1 else self.result_min])
        expected = np.full(self.output_size, self.result_min)
        if 0 <= result_class < self.output_size:
            expected[result_class] = self.result_max
        return expected

    def get_result_class(self) -> int:
        if self.output.size == 1:
            threshold = (self.result_max + self.result_min) * 0.5
            return 1 if self.output[0] > threshold else 0
        return int(np.argmax(self.output))

    def get_total_error(self, expected: Expected) -> float:
        return float(np.sum(np.abs(self._target_vector(expected) - self.output)))

    def get_result_loss(self) -> np.ndarray:
        """Per-output squared-error loss, 0.5 * (output - target)^2, against the last target."""
        if self.last_target is None:
            raise PreconditionViolation("No target yet: call back_propagate() first")
        error = self.output - self.last_target
        return 0.5 * error * error

    # --- parameters ---

    def initialize_parameters(self):
        self._ensure_valid()
        for layer in self.layers:
            layer.initialize_parameters(self.scheduler)

    def start_batch(self):
        for layer in self.layers:
            layer.start_batch(self.scheduler)

    def update_weights(self, training_rate: float, weight_decay: float = 1.0):
        for layer in self.layers:
            layer.update_weights(training_rate, weight_decay, self.scheduler)

    def gradient_check(self, epsilon: float = GRADIENT_CHECK_EPSILON,
                       tolerance: float = GRADIENT_CHECK_TOLERANCE) -> bool:
        """
        Finite-difference check of every learnable parameter, run serially.

        Expects start_batch(), feed_forward() and back_propagate() to have run
        for a single sample first. Leaves the network with a clean forward pass
        of the unperturbed parameters.
        """
        if self.last_target is None:
            raise PreconditionViolation("gradient_check() needs a prior back_propagate()")
        self._ensure_valid()
        result = True
        for layer in self.layers:
            if not layer.gradient_check(epsilon, tolerance, self):
                result = False
        self.feed_forward()
        logging.info(f"Gradient check {'passed' if result else 'failed'}")
        return result

    def num_parameters(self) -> int:
        return sum(param.size for layer in self.layers for channel in layer.channels
                   for operator in channel.operators for param in operator.parameters().values())

    # --- resources ---

    def close(self):
        self.scheduler.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    # --- persistence ---

    def to_document(self) -> NetworkDocument:
        return NetworkDocument(format_version=FORMAT_VERSION,
                               inputs=[network_input.to_document() for network_input in self.inputs],
                               layers=[layer.to_document() for layer in self.layers])

    @classmethod
    def from_document(cls, document, scheduler=None, max_workers: Optional[int] = DEFAULT_MAX_WORKERS) -> "Network":
        if isinstance(document, dict):
            try:
                document = NetworkDocument.model_validate(document)
            except DocumentValidationError as e:
                raise PersistenceError(f"Invalid network document: {e}") from e
        network = cls(scheduler=scheduler, max_workers=max_workers)
        try:
            for input_document in document.inputs:
                network.add_input(input_document.id, input_document.dimensions)
        except ValueError as e:
            raise PersistenceError(f"Invalid network document: {e}") from e
        for layer_document in document.layers:
            network.add_layer(Layer.from_document(layer_document))
        return network

    def summary(self) -> str:
        """
        Generates a text summary of the network topology and parameters.

        Returns:
            A string containing the network summary.
        """
        summary_str = "\n" + "=" * 50 + "\n"
        summary_str += "Deep Network Summary\n"
        summary_str += "=" * 50 + "\n"
        for network_input in self.inputs:
            summary_str += f"Input '{network_input.id}': {network_input.shape}\n"
        summary_str += "-" * 50 + "\n"
        for layer in self.layers:
            summary_str += f"Layer {layer.id}\n"
            for channel in layer.channels:
                shape = channel.output_shape if channel.output_shape is not None else "not validated"
                summary_str += f"  Channel '{channel.id}' <- {channel.sources}: {shape}\n"
                for operator in channel.operators:
                    params = sum(param.size for param in operator.parameters().values())
                    summary_str += f"    {operator.operator_type}: {operator.details()} (parameters: {params})\n"
            summary_str += "-" * 50 + "\n"
        summary_str += f"Total Parameters: {self.num_parameters()}\n"
        summary_str += "=" * 50 + "\n"
        return summary_str
