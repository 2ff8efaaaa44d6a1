"""
NumPy operators for deep network channels.

Each operator is a single tensor transform with a forward pass and a matching
hand-written backward pass:
   - Convolution: 3x3 kernel over every 2D plane, edge-extended borders
   - Pooling: average / minimum / maximum reduction over up to four axes
   - Dense: fully connected node set with a bias input and an activation
   - Nonlinearity: elementwise activation as a separate pipeline stage

Tensors are flat float64 buffers plus a Shape, first dimension fastest.
Learnable parameters live in ``parameters()``; their gradients are summed into
``grads`` by every backward call until ``start_batch()`` clears them, and
``update_weights()`` applies ``params = params * decay - rate * grads``.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError as DocumentValidationError

from .activations import Activation, get_activation
from .documents import (ConvolutionDocument, DenseDocument, NonlinearityDocument, PoolingDocument,
                        operator_document_adapter)
from .errors import NumericError, PersistenceError, PreconditionViolation
from .shape import Shape, as_flat_array

if TYPE_CHECKING:
    from .network import Network


# --- Base Operator Class ---
class Operator:
    """
    Abstract base class for all operators in a channel pipeline.
    """
    operator_type = ""

    def __init__(self):
        self.grads: Dict[str, np.ndarray] = {}  # Accumulated gradients of learnable parameters
        self.input_shape: Optional[Shape] = None  # Shape seen by the last forward pass
        self.result_shape = Shape([])
        self.results = np.zeros(0)
        self._forwarded = False
        self.revision = 0  # Bumped by setters that change shape or range

    def details(self) -> str:
        """Short human readable description of the operator."""
        return self.operator_type

    def parameters(self) -> Dict[str, np.ndarray]:
        """Learnable parameter arrays, keyed by name. Empty for fixed operators."""
        return {}

    def resulting_shape(self, input_shape: Shape) -> Shape:
        """Shape of the output produced for an input of ``input_shape``."""
        raise NotImplementedError("Each operator must implement its own shape function.")

    def initialize_parameters(self):
        """(Re)seeds learnable parameters. No-op for parameterless operators."""

    def forward(self, inputs: np.ndarray, input_shape: Shape) -> np.ndarray:
        """Performs the forward pass and caches what backward needs."""
        raise NotImplementedError("Each operator must implement its own forward pass.")

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """Turns dE/d(output) into dE/d(input), accumulating parameter gradients."""
        raise NotImplementedError("Each operator must implement its own backward pass.")

    def result_range(self) -> Tuple[float, float]:
        """Minimum and maximum value the operator can output."""
        return 0.0, 1.0

    def start_batch(self):
        """Zeroes the gradient accumulators."""
        self.grads = {name: np.zeros_like(param) for name, param in self.parameters().items()}

    def update_weights(self, training_rate: float, weight_decay: float = 1.0):
        """Applies params = params * weight_decay - training_rate * grads."""
        for name, param in self.parameters().items():
            if weight_decay != 1.0:
                param *= weight_decay
            if name in self.grads:
                param -= training_rate * self.grads[name]

    def gradient_check(self, epsilon: float, tolerance: float, network: "Network") -> bool:
        """
        Compares the accumulated analytic gradients with central differences.

        Every learnable parameter is nudged by +/- epsilon and the owning
        network's full forward pass is rerun to measure the change in loss.
        Assumes one forward and backward pass has been accumulated since the
        last start_batch().

        Returns:
            False if any parameter's analytic and numeric gradients differ by more than tolerance.
        """
        result = True
        for name, param in self.parameters().items():
            flat_param = param.reshape(-1)  # view onto the live parameters
            analytic = self.grads.get(name, np.zeros_like(param)).reshape(-1)
            for index in range(flat_param.size):
                old_value = flat_param[index]

                flat_param[index] = old_value + epsilon
                network.feed_forward()
                plus_loss = float(np.sum(network.get_result_loss()))

                flat_param[index] = old_value - epsilon
                network.feed_forward()
                minus_loss = float(np.sum(network.get_result_loss()))

                flat_param[index] = old_value

                numeric = (plus_loss - minus_loss) / (2.0 * epsilon)
                difference = abs(numeric - analytic[index])
                if difference > tolerance:
                    logging.warning(f"Gradient check failed for {self.details()} {name}[{index}]: "
                                    f"analytic={analytic[index]:.6g}, numeric={numeric:.6g}")
                    result = False
        return result

    def to_document(self):
        raise NotImplementedError("Each operator must implement its own document conversion.")

    # --- state machine helpers ---
    def _mark_forwarded(self, input_shape: Shape, results: np.ndarray, result_shape: Shape):
        self.input_shape = input_shape
        self.results = results
        self.result_shape = result_shape
        self._forwarded = True

    def _require_forward(self, upstream: np.ndarray) -> np.ndarray:
        if not self._forwarded:
            raise PreconditionViolation(f"{self.__class__.__name__}: Must call forward() before backward().")
        upstream = as_flat_array(upstream)
        if upstream.size != self.results.size:
            raise PreconditionViolation(
                f"{self.__class__.__name__}: Expected {self.results.size} upstream gradients, got {upstream.size}")
        self._forwarded = False
        return upstream

    def _accumulate(self, name: str, gradient: np.ndarray):
        if name not in self.grads or self.grads[name].shape != gradient.shape:
            self.grads[name] = np.zeros_like(gradient)
        self.grads[name] += gradient

    def __repr__(self):
        return f"{self.__class__.__name__}({self.details()})"


# --- Convolution ---

KERNEL_TYPES = {
    'vertical_edge': ("Vertical Edge 3x3", [-1, 0, 1, -2, 0, 2, -1, 0, 1]),
    'horizontal_edge': ("Horizontal Edge 3x3", [-1, -2, -1, 0, 0, 0, 1, 2, 1]),
    'custom': ("Custom 3x3", [0, 0, 0, 0, 1, 0, 0, 0, 0]),  # identity
    'learnable': ("Learnable 3x3", [1.0 / 9.0] * 9),  # average
}


class Convolution(Operator):
    """
    3x3 convolution applied independently to every 2D plane of the input.

    Input shape: [width, height, (depth), (extra)], a 1D input is a single row.
    Output shape: same as the input.

    Borders are edge-extended: reads outside the plane clamp to the nearest
    valid pixel. The kernel is laid out row-major, ``kernel[r * 3 + c]``
    weighting the pixel at row offset ``r - 1`` and column offset ``c - 1``.
    Only the 'learnable' kernel type accumulates gradients and is updated.
    """
    operator_type = "convolution"
    KERNEL_SIZE = 3

    def __init__(self, kernel_type: str = 'learnable', kernel: Optional[Sequence[float]] = None):
        super().__init__()
        if kernel_type not in KERNEL_TYPES:
            raise ValueError(f"Unknown kernel type '{kernel_type}'. Available types: {list(KERNEL_TYPES.keys())}")
        self.kernel_type = kernel_type
        if kernel is None:
            kernel = KERNEL_TYPES[kernel_type][1]
        self.kernel = self._checked_kernel(kernel)
        self.cache = {}

    def _checked_kernel(self, kernel: Sequence[float]) -> np.ndarray:
        kernel = np.array(kernel, dtype=float).reshape(-1)
        if kernel.size != self.KERNEL_SIZE * self.KERNEL_SIZE:
            raise ValueError(f"Convolution kernel needs {self.KERNEL_SIZE * self.KERNEL_SIZE} values, got {kernel.size}")
        return kernel

    @property
    def learnable(self) -> bool:
        return self.kernel_type == 'learnable'

    def set_kernel_type(self, kernel_type: str):
        """Switches kernel type and resets the kernel to that type's default."""
        if kernel_type not in KERNEL_TYPES:
            raise ValueError(f"Unknown kernel type '{kernel_type}'")
        self.kernel_type = kernel_type
        self.kernel = self._checked_kernel(KERNEL_TYPES[kernel_type][1])
        self.revision += 1

    def set_kernel_value(self, index: int, value: float):
        self.kernel[index] = value
        self.revision += 1

    def details(self) -> str:
        return KERNEL_TYPES[self.kernel_type][0]

    def parameters(self) -> Dict[str, np.ndarray]:
        return {'kernel': self.kernel} if self.learnable else {}

    def resulting_shape(self, input_shape: Shape) -> Shape:
        # A convolution doesn't change the size
        return input_shape

    def initialize_parameters(self):
        if self.learnable:
            # Xavier style: fan-in of the 9 kernel taps
            self.kernel[:] = np.random.randn(self.kernel.size) / np.sqrt(self.kernel.size)

    def result_range(self) -> Tuple[float, float]:
        return float(np.sum(self.kernel[self.kernel < 0])), float(np.sum(self.kernel[self.kernel > 0]))

    @staticmethod
    def _plane_dims(input_shape: Shape) -> Tuple[int, int]:
        width, height = input_shape.extended(2)[:2]
        return height, width

    def forward(self, inputs: np.ndarray, input_shape: Shape) -> np.ndarray:
        """
        Performs the forward pass of the convolution.
        Planes view: (num_planes, H, W), output has the same view.
        """
        inputs = as_flat_array(inputs, input_shape.total_size)
        if inputs.size == 0:
            self._mark_forwarded(input_shape, np.zeros(0), input_shape)
            return self.results

        H, W = self._plane_dims(input_shape)
        K = self.KERNEL_SIZE
        pad = K // 2
        planes = inputs.reshape(-1, H, W)

        # Edge extension: out-of-bounds reads take the nearest valid pixel
        padded = np.pad(planes, ((0, 0), (pad, pad), (pad, pad)), mode='edge')

        output = np.zeros_like(planes)
        for r in range(K):
            for c in range(K):
                output += self.kernel[r * K + c] * padded[:, r:r + H, c:c + W]

        self.cache['padded'] = padded
        self.cache['kernel'] = self.kernel.copy()
        logging.debug(f"Convolution forward - {planes.shape[0]} plane(s) of {H}x{W}")
        self._mark_forwarded(input_shape, output.reshape(-1), input_shape)
        return self.results

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """
        dK[r, c] sums upstream * the input pixel read by tap (r, c) at every position.
        dX sums upstream * kernel weight over every placement that read the pixel,
        using the same clamped indexing as forward.
        """
        upstream = self._require_forward(upstream)
        if upstream.size == 0:
            return np.zeros(0)

        padded = self.cache['padded']
        kernel = self.cache['kernel']
        H, W = self._plane_dims(self.input_shape)
        K = self.KERNEL_SIZE
        pad = K // 2
        gradient = upstream.reshape(-1, H, W)

        d_padded = np.zeros_like(padded)
        kernel_gradient = np.zeros_like(kernel)
        for r in range(K):
            for c in range(K):
                window = (slice(None), slice(r, r + H), slice(c, c + W))
                kernel_gradient[r * K + c] = np.sum(gradient * padded[window])
                d_padded[window] += kernel[r * K + c] * gradient

        if self.learnable:
            self._accumulate('kernel', kernel_gradient)

        # Fold the padded border back onto the pixels it was clamped from
        source_rows = np.clip(np.arange(-pad, H + pad), 0, H - 1)
        d_rows = np.zeros((padded.shape[0], H, W + 2 * pad))
        for padded_row, source_row in enumerate(source_rows):
            d_rows[:, source_row, :] += d_padded[:, padded_row, :]

        source_columns = np.clip(np.arange(-pad, W + pad), 0, W - 1)
        d_inputs = np.zeros((padded.shape[0], H, W))
        for padded_column, source_column in enumerate(source_columns):
            d_inputs[:, :, source_column] += d_rows[:, :, padded_column]

        return d_inputs.reshape(-1)

    def to_document(self) -> ConvolutionDocument:
        return ConvolutionDocument(operator_type=self.operator_type, kernel_type=self.kernel_type,
                                   kernel=[float(v) for v in self.kernel])

    @classmethod
    def from_document(cls, document: ConvolutionDocument) -> "Convolution":
        return cls(kernel_type=document.kernel_type, kernel=document.kernel)


# --- Pooling ---

POOLING_TYPES = {
    'average': "Avg",
    'minimum': "Min",
    'maximum': "Max",
}


class Pooling(Operator):
    """
    Reduces each axis by an integer factor using average, minimum or maximum.

    Each axis is split into contiguous blocks of ``reduction_levels[axis]``
    cells; trailing cells that do not fill a block are ignored. Minimum and
    maximum pooling remember the flat source index of the chosen cell so the
    backward pass can route the gradient to it.
    """
    operator_type = "pooling"
    MAX_AXES = 4

    def __init__(self, pooling_type: str = 'maximum', reduction_levels: Sequence[int] = (2, 2)):
        super().__init__()
        if pooling_type not in POOLING_TYPES:
            raise ValueError(f"Unknown pooling type '{pooling_type}'. Available types: {list(POOLING_TYPES.keys())}")
        levels = [int(level) for level in reduction_levels]
        if not 1 <= len(levels) <= self.MAX_AXES:
            raise ValueError(f"Pooling needs 1 to {self.MAX_AXES} reduction levels, got {len(levels)}")
        if any(level < 1 for level in levels):
            raise ValueError(f"Pooling reduction levels must be positive, got {levels}")
        self.pooling_type = pooling_type
        self.reduction_levels = levels
        self.cache = {}

    @property
    def dimension(self) -> int:
        return len(self.reduction_levels)

    def set_reduction_level(self, axis: int, level: int):
        if not 0 <= axis < self.dimension:
            raise IndexError(f"Pooling axis {axis} out of range for {self.dimension} axes")
        if level < 1:
            raise ValueError(f"Pooling reduction level must be positive, got {level}")
        self.reduction_levels[axis] = int(level)
        self.revision += 1

    def details(self) -> str:
        return f"{POOLING_TYPES[self.pooling_type]} [{', '.join(str(level) for level in self.reduction_levels)}]"

    def _reductions(self, input_shape: Shape) -> List[int]:
        """Reduction per axis, padded to 4 axes. Axes the input lacks are not reduced."""
        return [self.reduction_levels[axis] if axis < min(self.dimension, input_shape.num_dimensions) else 1
                for axis in range(self.MAX_AXES)]

    def resulting_shape(self, input_shape: Shape) -> Shape:
        reductions = self._reductions(input_shape)
        return Shape([size // reductions[axis] for axis, size in enumerate(input_shape.dimensions)])

    def forward(self, inputs: np.ndarray, input_shape: Shape) -> np.ndarray:
        inputs = as_flat_array(inputs, input_shape.total_size)
        source = input_shape.extended()
        reductions = self._reductions(input_shape)
        result = [source[axis] // reductions[axis] for axis in range(self.MAX_AXES)]
        if 0 in result:
            logging.error(f"Pooling {self.details()} on {input_shape} leaves an empty block")
            raise NumericError(f"Degenerate pooling block: {self.details()} cannot reduce input {input_shape}")

        d0, d1, d2, d3 = source
        r0, r1, r2, r3 = reductions
        o0, o1, o2, o3 = result

        # Numpy axes run (w, z, y, x); crop to whole blocks, then move block offsets last
        volume = inputs.reshape(d3, d2, d1, d0)[:o3 * r3, :o2 * r2, :o1 * r1, :o0 * r0]
        blocks = volume.reshape(o3, r3, o2, r2, o1, r1, o0, r0).transpose(0, 2, 4, 6, 1, 3, 5, 7)
        blocks = blocks.reshape(o3, o2, o1, o0, r3 * r2 * r1 * r0)

        if self.pooling_type == 'average':
            pool = blocks.mean(axis=-1)
            self.cache['used'] = None
        else:
            if self.pooling_type == 'maximum':
                local = np.argmax(blocks, axis=-1)
            else:
                local = np.argmin(blocks, axis=-1)
            pool = np.take_along_axis(blocks, local[..., np.newaxis], axis=-1)[..., 0]

            # Flat source index of every chosen cell
            a3, a2, a1, a0 = np.unravel_index(local, (r3, r2, r1, r0))
            g3, g2, g1, g0 = np.indices((o3, o2, o1, o0))
            used = np.ravel_multi_index((g3 * r3 + a3, g2 * r2 + a2, g1 * r1 + a1, g0 * r0 + a0),
                                        (d3, d2, d1, d0))
            self.cache['used'] = used.reshape(-1)

        self.cache['blocks'] = (source, reductions, result)
        logging.debug(f"Pooling forward - {input_shape} -> {result}")
        self._mark_forwarded(input_shape, pool.reshape(-1).astype(float), self.resulting_shape(input_shape))
        return self.results

    @property
    def input_used(self) -> Optional[np.ndarray]:
        """Flat source index chosen for each output cell (minimum/maximum only)."""
        return self.cache.get('used')

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        upstream = self._require_forward(upstream)
        source, reductions, result = self.cache['blocks']
        d0, d1, d2, d3 = source
        r0, r1, r2, r3 = reductions
        o0, o1, o2, o3 = result

        downstream = np.zeros(d0 * d1 * d2 * d3)

        # Minimum/maximum: the whole gradient goes to the chosen cell
        if self.pooling_type != 'average':
            downstream[self.cache['used']] = upstream
            return downstream

        # Average: the gradient is spread evenly over the block
        block_size = r0 * r1 * r2 * r3
        spread = upstream.reshape(o3, 1, o2, 1, o1, 1, o0, 1) / block_size
        spread = np.broadcast_to(spread, (o3, r3, o2, r2, o1, r1, o0, r0))
        volume = downstream.reshape(d3, d2, d1, d0)
        volume[:o3 * r3, :o2 * r2, :o1 * r1, :o0 * r0] = spread.reshape(o3 * r3, o2 * r2, o1 * r1, o0 * r0)
        return downstream

    def to_document(self) -> PoolingDocument:
        return PoolingDocument(operator_type=self.operator_type, pooling_type=self.pooling_type,
                               reduction_levels=list(self.reduction_levels))

    @classmethod
    def from_document(cls, document: PoolingDocument) -> "Pooling":
        return cls(pooling_type=document.pooling_type, reduction_levels=document.reduction_levels)


# --- Fully Connected ---

def _as_shape(shape: Union[Shape, int, Sequence[int]]) -> Shape:
    if isinstance(shape, Shape):
        return shape
    if isinstance(shape, (int, np.integer)):
        return Shape([shape])
    return Shape(shape)


class Dense(Operator):
    """
    Fully connected set of nodes with an activation function.

    Weight matrix shape: (num_nodes, num_inputs + 1), the last column is the
    bias weight, fed by a constant 1 appended to the inputs.
    Output shape: fixed at construction; the input size is learned during
    validation, and the weights are re-allocated whenever it changes.
    """
    operator_type = "dense"

    def __init__(
        self,
        activation: Union[str, Activation, None] = 'none',
        shape: Union[Shape, int, Sequence[int]] = 1,
        num_inputs: int = 0,
        initial_weights: Optional[np.ndarray] = None,  # Expected shape (num_nodes, num_inputs + 1)
    ):
        super().__init__()
        self.activation_fn = get_activation(activation)
        self.output_shape = _as_shape(shape)
        self.num_nodes = self.output_shape.total_size
        self.num_inputs = int(num_inputs)
        self.weights: Optional[np.ndarray] = None
        self.cache = {}

        if initial_weights is not None:
            initial_weights = np.array(initial_weights, dtype=float)
            if initial_weights.shape != (self.num_nodes, self.num_inputs + 1):
                raise ValueError(
                    f"Dense: Initial weights shape {initial_weights.shape} "
                    f"does not match expected shape ({self.num_nodes}, {self.num_inputs + 1})"
                )
            self.weights = np.ascontiguousarray(initial_weights)
        elif self.num_inputs > 0:
            self.initialize_parameters()

        logging.debug(f"Dense created: nodes={self.num_nodes}, inputs={self.num_inputs}, "
                      f"activation={self.activation_fn.__class__.__name__}")

    def details(self) -> str:
        return f"{self.activation_fn.name} [{', '.join(str(d) for d in self.output_shape.dimensions)}]"

    def parameters(self) -> Dict[str, np.ndarray]:
        return {'weights': self.weights} if self.weights is not None else {}

    def resulting_shape(self, input_shape: Shape) -> Shape:
        # Input size does not affect output size, but it does change the weight sizing
        new_input_count = input_shape.total_size
        if new_input_count != self.num_inputs or self.weights is None:
            if self.weights is not None:
                logging.info(f"Dense {self.details()}: input size changed from {self.num_inputs} "
                             f"to {new_input_count}, re-allocating weights")
            self.num_inputs = new_input_count
            self.initialize_parameters()
        return self.output_shape

    def initialize_parameters(self):
        """Gaussian weights scaled by 1/sqrt(fan-in), fan-in halved for ReLU."""
        fan_in = max(self.num_inputs, 1)
        if self.activation_fn.name == 'relu':
            scale = 1.0 / np.sqrt(fan_in * 0.5)
        else:
            scale = 1.0 / np.sqrt(fan_in)
        self.weights = np.random.randn(self.num_nodes, self.num_inputs + 1) * scale
        self.grads = {}

    def result_range(self) -> Tuple[float, float]:
        return self.activation_fn.output_range

    def forward(self, inputs: np.ndarray, input_shape: Shape) -> np.ndarray:
        """
        Computes h = activation(W @ [x; 1]).
        """
        if self.weights is None:
            raise PreconditionViolation("Dense: parameters are not initialized; validate the network first.")
        inputs = as_flat_array(inputs)
        if inputs.size != self.num_inputs:
            raise PreconditionViolation(f"Dense: Expected {self.num_inputs} inputs, got {inputs.size}")

        inputs_with_bias = np.append(inputs, 1.0)
        node_sums = self.weights @ inputs_with_bias
        outputs = self.activation_fn.forward(node_sums)

        self.cache['inputs_with_bias'] = inputs_with_bias
        self.cache['node_sums'] = node_sums
        self._mark_forwarded(input_shape, outputs, self.output_shape)
        return self.results

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """
        delta = dE/dz from the activation derivative (in terms of the outputs)
        dE/dW = outer(delta, [x; 1])
        dE/dx = W.T @ delta with the bias row dropped
        """
        upstream = self._require_forward(upstream)
        inputs_with_bias = self.cache['inputs_with_bias']

        delta = self.activation_fn.backward(upstream, self.results)
        self._accumulate('weights', np.outer(delta, inputs_with_bias))

        downstream = self.weights.T @ delta
        return downstream[:self.num_inputs]

    def to_document(self) -> DenseDocument:
        return DenseDocument(
            operator_type=self.operator_type,
            activation=self.activation_fn.name,
            dimensions=list(self.output_shape.dimensions),
            num_inputs=self.num_inputs,
            weights=self.weights.tolist() if self.weights is not None else None,
        )

    @classmethod
    def from_document(cls, document: DenseDocument) -> "Dense":
        operator = cls(activation=document.activation, shape=document.dimensions, num_inputs=0)
        operator.num_inputs = document.num_inputs
        if document.weights is not None:
            operator.weights = np.array(document.weights, dtype=float).reshape(operator.num_nodes,
                                                                               document.num_inputs + 1)
        return operator


# --- Activation stage ---

class Nonlinearity(Operator):
    """Elementwise activation with no weights. Output shape = input shape."""
    operator_type = "nonlinearity"

    def __init__(self, activation: Union[str, Activation, None] = 'tanh'):
        super().__init__()
        self.activation_fn = get_activation(activation)

    def details(self) -> str:
        return self.activation_fn.name

    def resulting_shape(self, input_shape: Shape) -> Shape:
        return input_shape

    def result_range(self) -> Tuple[float, float]:
        return self.activation_fn.output_range

    def forward(self, inputs: np.ndarray, input_shape: Shape) -> np.ndarray:
        inputs = as_flat_array(inputs, input_shape.total_size)
        self._mark_forwarded(input_shape, self.activation_fn.forward(inputs), input_shape)
        return self.results

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        upstream = self._require_forward(upstream)
        return self.activation_fn.backward(upstream, self.results)

    def to_document(self) -> NonlinearityDocument:
        return NonlinearityDocument(operator_type=self.operator_type, activation=self.activation_fn.name)

    @classmethod
    def from_document(cls, document: NonlinearityDocument) -> "Nonlinearity":
        return cls(activation=document.activation)


# Dictionary mapping operator type tags to their classes
OPERATOR_TYPES = {
    Convolution.operator_type: Convolution,
    Pooling.operator_type: Pooling,
    Dense.operator_type: Dense,
    Nonlinearity.operator_type: Nonlinearity,
}


def operator_from_document(document) -> Operator:
    """Rebuilds an operator from its document (model instance or plain dict)."""
    if isinstance(document, dict):
        try:
            document = operator_document_adapter.validate_python(document)
        except DocumentValidationError as e:
            raise PersistenceError(f"Invalid operator document: {e}") from e
    operator_type = getattr(document, 'operator_type', None)
    if operator_type not in OPERATOR_TYPES:
        raise PersistenceError(f"Unknown operator type '{operator_type}'")
    return OPERATOR_TYPES[operator_type].from_document(document)
