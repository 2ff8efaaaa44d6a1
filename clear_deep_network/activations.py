import numpy as np
from typing import Tuple, Union
import logging

from .config import SIGMOID_CLIP, SOFT_SIGN_CLAMP


class Activation:
    """Base class for all activation functions.

    Derivatives are expressed in terms of the activation *output* h, which is
    what the operators cache after a forward pass.
    """

    name = "none"
    output_range: Tuple[float, float] = (0.0, 1.0)

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute the activation function value.

        Args:
            x: Pre-activation values (flat numpy array).

        Returns:
            Activated output, same shape as x.
        """
        raise NotImplementedError

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        """Convert dE/dh into dE/dz.

        Args:
            gradient: Gradient of the error with respect to the outputs (dE/dh).
            outputs: The outputs h produced by the matching forward call.

        Returns:
            Gradient of the error with respect to the pre-activation values (dE/dz).
        """
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Linear(Activation):
    """Identity activation.

    Mathematical form:
        forward: f(x) = x
        backward: f'(x) = 1
    """

    name = "none"

    def forward(self, x: np.ndarray) -> np.ndarray:
        return x

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        return gradient


class Tanh(Activation):
    """Hyperbolic tangent activation function.

    Mathematical form:
        forward: h = tanh(x)
        backward: dh/dx = 1 - h^2
    """

    name = "tanh"
    output_range = (-1.0, 1.0)

    def forward(self, x: np.ndarray) -> np.ndarray:
        logging.debug(f"Tanh forward - input shape: {x.shape}")
        return np.tanh(x)

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        return gradient * (1.0 - outputs * outputs)


class Sigmoid(Activation):
    """Sigmoid activation function.

    Mathematical form:
        forward: h = 1 / (1 + e^-x)
        backward: dh/dx = h - h^2
    """

    name = "sigmoid"

    def forward(self, x: np.ndarray) -> np.ndarray:
        logging.debug(f"Sigmoid forward - input shape: {x.shape}")
        # Clip input to avoid overflow in exp(-x) for large negative x
        clipped_x = np.clip(x, -SIGMOID_CLIP, SIGMOID_CLIP)
        return 1.0 / (1.0 + np.exp(-clipped_x))

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        return gradient * (outputs - outputs * outputs)


class SigmoidCrossEntropy(Sigmoid):
    """Sigmoid output intended for use with a cross-entropy error.

    The operator level maths is identical to Sigmoid. The name is kept so a
    network definition can record which error convention its output expects.
    """

    name = "sigmoid_cross_entropy"


class ReLU(Activation):
    """Rectified Linear Unit activation function.

    Mathematical form:
        forward: h = max(0, x)
        backward: dh/dx = 1 where h > 0, else 0

    The gradient is blocked wherever h == 0 as well as h < 0. Since h is never
    negative this is the true derivative; a "zero only where h < 0" rule would
    pass every gradient through unchanged.
    """

    name = "relu"

    def forward(self, x: np.ndarray) -> np.ndarray:
        logging.debug(f"ReLU forward - input shape: {x.shape}")
        return np.maximum(0.0, x)

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        return np.where(outputs > 0.0, gradient, 0.0)


class SoftSign(Activation):
    """Soft-sign activation function.

    Mathematical form:
        forward: h = x / (1 + |x|)
        backward: dh/dx = 1 / (1 + |x|)^2

    The derivative needs the pre-activation x, which is rebuilt from the
    cached output with the sign-dependent inverse x = h / (1 - |h|).
    |h| is clamped just below 1 so outputs on the asymptotes stay finite.
    """

    name = "soft_sign"
    output_range = (-1.0, 1.0)

    def forward(self, x: np.ndarray) -> np.ndarray:
        return x / (1.0 + np.abs(x))

    @staticmethod
    def reconstruct_inputs(outputs: np.ndarray) -> np.ndarray:
        magnitude = np.minimum(np.abs(outputs), 1.0 - SOFT_SIGN_CLAMP)
        return np.sign(outputs) * magnitude / (1.0 - magnitude)

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        x = self.reconstruct_inputs(outputs)
        denominator = 1.0 + np.abs(x)
        return gradient / (denominator * denominator)


class Softmax(Activation):
    """Softmax activation function, normalized over the whole tensor.

    Mathematical form:
        forward: h_i = e^x_i / sum_j(e^x_j)
        backward: dE/dx_i = h_i * (dE/dh_i - sum_j(dE/dh_j * h_j))
    """

    name = "softmax"

    def forward(self, x: np.ndarray) -> np.ndarray:
        if x.size == 0:
            return x.copy()
        # Max subtraction trick for numerical stability
        exp_x = np.exp(x - np.max(x))
        return exp_x / np.sum(exp_x)

    def backward(self, gradient: np.ndarray, outputs: np.ndarray) -> np.ndarray:
        return outputs * (gradient - np.dot(gradient, outputs))


# Dictionary mapping activation function names to their classes
ACTIVATION_FUNCTIONS = {
    'none': Linear,
    'tanh': Tanh,
    'sigmoid': Sigmoid,
    'sigmoid_cross_entropy': SigmoidCrossEntropy,
    'relu': ReLU,
    'soft_sign': SoftSign,
    'softmax': Softmax,
}


def get_activation(activation: Union[str, Activation, None]) -> Activation:
    """Factory function to get an activation function instance by name.

    Args:
        activation: Name of the activation function (case-insensitive), an
                    Activation instance (returned as is) or None for identity.

    Returns:
        An instance of the requested Activation class.

    Raises:
        ValueError: If the activation function name is not recognized.
    """
    if isinstance(activation, Activation):
        return activation
    if activation is None:
        return Linear()
    name_lower = str(activation).lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise ValueError(
            f"Unknown activation function '{activation}'. "
            f"Available functions: {list(ACTIVATION_FUNCTIONS.keys())}"
        )
    return ACTIVATION_FUNCTIONS[name_lower]()
