from .activations import ACTIVATION_FUNCTIONS, Activation, get_activation
from .channel import Channel
from .config import configure_logging
from .errors import DeepNetworkError, NumericError, PersistenceError, PreconditionViolation, ValidationError
from .layer import Layer
from .network import Network, NetworkInput
from .operators import (KERNEL_TYPES, OPERATOR_TYPES, POOLING_TYPES, Convolution, Dense, Nonlinearity, Operator,
                        Pooling, operator_from_document)
from .persistence import load_network, network_from_dict, network_to_dict, save_network
from .scheduler import SerialScheduler, ThreadPoolScheduler
from .shape import Shape, Tensor
from .training import ArraySampleProvider, SampleProvider, classification_accuracy, fit, train_batch, train_one

__version__ = "0.1.0"
