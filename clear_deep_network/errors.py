"""Exception types raised (or collected) by the deep network engine.

Topology problems are collected as ``ValidationError`` instances and returned
in bulk by ``Network.validate()``. Programmer errors such as running backward
before forward raise ``PreconditionViolation``. Degenerate arithmetic raises
``NumericError``. Failed reconstruction from a document raises
``PersistenceError``.
"""

from typing import List, Optional, Sequence


class DeepNetworkError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(DeepNetworkError):
    """A single topology or shape problem found while validating a network.

    Validation never raises these; it gathers them so that every problem in
    the network can be reported together.

    Attributes:
        message: Human readable description of the problem.
        layer_index: Index of the layer holding the offending channel.
        channel_id: Identifier of the offending channel, if any.
    """

    def __init__(self, message: str, layer_index: Optional[int] = None, channel_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.layer_index = layer_index
        self.channel_id = channel_id

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (f"ValidationError(layer_index={self.layer_index}, "
                f"channel_id={self.channel_id!r}, message={self.message!r})")


class PreconditionViolation(DeepNetworkError, RuntimeError):
    """Raised when an operation is called in a state where it cannot run.

    Examples are ``backward()`` without a matching ``forward()``, or a forward
    pass on a network that failed validation. When raised for an invalid
    network, ``errors`` holds the validation errors that blocked the pass.
    """

    def __init__(self, message: str, errors: Optional[Sequence[ValidationError]] = None):
        super().__init__(message)
        self.errors: List[ValidationError] = list(errors or [])

    def __str__(self) -> str:
        if not self.errors:
            return super().__str__()
        details = "; ".join(str(error) for error in self.errors)
        return f"{super().__str__()}: {details}"


class NumericError(DeepNetworkError, ArithmeticError):
    """Raised when a computation cannot produce finite numbers."""


class PersistenceError(DeepNetworkError, ValueError):
    """Raised when an object cannot be reconstructed from its document."""
