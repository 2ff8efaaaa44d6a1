import logging
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import ValidationError as DocumentValidationError

from .documents import ChannelDocument
from .errors import PersistenceError, PreconditionViolation, ValidationError
from .operators import Operator, operator_from_document
from .shape import Shape, Tensor, as_flat_array, read_only

if TYPE_CHECKING:
    from .network import Network


class Channel:
    """
    A named pipeline of operators producing one tensor stream within a layer.

    The channel reads one or more sources from the previous stage (network
    inputs for the first layer, channels of the previous layer otherwise).
    Multiple sources are concatenated along their last axis, in the order they
    are listed, before the operators run.

    Key Attributes:
        id (str): Identifier that channels of the next layer use as a source.
        sources (List[str]): Source identifiers, in concatenation order.
        operators (List[Operator]): Pipeline, run first to last on forward.
        output (np.ndarray): Read-only output of the last forward pass.
        input_gradient (np.ndarray): Gradient with respect to the concatenated
                                     input, from the last backward pass.
    """

    def __init__(self, id: str, sources: Sequence[str], operators: Optional[Sequence[Operator]] = None):
        if isinstance(sources, str):
            sources = [sources]
        self.id = str(id)
        self.sources: List[str] = [str(source) for source in sources]
        self.operators: List[Operator] = list(operators or [])

        self.input_shape: Optional[Shape] = None
        self.output_shape: Optional[Shape] = None
        self.output = read_only(np.zeros(0))
        self.input_gradient = np.zeros(0)
        self._source_layout: List[Tuple[str, int, int]] = []  # (source id, offset, size)

        # Bumped on every topology change so the owning network knows to revalidate
        self.revision = 0

    def _changed(self):
        self.revision += 1
        self.output_shape = None

    # --- builder operations ---

    def add_operator(self, operator: Operator) -> Operator:
        self.operators.append(operator)
        self._changed()
        return operator

    def get_operator(self, index: int) -> Operator:
        return self.operators[index]

    def replace_operator(self, index: int, operator: Operator) -> Operator:
        old = self.operators[index]
        self.operators[index] = operator
        self._changed()
        return old

    def remove_operator(self, index: int) -> Operator:
        operator = self.operators.pop(index)
        self._changed()
        return operator

    def set_sources(self, sources: Sequence[str]):
        self.sources = [str(source) for source in sources]
        self._changed()

    def uses_source(self, source_id: str) -> bool:
        return source_id in self.sources

    @property
    def num_operators(self) -> int:
        return len(self.operators)

    def topology_revision(self) -> tuple:
        return (self.revision,) + tuple(operator.revision for operator in self.operators)

    def get_operator_result(self, index: int) -> Tensor:
        """Last forward output of the operator at ``index`` with its shape."""
        operator = self.operators[index]
        return Tensor(operator.results, operator.result_shape)

    # --- validation ---

    def validate(self, previous, layer_index: int) -> List[ValidationError]:
        """
        Resolves every source against ``previous`` and walks the operator shapes.

        Args:
            previous: The previous stage; anything with ``get_input_shape(id)``.
            layer_index: Index of the owning layer, used in error reports.

        Returns:
            The problems found. An empty list means the channel can run.
        """
        errors = []
        self.output_shape = None

        if not self.sources:
            errors.append(ValidationError(f"Channel '{self.id}' has no sources", layer_index, self.id))
            return errors

        combined: Optional[Shape] = None
        layout = []
        offset = 0
        for source in self.sources:
            source_shape = previous.get_input_shape(source)
            if source_shape is None:
                errors.append(ValidationError(
                    f"Layer {layer_index} channel '{self.id}': source '{source}' not found", layer_index, self.id))
                continue
            if combined is None:
                combined = source_shape
            else:
                next_shape = combined.combined_with(source_shape)
                if next_shape is None:
                    errors.append(ValidationError(
                        f"Layer {layer_index} channel '{self.id}': source '{source}' with shape {source_shape} "
                        f"cannot be added to input of shape {combined}", layer_index, self.id))
                    continue
                combined = next_shape
            layout.append((source, offset, source_shape.total_size))
            offset += source_shape.total_size

        if errors or combined is None:
            return errors

        shape = combined
        for index, operator in enumerate(self.operators):
            shape = operator.resulting_shape(shape)
            if shape.total_size == 0:
                errors.append(ValidationError(
                    f"Layer {layer_index} channel '{self.id}': operator {index} ({operator.details()}) "
                    f"produces an empty result", layer_index, self.id))
                return errors

        self.input_shape = combined
        self.output_shape = shape
        self._source_layout = layout
        logging.debug(f"Channel '{self.id}' validated: {combined} -> {shape}")
        return errors

    # --- computation ---

    def _gather_inputs(self, previous) -> np.ndarray:
        if self.output_shape is None:
            raise PreconditionViolation(f"Channel '{self.id}' has not been validated")
        parts = []
        for source, _, size in self._source_layout:
            values = previous.get_values(source)
            if values is None:
                raise PreconditionViolation(f"Channel '{self.id}': source '{source}' not found")
            if values.size != size:
                raise PreconditionViolation(
                    f"Channel '{self.id}': source '{source}' has {values.size} values, expected {size}")
            parts.append(values)
        return np.concatenate(parts) if len(parts) > 1 else as_flat_array(parts[0])

    def forward(self, previous) -> np.ndarray:
        values = self._gather_inputs(previous)
        shape = self.input_shape
        for operator in self.operators:
            values = operator.forward(values, shape)
            shape = operator.result_shape
        self.output = read_only(np.array(values, dtype=float))
        logging.debug(f"Channel '{self.id}' forward - {self.input_shape} -> {shape}")
        return self.output

    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """Runs the operators in reverse, leaving dE/d(input) in ``input_gradient``."""
        gradient = as_flat_array(upstream)
        for operator in reversed(self.operators):
            gradient = operator.backward(gradient)
        self.input_gradient = gradient
        return gradient

    def gradient_for_source(self, source_id: str) -> Optional[np.ndarray]:
        """
        Slice of the input gradient belonging to ``source_id``.

        Returns None if the channel does not read that source. A source listed
        more than once gets the sum of its slices.
        """
        result = None
        for source, offset, size in self._source_layout:
            if source != source_id:
                continue
            part = self.input_gradient[offset:offset + size]
            result = part.copy() if result is None else result + part
        return result

    # --- parameters ---

    def initialize_parameters(self):
        for operator in self.operators:
            operator.initialize_parameters()

    def start_batch(self):
        for operator in self.operators:
            operator.start_batch()

    def update_weights(self, training_rate: float, weight_decay: float = 1.0):
        for operator in self.operators:
            operator.update_weights(training_rate, weight_decay)

    def gradient_check(self, epsilon: float, tolerance: float, network: "Network") -> bool:
        result = True
        for operator in self.operators:
            if not operator.gradient_check(epsilon, tolerance, network):
                result = False
        return result

    def result_range(self) -> Optional[Tuple[float, float]]:
        if not self.operators:
            return None
        return self.operators[-1].result_range()

    # --- persistence ---

    def to_document(self) -> ChannelDocument:
        return ChannelDocument(id=self.id, sources=list(self.sources),
                               operators=[operator.to_document() for operator in self.operators])

    @classmethod
    def from_document(cls, document) -> "Channel":
        if isinstance(document, dict):
            try:
                document = ChannelDocument.model_validate(document)
            except DocumentValidationError as e:
                raise PersistenceError(f"Invalid channel document: {e}") from e
        return cls(document.id, document.sources,
                   [operator_from_document(operator) for operator in document.operators])

    def __repr__(self):
        return f"Channel(id={self.id!r}, sources={self.sources}, operators={self.operators})"
