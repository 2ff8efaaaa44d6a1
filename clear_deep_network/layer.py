import logging
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

import numpy as np
from pydantic import ValidationError as DocumentValidationError

from .channel import Channel
from .documents import LayerDocument
from .errors import PersistenceError, ValidationError
from .scheduler import SerialScheduler
from .shape import Shape

if TYPE_CHECKING:
    from .network import Network


class Layer:
    """
    A group of channels that all read from the previous stage.

    Channels in one layer never read each other, so the layer runs them as
    independent tasks on a scheduler and waits for all of them before
    returning. The layer is also the source stage for the next layer: its
    channels' outputs are looked up by channel id.
    """

    def __init__(self, channels: Optional[Sequence[Channel]] = None, id: int = 0):
        self.id = id
        self.channels: List[Channel] = []
        self.revision = 0
        for channel in channels or []:
            self.add_channel(channel)

    # --- builder operations ---

    def add_channel(self, channel: Channel) -> Channel:
        if self.get_channel_index(channel.id) is not None:
            raise ValueError(f"Layer {self.id} already has a channel '{channel.id}'")
        self.channels.append(channel)
        self.revision += 1
        logging.info(f"Layer {self.id}: added channel '{channel.id}' reading {channel.sources}")
        return channel

    def get_channel_index(self, channel_id: str) -> Optional[int]:
        for index, channel in enumerate(self.channels):
            if channel.id == channel_id:
                return index
        return None

    def get_channel(self, channel: Union[str, int]) -> Channel:
        """Looks a channel up by id or by position."""
        if isinstance(channel, str):
            index = self.get_channel_index(channel)
            if index is None:
                raise KeyError(f"Layer {self.id} has no channel '{channel}'")
            return self.channels[index]
        return self.channels[channel]

    def remove_channel(self, channel: Union[str, int]) -> Channel:
        removed = self.get_channel(channel)
        self.channels.remove(removed)
        self.revision += 1
        logging.info(f"Layer {self.id}: removed channel '{removed.id}'")
        return removed

    @property
    def num_channels(self) -> int:
        return len(self.channels)

    def topology_revision(self) -> tuple:
        return (self.revision,) + tuple(channel.topology_revision() for channel in self.channels)

    # --- source stage for the next layer ---

    def get_input_shape(self, channel_id: str) -> Optional[Shape]:
        index = self.get_channel_index(channel_id)
        if index is None:
            return None
        return self.channels[index].output_shape

    def get_values(self, channel_id: str) -> Optional[np.ndarray]:
        index = self.get_channel_index(channel_id)
        if index is None:
            return None
        return self.channels[index].output

    def get_all_values(self) -> np.ndarray:
        """Outputs of every channel concatenated in declaration order."""
        if not self.channels:
            return np.zeros(0)
        return np.concatenate([channel.output for channel in self.channels])

    @property
    def output_size(self) -> int:
        return sum(channel.output_shape.total_size for channel in self.channels if channel.output_shape is not None)

    # --- validation ---

    def validate(self, previous) -> List[ValidationError]:
        errors = []
        if not self.channels:
            errors.append(ValidationError(f"Layer {self.id} has no channels", self.id))
        seen = set()
        for channel in self.channels:
            if channel.id in seen:
                errors.append(ValidationError(f"Layer {self.id}: duplicate channel id '{channel.id}'",
                                              self.id, channel.id))
            seen.add(channel.id)
            errors.extend(channel.validate(previous, self.id))
        return errors

    # --- computation, fanned out one task per channel ---

    def forward(self, previous, scheduler=None):
        scheduler = scheduler or SerialScheduler()
        scheduler.run_all([lambda channel=channel: channel.forward(previous) for channel in self.channels])
        logging.debug(f"Layer {self.id} forward - output size: {self.output_size}")

    def backward(self, downstream, scheduler=None):
        """
        Runs every channel backward.

        Args:
            downstream: The next stage; ``downstream.gradient_for_source(id, size)``
                        gives dE/d(output) for each channel of this layer.
            scheduler: Runs the channel tasks. Serial when omitted.
        """
        scheduler = scheduler or SerialScheduler()

        def backward_channel(channel: Channel):
            upstream = downstream.gradient_for_source(channel.id, channel.output.size)
            channel.backward(upstream)

        scheduler.run_all([lambda channel=channel: backward_channel(channel) for channel in self.channels])

    def gradient_for_source(self, source_id: str, size: int) -> np.ndarray:
        """Sum of the gradients every channel of this layer sends to ``source_id``."""
        total = np.zeros(size)
        for channel in self.channels:
            part = channel.gradient_for_source(source_id)
            if part is not None:
                total += part
        return total

    # --- parameters ---

    def initialize_parameters(self, scheduler=None):
        scheduler = scheduler or SerialScheduler()
        scheduler.run_all([channel.initialize_parameters for channel in self.channels])

    def start_batch(self, scheduler=None):
        scheduler = scheduler or SerialScheduler()
        scheduler.run_all([channel.start_batch for channel in self.channels])

    def update_weights(self, training_rate: float, weight_decay: float = 1.0, scheduler=None):
        scheduler = scheduler or SerialScheduler()
        scheduler.run_all([lambda channel=channel: channel.update_weights(training_rate, weight_decay)
                           for channel in self.channels])

    def gradient_check(self, epsilon: float, tolerance: float, network: "Network") -> bool:
        # Serial: every perturbed parameter needs a clean full forward pass of the network
        result = True
        for channel in self.channels:
            if not channel.gradient_check(epsilon, tolerance, network):
                result = False
        return result

    # --- persistence ---

    def to_document(self) -> LayerDocument:
        return LayerDocument(channels=[channel.to_document() for channel in self.channels])

    @classmethod
    def from_document(cls, document, id: int = 0) -> "Layer":
        if isinstance(document, dict):
            try:
                document = LayerDocument.model_validate(document)
            except DocumentValidationError as e:
                raise PersistenceError(f"Invalid layer document: {e}") from e
        try:
            return cls([Channel.from_document(channel) for channel in document.channels], id=id)
        except PersistenceError:
            raise
        except ValueError as e:
            # duplicate channel ids
            raise PersistenceError(f"Invalid layer document: {e}") from e

    def __repr__(self):
        return f"Layer(id={self.id}, channels={[channel.id for channel in self.channels]})"
