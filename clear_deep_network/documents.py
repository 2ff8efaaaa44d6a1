"""Typed document schema used to persist and rebuild networks.

Every operator, channel, layer, input and network converts to one of these
pydantic models and back. Scalar fields use pydantic's strict types and
unknown keys are rejected, so a missing or mistyped field fails
reconstruction instead of being coerced or defaulted.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import (BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, TypeAdapter,
                      model_validator)

from .config import FORMAT_VERSION

ActivationName = Literal["none", "tanh", "sigmoid", "sigmoid_cross_entropy", "relu", "soft_sign", "softmax"]
KernelTypeName = Literal["vertical_edge", "horizontal_edge", "custom", "learnable"]
PoolingTypeName = Literal["average", "minimum", "maximum"]

Dimensions = Annotated[List[Annotated[StrictInt, Field(ge=0)]], Field(max_length=4)]


class Document(BaseModel):
    """Base model: unknown keys rejected."""
    model_config = ConfigDict(extra="forbid")


class ConvolutionDocument(Document):
    operator_type: Literal["convolution"]
    kernel_type: KernelTypeName
    kernel: Annotated[List[StrictFloat], Field(min_length=9, max_length=9)]


class PoolingDocument(Document):
    operator_type: Literal["pooling"]
    pooling_type: PoolingTypeName
    reduction_levels: Annotated[List[Annotated[StrictInt, Field(ge=1)]], Field(min_length=1, max_length=4)]


class DenseDocument(Document):
    operator_type: Literal["dense"]
    activation: ActivationName
    dimensions: Dimensions
    num_inputs: Annotated[StrictInt, Field(ge=0)]
    weights: Optional[List[List[StrictFloat]]]

    @model_validator(mode="after")
    def check_weight_matrix(self) -> "DenseDocument":
        if self.weights is None:
            return self
        num_nodes = 1
        for d in self.dimensions:
            num_nodes *= d
        if len(self.weights) != num_nodes:
            raise ValueError(f"weights has {len(self.weights)} rows, expected {num_nodes}")
        for row in self.weights:
            if len(row) != self.num_inputs + 1:
                raise ValueError(f"weights row has {len(row)} entries, expected {self.num_inputs + 1}")
        return self


class NonlinearityDocument(Document):
    operator_type: Literal["nonlinearity"]
    activation: ActivationName


OperatorDocument = Annotated[
    Union[ConvolutionDocument, PoolingDocument, DenseDocument, NonlinearityDocument],
    Field(discriminator="operator_type"),
]

operator_document_adapter = TypeAdapter(OperatorDocument)


class ChannelDocument(Document):
    id: StrictStr
    sources: List[StrictStr]
    operators: List[OperatorDocument]


class LayerDocument(Document):
    channels: List[ChannelDocument]


class InputDocument(Document):
    id: StrictStr
    dimensions: Dimensions


class NetworkDocument(Document):
    format_version: StrictInt
    inputs: List[InputDocument]
    layers: List[LayerDocument]

    @model_validator(mode="after")
    def check_version(self) -> "NetworkDocument":
        if self.format_version != FORMAT_VERSION:
            raise ValueError(f"Unsupported format_version {self.format_version}, expected {FORMAT_VERSION}")
        return self
