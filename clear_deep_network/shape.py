"""Tensor shapes for channel data.

A shape is an ordered list of up to four dimension sizes. The first dimension
varies fastest in the flat buffer, so a 2D shape ``[width, height]`` stores its
values row by row and element ``(x, y)`` lives at ``x + y * width``. Viewed as a
numpy array the axes are therefore reversed: ``(w, z, y, x)``.
"""

from typing import Iterable, NamedTuple, Optional, Tuple

import numpy as np

MAX_DIMENSIONS = 4


class Shape:
    """Immutable list of dimension sizes (0 to 4 dimensions)."""

    __slots__ = ("_dimensions",)

    def __init__(self, dimensions: Iterable[int]):
        dims = tuple(int(d) for d in dimensions)
        if len(dims) > MAX_DIMENSIONS:
            raise ValueError(f"Shape supports at most {MAX_DIMENSIONS} dimensions, got {len(dims)}: {dims}")
        if any(d < 0 for d in dims):
            raise ValueError(f"Shape dimensions must not be negative, got {dims}")
        self._dimensions = dims

    @property
    def dimensions(self) -> Tuple[int, ...]:
        return self._dimensions

    @property
    def num_dimensions(self) -> int:
        return len(self._dimensions)

    @property
    def total_size(self) -> int:
        result = 1
        for d in self._dimensions:
            result *= d
        return result

    @property
    def array_shape(self) -> Tuple[int, ...]:
        """Numpy shape of a C-ordered view of the flat buffer (axes reversed)."""
        return tuple(reversed(self._dimensions))

    def extended(self, count: int = MAX_DIMENSIONS) -> Tuple[int, ...]:
        """Dimensions padded with trailing 1s up to ``count`` entries."""
        return self._dimensions + (1,) * (count - len(self._dimensions))

    def combined_with(self, other: "Shape") -> Optional["Shape"]:
        """Shape of this input concatenated with ``other`` along the last axis.

        Every axis except the last must match. An input with one dimension
        fewer than the other counts as a single slice of the last axis.
        Returns None when the two cannot be concatenated.
        """
        if abs(self.num_dimensions - other.num_dimensions) > 1:
            return None
        count = max(self.num_dimensions, other.num_dimensions, 1)
        ours = self.extended(count)
        theirs = other.extended(count)
        if ours[:-1] != theirs[:-1]:
            return None
        return Shape(ours[:-1] + (ours[-1] + theirs[-1],))

    def can_add_input(self, other: "Shape") -> bool:
        return self.combined_with(other) is not None

    def __eq__(self, other) -> bool:
        if not isinstance(other, Shape):
            return NotImplemented
        return self._dimensions == other._dimensions

    def __hash__(self) -> int:
        return hash(self._dimensions)

    def __iter__(self):
        return iter(self._dimensions)

    def __len__(self) -> int:
        return len(self._dimensions)

    def __getitem__(self, index: int) -> int:
        return self._dimensions[index]

    def __str__(self) -> str:
        return f"{self.num_dimensions}D - [{', '.join(str(d) for d in self._dimensions)}]"

    def __repr__(self) -> str:
        return f"Shape({list(self._dimensions)})"


class Tensor(NamedTuple):
    """A flat value buffer together with its shape."""
    values: np.ndarray
    shape: Shape


def as_flat_array(values, expected_size: Optional[int] = None) -> np.ndarray:
    """Converts ``values`` to a flat float64 array, optionally checking its size."""
    array = np.asarray(values, dtype=float).reshape(-1)
    if expected_size is not None and array.size != expected_size:
        raise ValueError(f"Expected {expected_size} values, got {array.size}")
    return array


def read_only(array: np.ndarray) -> np.ndarray:
    """Marks ``array`` read-only so it can be shared across worker threads."""
    array.flags.writeable = False
    return array
