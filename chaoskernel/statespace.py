"""StateSpaceSet: an immutable, ordered set of equal-dimension state vectors."""

from typing import Iterator, List, Optional, Sequence, Union

import numpy as np

from chaoskernel.errors import DimensionError


class StateSpaceSet:
    """Container of ``N`` samples of dimension ``d``, stored as a read-only array.

    Indexing with an integer returns a single state (a read-only row view);
    slices and index arrays return a new StateSpaceSet.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Union[np.ndarray, Sequence[Sequence[float]]], dimension: Optional[int] = None):
        arr = np.array(data, dtype=float)
        if arr.ndim == 1 and arr.size == 0 and dimension is not None:
            arr = arr.reshape(0, dimension)
        if arr.ndim != 2:
            raise DimensionError(f"StateSpaceSet expects a 2-D array, got shape {arr.shape}")
        if dimension is not None and arr.shape[1] != dimension:
            raise DimensionError(f"Expected dimension {dimension}, got {arr.shape[1]}")
        arr.setflags(write=False)
        self._data = arr

    @classmethod
    def from_states(cls, states: Sequence[np.ndarray], dimension: int) -> "StateSpaceSet":
        """Stack a list of 1-D states, checking each against ``dimension``."""
        for i, s in enumerate(states):
            if np.shape(s) != (dimension,):
                raise DimensionError(f"State {i} has shape {np.shape(s)}, expected ({dimension},)")
        if not states:
            return cls(np.empty((0, dimension)))
        return cls(np.vstack(states))

    @property
    def dimension(self) -> int:
        return self._data.shape[1]

    @property
    def data(self) -> np.ndarray:
        """The underlying read-only array."""
        return self._data

    def __len__(self) -> int:
        return self._data.shape[0]

    def __getitem__(self, idx):
        if isinstance(idx, tuple):
            return self._data[idx]
        out = self._data[idx]
        if out.ndim == 2:
            return StateSpaceSet(out)
        return out

    def __iter__(self) -> Iterator[np.ndarray]:
        return iter(self._data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, StateSpaceSet):
            return NotImplemented
        return self._data.shape == other._data.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self._data.copy()
        return self._data.astype(dtype)

    def columns(self) -> List[np.ndarray]:
        """One 1-D array per state-space coordinate."""
        return [self._data[:, j] for j in range(self.dimension)]

    def minima(self) -> np.ndarray:
        return self._data.min(axis=0)

    def maxima(self) -> np.ndarray:
        return self._data.max(axis=0)

    def to_array(self) -> np.ndarray:
        """A writable copy of the samples, shape ``(N, d)``."""
        return self._data.copy()

    def __repr__(self) -> str:
        return f"{self.dimension}-dimensional StateSpaceSet with {len(self)} points"
