"""
Index sets addressing sub-blocks of the global filter state.

An IndexSet is the only way the filter refers to a part of the state: the
platform pose, a sensor's extrinsics or a landmark are all just ordered sets
of offsets into one mean vector ``x`` and one covariance matrix ``P``.

Sub-block extraction:
    x[ia]        -> x[ia.array]
    P[ia, ib]    -> P[np.ix_(ia.array, ib.array)]

Invariants:
    - indices are non-negative integers
    - strictly increasing (hence duplicate free)
    - validated against the current state size before every use

IndexSets are immutable. Removing components from the state invalidates any
set that refers to shifted positions; ``shifted_after_removal`` computes the
renumbered set for blocks that survive the removal.
"""

import numpy as np
from typing import Iterable, Iterator, Union

from ..errors import IndexOutOfRangeError


class IndexSet:
    """
    Ordered, duplicate-free set of offsets into the filter state.

    Attributes:
        array: Read-only integer array holding the indices
    """

    def __init__(self, indices: Union[Iterable[int], np.ndarray] = ()):
        """
        Create an index set.

        Args:
            indices: Strictly increasing non-negative integers

        Raises:
            ValueError: If the indices are not integers, not one-dimensional,
                        or not strictly increasing
            IndexOutOfRangeError: If any index is negative
        """
        if isinstance(indices, IndexSet):
            array = indices.array
        else:
            array = np.asarray(list(indices) if not isinstance(indices, np.ndarray) else indices)

        if array.size == 0:
            array = np.empty(0, dtype=np.intp)
        if array.ndim != 1:
            raise ValueError(f"IndexSet must be one-dimensional, got shape {array.shape}")
        if not np.issubdtype(array.dtype, np.integer):
            raise ValueError(f"IndexSet requires integer indices, got dtype {array.dtype}")
        if array.size and array.min() < 0:
            raise IndexOutOfRangeError(f"Negative index in IndexSet: {int(array.min())}")
        if np.any(np.diff(array) <= 0):
            raise ValueError("IndexSet indices must be strictly increasing")

        self._array = array.astype(np.intp, copy=True)
        self._array.flags.writeable = False

    @classmethod
    def range(cls, start: int, stop: int) -> 'IndexSet':
        """Contiguous set ``[start, stop)``."""
        return cls(np.arange(start, stop, dtype=np.intp))

    @property
    def array(self) -> np.ndarray:
        return self._array

    def __len__(self) -> int:
        return int(self._array.size)

    def __iter__(self) -> Iterator[int]:
        return (int(i) for i in self._array)

    def __contains__(self, index: int) -> bool:
        position = np.searchsorted(self._array, index)
        return bool(position < self._array.size and self._array[position] == index)

    def __getitem__(self, item):
        if isinstance(item, slice):
            return IndexSet(self._array[item])
        return int(self._array[item])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IndexSet):
            return NotImplemented
        return np.array_equal(self._array, other._array)

    def __hash__(self) -> int:
        return hash(tuple(self._array.tolist()))

    def __repr__(self) -> str:
        return f"IndexSet({self._array.tolist()})"

    def union(self, other: 'IndexSet') -> 'IndexSet':
        return IndexSet(np.union1d(self._array, other.array))

    def intersection(self, other: 'IndexSet') -> 'IndexSet':
        return IndexSet(np.intersect1d(self._array, other.array, assume_unique=True))

    def difference(self, other: 'IndexSet') -> 'IndexSet':
        """Members of this set that are not in ``other``, order preserved."""
        return IndexSet(np.setdiff1d(self._array, other.array, assume_unique=True))

    def is_subset_of(self, other: 'IndexSet') -> bool:
        return bool(np.all(np.isin(self._array, other.array)))

    def is_disjoint_from(self, other: 'IndexSet') -> bool:
        return not np.any(np.isin(self._array, other.array))

    def positions_in(self, other: 'IndexSet') -> np.ndarray:
        """
        Locate this set's members inside a superset.

        Used to align a Jacobian defined over this set with the columns of a
        matrix defined over ``other``.

        Args:
            other: Superset of this set

        Returns:
            Integer array ``p`` such that ``other.array[p] == self.array``

        Raises:
            ValueError: If this set is not contained in ``other``
        """
        if not self.is_subset_of(other):
            raise ValueError(f"{self!r} is not a subset of {other!r}")
        return np.searchsorted(other.array, self._array)

    def validate(self, size: int) -> None:
        """
        Check every index against the current state size.

        Raises:
            IndexOutOfRangeError: If any index is >= size
        """
        if self._array.size and self._array[-1] >= size:
            raise IndexOutOfRangeError(
                f"Index {int(self._array[-1])} out of range for state of size {size}")

    def shifted_after_removal(self, removed: 'IndexSet') -> 'IndexSet':
        """
        Renumber this set after ``removed`` has been compacted out of the state.

        Args:
            removed: Components deleted from the state

        Returns:
            The same logical components at their new positions

        Raises:
            ValueError: If this set shares members with ``removed``
        """
        if not self.is_disjoint_from(removed):
            raise ValueError(f"{self!r} overlaps removed components {removed!r}")
        offsets = np.searchsorted(removed.array, self._array)
        return IndexSet(self._array - offsets)
