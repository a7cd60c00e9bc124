"""
Storage for the global mean vector and covariance matrix.

The StateStore is an arena: one contiguous mean vector ``x`` of size ``n`` and
one dense symmetric ``n × n`` covariance ``P``. Logical blocks (platform,
sensors, landmarks) live in it only through IndexSets held by the caller.

Structural operations:
    grow_by(k)      append k components, return their IndexSet
    shrink_by(ia)   delete components and compact the remaining ones downward
    reorder(perm)   permute components, P ← P[perm, perm]

Reads always return copies so no caller can alias the filter's storage.
Writes are used by the filter once an operation has been fully validated
and computed; they never resize.
"""

import numpy as np
import logging
from typing import Optional, Sequence, Union

from ..errors import IndexOutOfRangeError, ShapeMismatchError
from .indices import IndexSet

logger = logging.getLogger(__name__)


class StateStore:
    """
    Growable mean vector and covariance matrix addressed through IndexSets.

    Attributes:
        size: Current state dimension n
    """

    def __init__(self, size: int = 0,
                 initial_state: Optional[np.ndarray] = None,
                 initial_covariance: Optional[np.ndarray] = None):
        """
        Allocate the state.

        Args:
            size: Initial dimension (platform and sensor blocks)
            initial_state: Optional mean of length ``size``, zeros otherwise
            initial_covariance: Optional ``size × size`` covariance, zeros otherwise

        Raises:
            ValueError: If size is negative
            ShapeMismatchError: If the initial arrays disagree with size
        """
        if size < 0:
            raise ValueError(f"State size must be non-negative, got {size}")

        self._x = np.zeros(size)
        self._P = np.zeros((size, size))

        if initial_state is not None:
            initial_state = np.asarray(initial_state, dtype=float)
            if initial_state.shape != (size,):
                raise ShapeMismatchError(
                    f"Initial state must have shape ({size},), got {initial_state.shape}")
            self._x[:] = initial_state
        if initial_covariance is not None:
            initial_covariance = np.asarray(initial_covariance, dtype=float)
            if initial_covariance.shape != (size, size):
                raise ShapeMismatchError(
                    f"Initial covariance must have shape ({size}, {size}), got {initial_covariance.shape}")
            self._P[:, :] = 0.5 * (initial_covariance + initial_covariance.T)

    @property
    def size(self) -> int:
        return int(self._x.size)

    @property
    def x(self) -> np.ndarray:
        """Copy of the full mean vector."""
        return self._x.copy()

    @property
    def P(self) -> np.ndarray:
        """Copy of the full covariance matrix."""
        return self._P.copy()

    def all_indices(self) -> IndexSet:
        return IndexSet.range(0, self.size)

    def check(self, *index_sets: IndexSet) -> None:
        """Validate every given set against the current size."""
        for ia in index_sets:
            ia.validate(self.size)

    def mean_at(self, ia: IndexSet) -> np.ndarray:
        ia.validate(self.size)
        return self._x[ia.array]

    def cov_at(self, ia_rows: IndexSet, ia_cols: Optional[IndexSet] = None) -> np.ndarray:
        """
        Extract a covariance block.

        Args:
            ia_rows: Row indices
            ia_cols: Column indices, defaults to ``ia_rows``

        Returns:
            Copy of ``P[ia_rows, ia_cols]``; not symmetric when the sets differ
        """
        ia_cols = ia_rows if ia_cols is None else ia_cols
        self.check(ia_rows, ia_cols)
        return self._P[np.ix_(ia_rows.array, ia_cols.array)]

    def set_mean_at(self, ia: IndexSet, values: np.ndarray) -> None:
        ia.validate(self.size)
        values = np.asarray(values, dtype=float)
        if values.shape != (len(ia),):
            raise ShapeMismatchError(f"Mean block must have shape ({len(ia)},), got {values.shape}")
        self._x[ia.array] = values

    def set_cov_at(self, ia_rows: IndexSet, ia_cols: IndexSet, block: np.ndarray) -> None:
        """
        Write ``P[ia_rows, ia_cols]`` and its mirror ``P[ia_cols, ia_rows]``.

        The two sets must be equal (diagonal block, written as given) or
        disjoint (off-diagonal block, mirrored).
        """
        self.check(ia_rows, ia_cols)
        block = np.asarray(block, dtype=float)
        if block.shape != (len(ia_rows), len(ia_cols)):
            raise ShapeMismatchError(
                f"Covariance block must have shape ({len(ia_rows)}, {len(ia_cols)}), got {block.shape}")
        self._P[np.ix_(ia_rows.array, ia_cols.array)] = block
        if ia_rows != ia_cols:
            self._P[np.ix_(ia_cols.array, ia_rows.array)] = block.T

    def grow_by(self, k: int, mean: Optional[np.ndarray] = None,
                covariance: Optional[np.ndarray] = None) -> IndexSet:
        """
        Append ``k`` components to the state.

        New components have zero cross-covariance with the existing state.

        Args:
            k: Number of components to append
            mean: Optional mean of the new block, zeros otherwise
            covariance: Optional ``k × k`` covariance of the new block, zeros otherwise

        Returns:
            IndexSet of the appended components
        """
        if k < 0:
            raise ValueError(f"Cannot grow state by a negative amount ({k})")
        if mean is not None:
            mean = np.asarray(mean, dtype=float)
            if mean.shape != (k,):
                raise ShapeMismatchError(f"New block mean must have shape ({k},), got {mean.shape}")
        if covariance is not None:
            covariance = np.asarray(covariance, dtype=float)
            if covariance.shape != (k, k):
                raise ShapeMismatchError(f"New block covariance must have shape ({k}, {k}), got {covariance.shape}")

        n = self.size
        x = np.zeros(n + k)
        x[:n] = self._x
        P = np.zeros((n + k, n + k))
        P[:n, :n] = self._P
        if mean is not None:
            x[n:] = mean
        if covariance is not None:
            P[n:, n:] = 0.5 * (covariance + covariance.T)

        self._x, self._P = x, P
        logger.debug("State grown by %d to size %d", k, n + k)
        return IndexSet.range(n, n + k)

    def shrink_by(self, ia: IndexSet) -> None:
        """
        Delete components and compact the remaining ones downward.

        Every IndexSet referring to a component after the first removed one is
        invalidated; see ``IndexSet.shifted_after_removal``.
        """
        ia.validate(self.size)
        if len(ia) == 0:
            return
        keep = np.setdiff1d(np.arange(self.size), ia.array, assume_unique=True)
        self._x = self._x[keep]
        self._P = self._P[np.ix_(keep, keep)]
        logger.debug("State shrunk by %d to size %d", len(ia), self.size)

    def reorder(self, permutation: Union[Sequence[int], np.ndarray]) -> None:
        """
        Permute the state so that new component ``i`` is old component ``permutation[i]``.

        Only the arena is permuted; IndexSets held elsewhere are not
        renumbered (``ExtendedKalmanFilterIndirect.reorder`` does that).

        Raises:
            ShapeMismatchError: If the permutation length differs from the size
            ValueError: If ``permutation`` is not a permutation of ``range(size)``
        """
        permutation = np.asarray(permutation, dtype=np.intp)
        if permutation.shape != (self.size,):
            raise ShapeMismatchError(
                f"Permutation must have shape ({self.size},), got {permutation.shape}")
        if not np.array_equal(np.sort(permutation), np.arange(self.size)):
            raise ValueError("Reordering requires a permutation of all state indices")
        self._x = self._x[permutation]
        self._P = self._P[np.ix_(permutation, permutation)]

    def __repr__(self) -> str:
        return f"StateStore(size={self.size})"
