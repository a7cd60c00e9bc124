"""
Indirect Extended Kalman Filter for Simultaneous Localization and Mapping

This module implements the covariance mechanics of an EKF whose state is
shared by a moving platform, its sensors and an open-ended set of landmarks.
Every operation addresses the state indirectly, through IndexSets, so the
cost of an update is governed by the size of the blocks involved rather than
by the size of the map.

State Structure:
    x = [ x_platform | x_sensors | x_landmark_1 | ... | x_landmark_N ]
    P = full symmetric covariance over x

    iax: indices of all states in use
    v:   states affected by an operation,  m = iax \\ v

Prediction (mean propagated by the caller):
    Pvv ← F_v Pvv F_vᵀ + F_u U F_uᵀ      (control-space noise)
    Pvv ← F_v Pvv F_vᵀ + Q               (state-space noise)
    Pvm ← F_v Pvm,  Pmv ← Pvmᵀ,  Pmm unchanged

Correction with an Innovation {z, Z, INN_rsl, ia_rsl}:
    K = -P[iax, rsl] INN_rslᵀ Z⁻¹
    x[iax] ← x[iax] + K z
    P[iax, iax] ← P[iax, iax] + K INN_rsl P[rsl, iax]
    P ← ½ (P + Pᵀ)

Landmark initialization (back-projection l = g(rs, y, n)):
    P[l, l] = G_rs P[rs, rs] G_rsᵀ + G_y R G_yᵀ (+ G_n N G_nᵀ)
    P[l, m] = G_rs P[rs, m]

Reparametrization (new = j(old)):
    P[new, m]   = J_l P[old, m]
    P[new, new] = J_l P[old, old] J_lᵀ

Every public operation validates its inputs and computes its result on
copies before writing anything, so a raised FilterError leaves x and P
exactly as they were.

License: MIT
"""

import numpy as np
import scipy.linalg
import scipy.stats
import warnings
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import FilterError, NumericalInstabilityError, InnovationRejectedError, ShapeMismatchError
from ..state.indices import IndexSet
from ..state.store import StateStore
from .config import FilterConfiguration
from .innovation import BackProjection, Innovation, as_matrix, as_vector

logger = logging.getLogger(__name__)


class FilterState(Enum):
    """Enumeration of possible filter states for diagnostics."""
    INITIALIZING = "initializing"
    CONVERGED = "converged"
    DIVERGING = "diverging"
    ILL_CONDITIONED = "ill_conditioned"
    RECOVERING = "recovering"


@dataclass
class FilterDiagnostics:
    """Container for filter diagnostic information."""
    size: int
    landmark_count: int
    covariance_trace: float
    condition_number: float
    mahalanobis_distance: float
    prediction_count: int
    correction_count: int
    rejection_count: int
    filter_state: FilterState


def _symmetrize(matrix: np.ndarray) -> np.ndarray:
    return 0.5 * (matrix + matrix.T)


class ExtendedKalmanFilterIndirect:
    """
    EKF over a growable state addressed through index sets.

    The filter owns the mean and covariance exclusively. Callers read them
    through copies (``x``, ``P``, ``mean_at``, ``cov_at``) and change them only
    through the operations below:

        predict                 uncertainty propagation through a process model
        correct                 update from one Innovation
        stack_correction        queue an Innovation for a batched update
        correct_all_stacked     apply all queued Innovations as one update
        initialize              covariance of a new block from a back-projection
        add_landmark            grow the state and initialize a landmark in one step
        reparametrize           change of variables of an existing block
        remove_states           delete components and compact the state
        reorder                 move blocks, renumbering the landmark registry

    The filter is not reentrant; an embedding that corrects from a callback
    context must serialize calls itself.

    Attributes:
        configuration: Numerical thresholds and checks
        platform_indices: IndexSet of the initial (platform and sensor) block
        landmarks: Registered landmark blocks keyed by landmark id
    """

    def __init__(self, size: int,
                 initial_state: Optional[np.ndarray] = None,
                 initial_covariance: Optional[np.ndarray] = None,
                 configuration: Optional[FilterConfiguration] = None):
        """
        Initialize the filter with the platform and sensor blocks.

        Args:
            size: Dimension of the initial state
            initial_state: Optional initial mean (zeros otherwise)
            initial_covariance: Optional initial covariance (zeros otherwise)
            configuration: Optional numerical configuration
        """
        self.configuration = configuration or FilterConfiguration()
        self._store = StateStore(size, initial_state, initial_covariance)
        self.platform_indices = self._store.all_indices()
        self.landmarks: Dict[int, IndexSet] = {}
        self._next_landmark_id = 0
        self._stack: List[Innovation] = []

        self._prediction_count = 0
        self._correction_count = 0
        self._rejection_count = 0
        self._last_mahalanobis = 0.0
        self._filter_state = FilterState.INITIALIZING

        logger.info("Indirect EKF initialized with state size %d", size)

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return self._store.size

    @property
    def x(self) -> np.ndarray:
        """Copy of the mean vector."""
        return self._store.x

    @property
    def P(self) -> np.ndarray:
        """Copy of the covariance matrix."""
        return self._store.P

    @property
    def filter_state(self) -> FilterState:
        return self._filter_state

    @property
    def pending_count(self) -> int:
        """Number of innovations waiting in the correction stack."""
        return len(self._stack)

    def all_indices(self) -> IndexSet:
        return self._store.all_indices()

    def mean_at(self, ia: IndexSet) -> np.ndarray:
        return self._store.mean_at(self._as_index_set(ia))

    def cov_at(self, ia_rows: IndexSet, ia_cols: Optional[IndexSet] = None) -> np.ndarray:
        ia_rows = self._as_index_set(ia_rows)
        return self._store.cov_at(ia_rows, None if ia_cols is None else self._as_index_set(ia_cols))

    def get_uncertainty(self, ia: IndexSet) -> np.ndarray:
        """Standard deviations of the given states."""
        return np.sqrt(np.maximum(np.diag(self.cov_at(ia)), 0.0))

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, iax: Optional[IndexSet], F_v: np.ndarray, iav: IndexSet,
                noise: np.ndarray, F_u: Optional[np.ndarray] = None,
                mean: Optional[np.ndarray] = None) -> None:
        """
        Propagate the covariance of the process-affected block.

        With ``F_u`` given, ``noise`` is the control-space covariance U and the
        added term is F_u U F_uᵀ. Without it, ``noise`` is the state-space
        covariance Q of the block.

            [Pvv  Pvm]     [F_v Pvv F_vᵀ + noise   F_v Pvm]
            [Pmv  Pmm]  ←  [Pmv F_vᵀ               Pmm    ]

        The process-model mean is platform specific and computed by the
        caller; when passed as ``mean`` it is written to x[iav] together with
        the covariance update.

        Args:
            iax: All used states (None for the whole state)
            F_v: Jacobian of the process model w.r.t. x[iav], |iav| × |iav|
            iav: Process-affected states, a subset of iax
            noise: U (k × k, with F_u) or Q (|iav| × |iav|)
            F_u: Optional Jacobian w.r.t. the control perturbation, |iav| × k
            mean: Optional predicted mean of x[iav]

        Raises:
            ShapeMismatchError: If a matrix disagrees with iav
            IndexOutOfRangeError: If an index exceeds the state size
        """
        iax = self._resolve_iax(iax)
        iav = self._as_index_set(iav)
        self._store.check(iav)
        self._require_subset(iav, iax, "iav", "iax")

        if len(iav) == 0:
            logger.debug("Prediction over an empty block, nothing to do")
            return

        nv = len(iav)
        F_v = as_matrix("F_v", F_v, (nv, nv))
        if F_u is not None:
            F_u = np.atleast_2d(np.asarray(F_u, dtype=float))
            if F_u.ndim != 2 or F_u.shape[0] != nv:
                raise ShapeMismatchError(f"F_u must have {nv} rows, got shape {F_u.shape}")
            U = self._as_covariance("U", noise, F_u.shape[1])
            process_noise = F_u @ U @ F_u.T
        else:
            process_noise = self._as_covariance("Q", noise, nv)
        if mean is not None:
            mean = as_vector("Predicted mean", mean, nv)

        iam = iax.difference(iav)
        Pvv = _symmetrize(F_v @ self._store.cov_at(iav) @ F_v.T + process_noise)
        Pvm = F_v @ self._store.cov_at(iav, iam)

        self._store.set_cov_at(iav, iav, Pvv)
        if len(iam):
            self._store.set_cov_at(iav, iam, Pvm)
        if mean is not None:
            self._store.set_mean_at(iav, mean)

        self._prediction_count += 1
        self._check_divergence()
        logger.debug("Prediction applied to %d states", nv)

    # ------------------------------------------------------------------
    # Correction
    # ------------------------------------------------------------------

    def correct(self, iax: Optional[IndexSet], innovation: Innovation) -> None:
        """
        EKF correction from a single innovation.

            K = -P[iax, rsl] INN_rslᵀ Z⁻¹
            x[iax] += K z
            P[iax, iax] += K INN_rsl P[rsl, iax]

        Z⁻¹ is applied through a Cholesky factorization. The result is
        symmetrized after every update.

        Args:
            iax: All used states (None for the whole state)
            innovation: Innovation produced by an observation model

        Raises:
            ShapeMismatchError: If the innovation is malformed
            IndexOutOfRangeError: If ia_rsl exceeds the state size
            NumericalInstabilityError: If Z is singular or ill-conditioned, or
                                       the update would produce a negative variance
            InnovationRejectedError: If gating is enabled and the innovation fails it
        """
        iax = self._resolve_iax(iax)
        ia_rsl = innovation.ia_rsl
        self._store.check(ia_rsl)
        self._require_subset(ia_rsl, iax, "ia_rsl", "iax")
        if innovation.size == 0:
            logger.debug("Empty innovation, nothing to correct")
            return
        Z = self._as_covariance("Z", innovation.Z, innovation.size)

        try:
            factor = self._factor_innovation_covariance(Z)
            distance = float(innovation.z @ scipy.linalg.cho_solve(factor, innovation.z))
            self._gate(distance, innovation.size)

            S = self._store.cov_at(iax, ia_rsl)
            PHt = S @ innovation.INN_rsl.T
            K = -scipy.linalg.cho_solve(factor, PHt.T).T

            x_new = self._store.mean_at(iax) + K @ innovation.z
            P_new = self._store.cov_at(iax) + K @ innovation.INN_rsl @ S.T
            P_new = _symmetrize(P_new)

            min_variance = float(np.min(np.diag(P_new)))
            if min_variance < -self.configuration.negative_variance_tolerance:
                raise NumericalInstabilityError(
                    f"Correction would produce a negative variance ({min_variance:.3e})")
        except NumericalInstabilityError as exc:
            self._rejection_count += 1
            logger.warning("Correction rejected: %s", exc)
            raise

        self._store.set_mean_at(iax, x_new)
        self._store.set_cov_at(iax, iax, P_new)

        self._correction_count += 1
        self._last_mahalanobis = distance
        self._check_divergence()
        logger.debug("Correction applied: innovation size %d, d²=%.3f", innovation.size, distance)

    def _factor_innovation_covariance(self, Z: np.ndarray):
        condition_number = float(np.linalg.cond(Z))
        if not np.isfinite(condition_number) or condition_number > self.configuration.max_condition_number:
            raise NumericalInstabilityError(
                f"Innovation covariance is ill-conditioned (κ={condition_number:.2e})",
                condition_number=condition_number)
        try:
            return scipy.linalg.cho_factor(Z)
        except np.linalg.LinAlgError as exc:
            raise NumericalInstabilityError(
                f"Innovation covariance is not positive definite: {exc}",
                condition_number=condition_number) from exc

    def _gate(self, distance: float, dof: int) -> None:
        probability = self.configuration.innovation_gate_probability
        if probability is None:
            return
        threshold = float(scipy.stats.chi2.ppf(probability, dof))
        if distance > threshold:
            raise InnovationRejectedError(
                f"Mahalanobis distance {distance:.2f} exceeds gate {threshold:.2f}",
                mahalanobis_distance=distance, threshold=threshold)

    def stack_correction(self, innovation: Innovation) -> None:
        """
        Queue an innovation for the next ``correct_all_stacked``.

        Only the innovation's indices are checked here; x and P are untouched.
        """
        self._store.check(innovation.ia_rsl)
        self._stack.append(innovation)
        logger.debug("Innovation stacked (%d pending)", len(self._stack))

    def correct_all_stacked(self, iax: Optional[IndexSet] = None) -> bool:
        """
        Apply every queued innovation as one combined correction.

        Means are concatenated, covariances combined block-diagonally and the
        Jacobians aligned on the union of their index sets. For innovations
        that are mutually independent this equals correcting sequentially.
        The queue is cleared whether or not the update succeeds.

        Returns:
            True if a correction was applied, False if the queue was empty

        Raises:
            NumericalInstabilityError: If the combined innovation is rejected
        """
        if not self._stack:
            return False
        try:
            stacked = Innovation.stack(self._stack)
            self.correct(iax, stacked)
        finally:
            self._stack.clear()
        return True

    def clear_stack(self) -> None:
        self._stack.clear()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def grow_by(self, k: int) -> IndexSet:
        """
        Reserve ``k`` new states, uncorrelated and with zero mean and variance.

        The block is meant to be filled by ``initialize`` right away.
        """
        return self._store.grow_by(k)

    def initialize(self, iax: Optional[IndexSet], G_rs: np.ndarray, ia_rs: IndexSet,
                   ia_l: IndexSet, G_y: np.ndarray, R: np.ndarray,
                   G_n: Optional[np.ndarray] = None, N: Optional[np.ndarray] = None,
                   mean: Optional[np.ndarray] = None) -> None:
        """
        Compute the covariance of a new block from a back-projection.

            P[l, l] = G_rs P[rs, rs] G_rsᵀ + G_y R G_yᵀ + G_n N G_nᵀ
            P[l, m] = G_rs P[rs, m]      for m = iax \\ l

        The N term is present only for partially observable initialization.
        The block ``ia_l`` must already exist in the state (see
        ``StateStore.grow_by`` or ``add_landmark``).

        Args:
            iax: All used states (None for the whole state)
            G_rs: Jacobian w.r.t. robot and sensor states, |l| × |rs|
            ia_rs: Robot and sensor states
            ia_l: States reserved for the new landmark
            G_y: Jacobian w.r.t. the measurement, |l| × dim(y)
            R: Measurement noise covariance
            G_n: Optional Jacobian w.r.t. the non-measured prior, |l| × dim(n)
            N: Optional non-measured prior covariance
            mean: Optional landmark mean computed by the back-projection

        Raises:
            ShapeMismatchError: If any Jacobian disagrees with its IndexSet
            IndexOutOfRangeError: If an index exceeds the state size
        """
        iax = self._resolve_iax(iax)
        ia_rs = self._as_index_set(ia_rs)
        ia_l = self._as_index_set(ia_l)
        self._store.check(ia_rs, ia_l)
        self._require_subset(ia_rs, iax, "ia_rs", "iax")
        if not ia_rs.is_disjoint_from(ia_l):
            raise ValueError(f"Landmark indices {ia_l!r} overlap robot/sensor indices {ia_rs!r}")
        if (G_n is None) != (N is None):
            raise ValueError("G_n and N must be given together")

        nl = len(ia_l)
        G_rs = as_matrix("G_rs", G_rs, (nl, len(ia_rs)))
        G_y = np.atleast_2d(np.asarray(G_y, dtype=float))
        if G_y.ndim != 2 or G_y.shape[0] != nl:
            raise ShapeMismatchError(f"G_y must have {nl} rows, got shape {G_y.shape}")
        R = self._as_covariance("R", R, G_y.shape[1])
        if G_n is not None:
            G_n = np.atleast_2d(np.asarray(G_n, dtype=float))
            if G_n.ndim != 2 or G_n.shape[0] != nl:
                raise ShapeMismatchError(f"G_n must have {nl} rows, got shape {G_n.shape}")
            N = self._as_covariance("N", N, G_n.shape[1])
        if mean is not None:
            mean = as_vector("Landmark mean", mean, nl)

        iam = iax.difference(ia_l)
        Pll = G_rs @ self._store.cov_at(ia_rs) @ G_rs.T + G_y @ R @ G_y.T
        if G_n is not None:
            Pll = Pll + G_n @ N @ G_n.T
        Plm = G_rs @ self._store.cov_at(ia_rs, iam)

        self._store.set_cov_at(ia_l, ia_l, _symmetrize(Pll))
        if len(iam):
            self._store.set_cov_at(ia_l, iam, Plm)
        if mean is not None:
            self._store.set_mean_at(ia_l, mean)

        logger.debug("Initialized %d-state block at %s (%s observable)",
                     nl, ia_l, "partially" if G_n is not None else "fully")

    def add_landmark(self, back_projection: BackProjection,
                     iax: Optional[IndexSet] = None) -> int:
        """
        Grow the state by a landmark block and initialize it.

        Either the landmark is fully inserted and registered, or the state is
        left exactly as before.

        Args:
            back_projection: Mean and Jacobians from the inverse observation model
            iax: Used states before the insertion (None for the whole state)

        Returns:
            Id of the new landmark in ``landmarks``
        """
        bp = back_projection
        ia_l = self._store.grow_by(bp.size)
        try:
            iax_after = self._store.all_indices() if iax is None else self._as_index_set(iax).union(ia_l)
            self.initialize(iax_after, bp.G_rs, bp.ia_rs, ia_l, bp.G_y, bp.R,
                            G_n=bp.G_n, N=bp.N, mean=bp.mean)
        except (FilterError, ValueError):
            self._store.shrink_by(ia_l)
            raise

        landmark_id = self._next_landmark_id
        self._next_landmark_id += 1
        self.landmarks[landmark_id] = ia_l
        logger.info("Landmark %d added at %s, state size %d", landmark_id, ia_l, self.size)
        return landmark_id

    # ------------------------------------------------------------------
    # Reparametrization
    # ------------------------------------------------------------------

    def reparametrize(self, iax: Optional[IndexSet], J_l: np.ndarray,
                      ia_old: IndexSet, ia_new: IndexSet,
                      mean: Optional[np.ndarray] = None) -> IndexSet:
        """
        Replace a block's parametrization by a change of variables.

            P[new, m]   = J_l P[old, m]        for m = iax \\ new
            P[new, new] = J_l P[old, old] J_lᵀ

        ``ia_new`` may overlap ``ia_old`` (in-place) or be a separately
        reserved block. Components of ``ia_old`` that are not part of
        ``ia_new`` are removed afterwards, compacting the state.
        Stacked innovations that involve either block are discarded, since
        they were linearized in the old parametrization.

        Args:
            iax: All used states (None for the whole state)
            J_l: Jacobian of the new parameters w.r.t. the old, |new| × |old|
            ia_old: Current block
            ia_new: Replacement block
            mean: New parameters from the nonlinear transform; if omitted,
                  x[new] = J_l x[old]

        Returns:
            IndexSet of the new block after any compaction

        Raises:
            ShapeMismatchError: If J_l disagrees with the index sets
        """
        iax = self._resolve_iax(iax)
        ia_old = self._as_index_set(ia_old)
        ia_new = self._as_index_set(ia_new)
        self._store.check(ia_old, ia_new)
        self._require_subset(ia_old, iax, "ia_old", "iax")
        self._require_subset(ia_new, iax, "ia_new", "iax")

        J_l = as_matrix("J_l", J_l, (len(ia_new), len(ia_old)))
        if mean is not None:
            mean = as_vector("Reparametrized mean", mean, len(ia_new))
        else:
            mean = J_l @ self._store.mean_at(ia_old)

        iam = iax.difference(ia_new)
        P_new = _symmetrize(J_l @ self._store.cov_at(ia_old) @ J_l.T)
        P_cross = J_l @ self._store.cov_at(ia_old, iam)

        self._discard_stack("reparametrization", ia_old.union(ia_new))
        self._store.set_cov_at(ia_new, ia_new, P_new)
        if len(iam):
            self._store.set_cov_at(ia_new, iam, P_cross)
        self._store.set_mean_at(ia_new, mean)

        released = ia_old.difference(ia_new)
        if len(released):
            self._release(released)
            ia_new = ia_new.shifted_after_removal(released)

        logger.debug("Reparametrized block %s -> %s", ia_old, ia_new)
        return ia_new

    def reparametrize_block(self, ia_old: IndexSet, J_l: np.ndarray,
                            mean: Optional[np.ndarray] = None) -> IndexSet:
        """
        Reparametrize a block in place, resizing it to the rows of ``J_l``.

        A smaller parametrization reuses the leading positions of ``ia_old``;
        a larger one is extended by freshly appended states.

        Returns:
            IndexSet of the new block
        """
        ia_old = self._as_index_set(ia_old)
        self._store.check(ia_old)
        J_l = np.atleast_2d(np.asarray(J_l, dtype=float))
        if J_l.ndim != 2 or J_l.shape[1] != len(ia_old):
            raise ShapeMismatchError(f"J_l must have {len(ia_old)} columns, got shape {J_l.shape}")
        new_size = J_l.shape[0]
        if mean is not None:
            mean = as_vector("Reparametrized mean", mean, new_size)

        if new_size <= len(ia_old):
            return self.reparametrize(None, J_l, ia_old, ia_old[:new_size], mean=mean)

        grown = self._store.grow_by(new_size - len(ia_old))
        try:
            return self.reparametrize(None, J_l, ia_old, ia_old.union(grown), mean=mean)
        except (FilterError, ValueError):
            self._store.shrink_by(grown)
            raise

    def reparametrize_landmark(self, landmark_id: int, J_l: np.ndarray,
                               mean: Optional[np.ndarray] = None) -> IndexSet:
        """Reparametrize a registered landmark and update its registry entry."""
        ia_old = self.landmarks[landmark_id]
        ia_new = self.reparametrize_block(ia_old, J_l, mean=mean)
        self.landmarks[landmark_id] = ia_new
        return ia_new

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_states(self, ia: IndexSet) -> None:
        """
        Delete states and compact the rest.

        Registered landmark blocks are renumbered; a landmark whose states are
        all removed is dropped from the registry. Previously obtained
        IndexSets must not be reused.
        """
        ia = self._as_index_set(ia)
        self._store.check(ia)
        if not ia.is_disjoint_from(self.platform_indices):
            raise ValueError("Platform states cannot be removed")
        self._release(ia)

    def remove_landmark(self, landmark_id: int) -> None:
        ia = self.landmarks.pop(landmark_id)
        self._release(ia)
        logger.info("Landmark %d removed, state size %d", landmark_id, self.size)

    def reorder(self, permutation) -> None:
        """
        Permute the state so that new component ``i`` is old component ``permutation[i]``.

        The platform block and every registered landmark are renumbered. Each
        block must keep the relative order of its own components, so blocks
        can be moved around but not shuffled internally.

        Raises:
            ShapeMismatchError: If the permutation length differs from the size
            ValueError: If ``permutation`` is not a permutation of the state
                        indices, or reverses components inside a block
        """
        permutation = np.asarray(permutation, dtype=np.intp)
        n = self.size
        if permutation.shape != (n,):
            raise ShapeMismatchError(f"Permutation must have shape ({n},), got {permutation.shape}")
        if not np.array_equal(np.sort(permutation), np.arange(n)):
            raise ValueError("Reordering requires a permutation of all state indices")

        position = np.empty(n, dtype=np.intp)
        position[permutation] = np.arange(n, dtype=np.intp)

        def moved(block: IndexSet) -> IndexSet:
            renumbered = position[block.array]
            if np.any(np.diff(renumbered) <= 0):
                raise ValueError(f"Permutation changes the component order inside block {block!r}")
            return IndexSet(renumbered)

        platform = moved(self.platform_indices)
        landmarks = {landmark_id: moved(block) for landmark_id, block in self.landmarks.items()}

        self._discard_stack("reordering")
        self._store.reorder(permutation)
        self.platform_indices = platform
        self.landmarks = landmarks
        logger.debug("State reordered, platform now at %s", platform)

    def _discard_stack(self, reason: str, affected: Optional[IndexSet] = None) -> None:
        """Drop pending innovations referring to states that are about to change meaning."""
        if not self._stack:
            return
        if affected is not None and all(innovation.ia_rsl.is_disjoint_from(affected)
                                        for innovation in self._stack):
            return
        logger.warning("Discarding %d stacked innovations invalidated by %s", len(self._stack), reason)
        self._stack.clear()

    def _release(self, removed: IndexSet) -> None:
        self._discard_stack("state removal")
        self._store.shrink_by(removed)
        self.platform_indices = self.platform_indices.difference(removed).shifted_after_removal(removed)
        for landmark_id, block in list(self.landmarks.items()):
            remaining = block.difference(removed)
            if len(remaining) == 0:
                del self.landmarks[landmark_id]
                logger.debug("Landmark %d dropped, all of its states were removed", landmark_id)
            else:
                self.landmarks[landmark_id] = remaining.shifted_after_removal(removed)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def check_consistency(self) -> Tuple[float, float]:
        """
        Measure the symmetry and definiteness of P.

        Returns:
            Tuple of (max |P - Pᵀ|, smallest eigenvalue of P)
        """
        P = self._store.P
        if P.size == 0:
            return 0.0, 0.0
        asymmetry = float(np.max(np.abs(P - P.T)))
        min_eigenvalue = float(np.min(np.linalg.eigvalsh(_symmetrize(P))))
        return asymmetry, min_eigenvalue

    def _check_divergence(self) -> None:
        """
        Monitor the filter for divergence.

        Divergence indicators:
        - Covariance trace exceeding threshold
        - Negative variances on the diagonal
        """
        diagonal = np.diag(self._store.P)
        trace = float(np.sum(diagonal))
        if trace > self.configuration.divergence_threshold:
            if self._filter_state != FilterState.DIVERGING:
                logger.warning("Filter divergence detected: trace=%.2e", trace)
            self._filter_state = FilterState.DIVERGING
            return
        if diagonal.size and np.min(diagonal) < -self.configuration.negative_variance_tolerance:
            warnings.warn(f"Negative variance in covariance diagonal: {np.min(diagonal):.3e}")
            self._filter_state = FilterState.ILL_CONDITIONED
            return

        if self._filter_state in (FilterState.DIVERGING, FilterState.ILL_CONDITIONED):
            self._filter_state = FilterState.RECOVERING
        elif self._correction_count > 0:
            self._filter_state = FilterState.CONVERGED

    def get_diagnostics(self) -> FilterDiagnostics:
        """
        Generate filter diagnostics.

        Returns:
            FilterDiagnostics object with current filter status
        """
        P = self._store.P
        try:
            condition_number = float(np.linalg.cond(P)) if P.size else 0.0
        except np.linalg.LinAlgError:
            condition_number = float('inf')
        return FilterDiagnostics(
            size=self.size,
            landmark_count=len(self.landmarks),
            covariance_trace=float(np.trace(P)),
            condition_number=condition_number,
            mahalanobis_distance=self._last_mahalanobis,
            prediction_count=self._prediction_count,
            correction_count=self._correction_count,
            rejection_count=self._rejection_count,
            filter_state=self._filter_state,
        )

    def get_state_dict(self) -> Dict[str, Any]:
        """
        Get state and diagnostic information as a dictionary.

        Returns:
            Dictionary of plain Python values
        """
        diagnostics = self.get_diagnostics()
        return {
            'x': self._store.x.tolist(),
            'platform': self.mean_at(self.platform_indices).tolist(),
            'platform_uncertainty': self.get_uncertainty(self.platform_indices).tolist(),
            'landmarks': {landmark_id: self.mean_at(ia).tolist()
                          for landmark_id, ia in self.landmarks.items()},
            'size': diagnostics.size,
            'covariance_trace': diagnostics.covariance_trace,
            'prediction_count': diagnostics.prediction_count,
            'correction_count': diagnostics.correction_count,
            'rejection_count': diagnostics.rejection_count,
            'filter_state': diagnostics.filter_state.value,
        }

    def reset(self, initial_state: Optional[np.ndarray] = None,
              initial_covariance: Optional[np.ndarray] = None) -> None:
        """
        Reset the filter to the platform block only.

        Args:
            initial_state: Optional new platform mean
            initial_covariance: Optional new platform covariance
        """
        self._store = StateStore(len(self.platform_indices), initial_state, initial_covariance)
        self.landmarks.clear()
        self._stack.clear()
        self._prediction_count = 0
        self._correction_count = 0
        self._rejection_count = 0
        self._last_mahalanobis = 0.0
        self._filter_state = FilterState.INITIALIZING
        logger.info("Indirect EKF reset")

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _as_index_set(ia) -> IndexSet:
        return ia if isinstance(ia, IndexSet) else IndexSet(ia)

    def _resolve_iax(self, iax) -> IndexSet:
        if iax is None:
            return self._store.all_indices()
        iax = self._as_index_set(iax)
        self._store.check(iax)
        return iax

    @staticmethod
    def _require_subset(ia: IndexSet, iax: IndexSet, name: str, parent: str) -> None:
        if not ia.is_subset_of(iax):
            raise ValueError(f"{name} {ia!r} is not contained in {parent} {iax!r}")

    def _as_covariance(self, name: str, value, size: int) -> np.ndarray:
        """Check shape and symmetry of a noise or innovation covariance."""
        matrix = as_matrix(name, value, (size, size))
        asymmetry = float(np.max(np.abs(matrix - matrix.T))) if matrix.size else 0.0
        tolerance = self.configuration.symmetry_tolerance * max(1.0, float(np.max(np.abs(matrix))) if matrix.size else 1.0)
        if asymmetry > tolerance:
            if self.configuration.strict_checks:
                raise ValueError(f"{name} must be symmetric (max asymmetry {asymmetry:.2e})")
            warnings.warn(f"{name} is not symmetric (max asymmetry {asymmetry:.2e}), symmetrizing")
            matrix = _symmetrize(matrix)
        return matrix

    def __repr__(self) -> str:
        return (f"ExtendedKalmanFilterIndirect(size={self.size}, "
                f"landmarks={len(self.landmarks)}, state={self._filter_state.value})")
