"""
Contracts between the filter core and its external collaborators.

Observation models (one per sensor type) are not part of the core. The
filter only requires that they produce an ``Innovation``:

    z        observed - predicted, shape (m,)
    Z        innovation covariance, symmetric (m, m)
    INN_rsl  Jacobian of z w.r.t. the contributing states, shape (m, |ia_rsl|)
    ia_rsl   IndexSet of the contributing states

Sign convention: INN_rsl is the derivative of the innovation itself, so for
a measurement model y = h(x) + v it equals -∂h/∂x. With this convention the
gain is K = -P INN_rslᵀ Z⁻¹ and the update reads

    x ← x + K z
    P ← P + K INN_rsl P

Landmark initialization consumes a ``BackProjection``: the new landmark's
mean together with the Jacobians of the inverse observation function.
"""

import numpy as np
import scipy.linalg
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..errors import NumericalInstabilityError, ShapeMismatchError
from ..state.indices import IndexSet


def as_matrix(name: str, value, shape) -> np.ndarray:
    """
    Convert to a float matrix and check its shape.

    Raises:
        ShapeMismatchError: If the shape differs from ``shape``
    """
    matrix = np.atleast_2d(np.asarray(value, dtype=float))
    if matrix.shape != tuple(shape):
        raise ShapeMismatchError(f"{name} must have shape {tuple(shape)}, got {matrix.shape}")
    return matrix


def as_vector(name: str, value, size: int) -> np.ndarray:
    vector = np.asarray(value, dtype=float).reshape(-1)
    if vector.shape != (size,):
        raise ShapeMismatchError(f"{name} must have shape ({size},), got {np.shape(value)}")
    return vector


@dataclass
class Innovation:
    """
    Predicted-vs-observed mismatch produced by an observation model.

    Attributes:
        z: Innovation mean
        Z: Innovation covariance
        INN_rsl: Jacobian of the innovation w.r.t. the states in ``ia_rsl``
        ia_rsl: Contributing state indices
    """
    z: np.ndarray
    Z: np.ndarray
    INN_rsl: np.ndarray
    ia_rsl: IndexSet

    def __post_init__(self):
        if not isinstance(self.ia_rsl, IndexSet):
            self.ia_rsl = IndexSet(self.ia_rsl)
        self.z = np.asarray(self.z, dtype=float).reshape(-1)
        m = self.z.size
        self.Z = as_matrix("Innovation covariance Z", self.Z, (m, m))
        self.INN_rsl = as_matrix("Innovation Jacobian INN_rsl", self.INN_rsl, (m, len(self.ia_rsl)))

    @property
    def size(self) -> int:
        return int(self.z.size)

    def mahalanobis_distance(self) -> float:
        """
        Squared Mahalanobis distance d² = zᵀ Z⁻¹ z.

        Raises:
            NumericalInstabilityError: If Z is not positive definite
        """
        try:
            factor = scipy.linalg.cho_factor(self.Z)
        except np.linalg.LinAlgError as exc:
            raise NumericalInstabilityError(f"Innovation covariance is not positive definite: {exc}") from exc
        return float(self.z @ scipy.linalg.cho_solve(factor, self.z))

    @classmethod
    def stack(cls, innovations: Sequence['Innovation']) -> 'Innovation':
        """
        Concatenate innovations into a single one.

        Means are stacked vertically, covariances block-diagonally and the
        Jacobians row-wise, each scattered into the columns of the union of
        all contributing index sets.
        """
        if not innovations:
            raise ValueError("Cannot stack an empty list of innovations")

        ia_rsl = innovations[0].ia_rsl
        for innovation in innovations[1:]:
            ia_rsl = ia_rsl.union(innovation.ia_rsl)

        rows = []
        for innovation in innovations:
            jacobian = np.zeros((innovation.size, len(ia_rsl)))
            jacobian[:, innovation.ia_rsl.positions_in(ia_rsl)] = innovation.INN_rsl
            rows.append(jacobian)

        return cls(
            z=np.concatenate([innovation.z for innovation in innovations]),
            Z=scipy.linalg.block_diag(*[innovation.Z for innovation in innovations]),
            INN_rsl=np.vstack(rows),
            ia_rsl=ia_rsl,
        )


@dataclass
class BackProjection:
    """
    Output of an inverse observation model used to initialize a landmark.

    For partially observable initialization (e.g. a bearing-only sensor with
    an unknown depth) ``G_n`` and ``N`` describe the non-measured prior.

    Attributes:
        mean: Initial landmark parameters
        G_rs: Jacobian w.r.t. the robot and sensor states
        ia_rs: Indices of the robot and sensor states
        G_y: Jacobian w.r.t. the measurement
        R: Measurement noise covariance
        G_n: Optional Jacobian w.r.t. the non-measured prior
        N: Optional covariance of the non-measured prior
    """
    mean: np.ndarray
    G_rs: np.ndarray
    ia_rs: IndexSet
    G_y: np.ndarray
    R: np.ndarray
    G_n: Optional[np.ndarray] = None
    N: Optional[np.ndarray] = None

    def __post_init__(self):
        if not isinstance(self.ia_rs, IndexSet):
            self.ia_rs = IndexSet(self.ia_rs)
        self.mean = np.asarray(self.mean, dtype=float).reshape(-1)
        if (self.G_n is None) != (self.N is None):
            raise ValueError("G_n and N must be given together")

    @property
    def size(self) -> int:
        return int(self.mean.size)

    @property
    def partially_observable(self) -> bool:
        return self.G_n is not None


@runtime_checkable
class InnovationModel(Protocol):
    """Anything that turns a measurement and the current filter into an Innovation."""

    def compute_innovation(self, ekf, measurement: np.ndarray) -> Innovation:
        ...
