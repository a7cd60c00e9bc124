"""
Observation models producing innovations for the indirect EKF.

These models live outside the filter core: the filter only consumes the
``Innovation`` and ``BackProjection`` they produce. Two models are provided:

LinearObservation:
    y = H x[ia] + v,  v ~ N(0, R)

    z       = y - H x[ia]
    INN_rsl = -H
    Z       = H P[ia, ia] Hᵀ + R

RangeBearingObservation (planar point landmark seen from a pose (px, py, θ)):
    dx, dy = lx - px, ly - py,   q = dx² + dy²
    h(x)   = [ √q,  atan2(dy, dx) - θ ]

    ∂h/∂[px, py, θ, lx, ly] = [ -dx/√q  -dy/√q   0   dx/√q  dy/√q ]
                              [  dy/q   -dx/q   -1  -dy/q   dx/q  ]

    Inverse model for initialization:
    l = [ px + r cos(θ + b),  py + r sin(θ + b) ]

Bearing residuals are wrapped to [-π, π).
"""

import numpy as np
from typing import Tuple

from ..fusion.innovation import BackProjection, Innovation, as_matrix, as_vector
from ..state.indices import IndexSet


def wrap_angle(angle):
    """Normalize angles to [-π, π)."""
    return np.mod(np.asarray(angle) + np.pi, 2 * np.pi) - np.pi


class LinearObservation:
    """
    Direct linear measurement of a block of the state.

    Attributes:
        indices: Observed states
        H: Measurement matrix, m × |indices|
        R: Measurement noise covariance, m × m
    """

    def __init__(self, indices: IndexSet, H: np.ndarray, R: np.ndarray):
        self.indices = indices if isinstance(indices, IndexSet) else IndexSet(indices)
        self.H = np.atleast_2d(np.asarray(H, dtype=float))
        if self.H.shape[1] != len(self.indices):
            raise ValueError(f"H must have {len(self.indices)} columns, got shape {self.H.shape}")
        self.R = as_matrix("R", R, (self.H.shape[0], self.H.shape[0]))

    @property
    def measurement_size(self) -> int:
        return self.H.shape[0]

    def compute_innovation(self, ekf, measurement: np.ndarray) -> Innovation:
        y = as_vector("Measurement", measurement, self.measurement_size)
        predicted = self.H @ ekf.mean_at(self.indices)
        Z = self.H @ ekf.cov_at(self.indices) @ self.H.T + self.R
        return Innovation(z=y - predicted, Z=Z, INN_rsl=-self.H, ia_rsl=self.indices)


class RangeBearingObservation:
    """
    Range and bearing to a planar point landmark.

    Attributes:
        pose_indices: Platform states (px, py, θ)
        R: Range/bearing noise covariance, 2 × 2
    """

    def __init__(self, pose_indices: IndexSet, R: np.ndarray):
        self.pose_indices = pose_indices if isinstance(pose_indices, IndexSet) else IndexSet(pose_indices)
        if len(self.pose_indices) != 3:
            raise ValueError(f"Planar pose requires 3 states, got {len(self.pose_indices)}")
        self.R = as_matrix("R", R, (2, 2))

    @staticmethod
    def predict_measurement(pose: np.ndarray, landmark: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Expected range/bearing and its Jacobian w.r.t. [pose, landmark].

        Returns:
            Tuple of (h, H) with h of shape (2,) and H of shape (2, 5)
        """
        dx, dy = landmark[0] - pose[0], landmark[1] - pose[1]
        q = dx * dx + dy * dy
        if q <= 0.0:
            raise ValueError("Landmark coincides with the platform position")
        r = np.sqrt(q)
        h = np.array([r, wrap_angle(np.arctan2(dy, dx) - pose[2])])
        H = np.array([
            [-dx / r, -dy / r, 0.0, dx / r, dy / r],
            [dy / q, -dx / q, -1.0, -dy / q, dx / q],
        ])
        return h, H

    def compute_innovation(self, ekf, measurement: np.ndarray,
                           landmark_indices: IndexSet = None) -> Innovation:
        """
        Innovation of a range/bearing measurement of one landmark.

        Args:
            ekf: Filter holding the pose and landmark states
            measurement: Observed [range, bearing]
            landmark_indices: States of the observed landmark (lx, ly)
        """
        if landmark_indices is None:
            raise ValueError("Range/bearing innovation requires the landmark indices")
        if not isinstance(landmark_indices, IndexSet):
            landmark_indices = IndexSet(landmark_indices)
        if len(landmark_indices) != 2:
            raise ValueError(f"Point landmark requires 2 states, got {len(landmark_indices)}")
        y = as_vector("Measurement", measurement, 2)

        pose = ekf.mean_at(self.pose_indices)
        landmark = ekf.mean_at(landmark_indices)
        h, H_local = self.predict_measurement(pose, landmark)

        ia_rsl = self.pose_indices.union(landmark_indices)
        H = np.zeros((2, len(ia_rsl)))
        H[:, self.pose_indices.positions_in(ia_rsl)] = H_local[:, :3]
        H[:, landmark_indices.positions_in(ia_rsl)] = H_local[:, 3:]

        z = y - h
        z[1] = wrap_angle(z[1])
        Z = H @ ekf.cov_at(ia_rsl) @ H.T + self.R
        return Innovation(z=z, Z=Z, INN_rsl=-H, ia_rsl=ia_rsl)

    def back_project(self, ekf, measurement: np.ndarray) -> BackProjection:
        """Landmark position and Jacobians from a single range/bearing measurement."""
        r, b = as_vector("Measurement", measurement, 2)
        px, py, theta = ekf.mean_at(self.pose_indices)
        angle = theta + b
        c, s = np.cos(angle), np.sin(angle)

        mean = np.array([px + r * c, py + r * s])
        G_rs = np.array([
            [1.0, 0.0, -r * s],
            [0.0, 1.0, r * c],
        ])
        G_y = np.array([
            [c, -r * s],
            [s, r * c],
        ])
        return BackProjection(mean=mean, G_rs=G_rs, ia_rs=self.pose_indices, G_y=G_y, R=self.R)
