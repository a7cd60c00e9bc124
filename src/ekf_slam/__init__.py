"""
EKF-SLAM: Indirect Extended Kalman Filter for Simultaneous Localization and Mapping

A scientific Python package implementing the covariance mechanics of an
EKF whose single, growable state is shared by a platform, its sensors and
the map landmarks.

This package implements:
- Index-set addressing of state sub-blocks
- A growable mean/covariance store with block removal and compaction
- Prediction, correction and stacked (batched) correction
- Landmark initialization from fully and partially observable back-projections
- Landmark reparametrization by change of variables
- Reference observation models producing the innovation contract

Observation models, data association and map management stay outside the
core: any producer of an Innovation can drive the filter.
"""

from .errors import (
    FilterError,
    IndexOutOfRangeError,
    InnovationRejectedError,
    NumericalInstabilityError,
    ShapeMismatchError,
)
from .state import IndexSet, StateStore
from .fusion import (
    BackProjection,
    ExtendedKalmanFilterIndirect,
    FilterConfiguration,
    FilterState,
    Innovation,
)

__version__ = "1.0.0"
__author__ = "EKF-SLAM Team"

__all__ = [
    "IndexSet",
    "StateStore",
    "ExtendedKalmanFilterIndirect",
    "FilterConfiguration",
    "FilterState",
    "Innovation",
    "BackProjection",
    "FilterError",
    "ShapeMismatchError",
    "IndexOutOfRangeError",
    "NumericalInstabilityError",
    "InnovationRejectedError"
]
