"""
Estimation core for ekf-slam.

This module implements the indirect Extended Kalman Filter together with
the contracts it shares with observation models.
"""

from .config import FilterConfiguration
from .innovation import BackProjection, Innovation, InnovationModel
from .kalman import ExtendedKalmanFilterIndirect, FilterDiagnostics, FilterState

__all__ = [
    "ExtendedKalmanFilterIndirect",
    "FilterConfiguration",
    "FilterDiagnostics",
    "FilterState",
    "Innovation",
    "InnovationModel",
    "BackProjection"
]
