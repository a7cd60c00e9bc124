"""
Observation models for ekf-slam.

The models turn raw measurements into the Innovation and BackProjection
contracts consumed by the filter core.
"""

from .observation import LinearObservation, RangeBearingObservation, wrap_angle

__all__ = [
    "LinearObservation",
    "RangeBearingObservation",
    "wrap_angle"
]
