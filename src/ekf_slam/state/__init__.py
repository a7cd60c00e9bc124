"""
State storage for the indirect EKF.

This module provides the index-set addressing primitive and the growable
mean/covariance arena shared by the platform, its sensors and the map.
"""

from .indices import IndexSet
from .store import StateStore

__all__ = [
    "IndexSet",
    "StateStore"
]
