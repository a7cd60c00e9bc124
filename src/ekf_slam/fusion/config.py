"""
Tuning parameters for the indirect EKF.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class FilterConfiguration:
    """
    Numerical thresholds and checks applied by the filter.

    Attributes:
        symmetry_tolerance: Largest |M - Mᵀ| accepted for noise and innovation covariances
        max_condition_number: Innovation covariances above this are rejected as ill-conditioned
        negative_variance_tolerance: Diagonal entries of P below -tol after an update
                                     are treated as numerical instability
        divergence_threshold: Covariance trace above which the filter is flagged as diverging
        innovation_gate_probability: Chi-squared gate probability for corrections
                                     (None disables gating)
        strict_checks: Reject asymmetric input covariances instead of symmetrizing them
    """
    symmetry_tolerance: float = 1e-9
    max_condition_number: float = 1e12
    negative_variance_tolerance: float = 1e-12
    divergence_threshold: float = 1e6
    innovation_gate_probability: Optional[float] = None
    strict_checks: bool = True

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.symmetry_tolerance < 0:
            raise ValueError(f"Symmetry tolerance must be non-negative, got {self.symmetry_tolerance}")
        if self.max_condition_number <= 1.0:
            raise ValueError(f"Maximum condition number must exceed 1, got {self.max_condition_number}")
        if self.negative_variance_tolerance < 0:
            raise ValueError(
                f"Negative variance tolerance must be non-negative, got {self.negative_variance_tolerance}")
        if self.divergence_threshold <= 0:
            raise ValueError(f"Divergence threshold must be positive, got {self.divergence_threshold}")
        if self.innovation_gate_probability is not None and not 0.0 < self.innovation_gate_probability < 1.0:
            raise ValueError(
                f"Gate probability must be in (0, 1), got {self.innovation_gate_probability}")
