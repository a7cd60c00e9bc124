"""
Error taxonomy for the indirect EKF.

Every filter operation validates shapes and indices before touching the
state, so any of the exceptions below leaves ``x`` and ``P`` unchanged.

Hierarchy:
    FilterError
    ├── ShapeMismatchError        (also a ValueError)  fatal precondition
    ├── IndexOutOfRangeError      (also an IndexError) fatal precondition
    └── NumericalInstabilityError (also ArithmeticError) recoverable
        └── InnovationRejectedError                    recoverable

A control loop embedding the filter treats ``NumericalInstabilityError`` as
"observation rejected, filter state unchanged" and carries on.
"""

from typing import Optional


class FilterError(Exception):
    """Base class for all errors raised by the filter core."""


class ShapeMismatchError(FilterError, ValueError):
    """A Jacobian, covariance or vector disagrees with its declared IndexSet."""


class IndexOutOfRangeError(FilterError, IndexError):
    """An index is negative or not smaller than the current state size."""


class NumericalInstabilityError(FilterError, ArithmeticError):
    """
    An update could not be applied safely.

    Raised for singular or ill-conditioned innovation covariances and for
    covariance updates that would leave a negative variance on the diagonal.

    Attributes:
        condition_number: Condition number of the offending matrix, if known
    """

    def __init__(self, message: str, condition_number: Optional[float] = None):
        super().__init__(message)
        self.condition_number = condition_number


class InnovationRejectedError(NumericalInstabilityError):
    """
    The innovation failed the chi-squared consistency gate.

    Attributes:
        mahalanobis_distance: Squared Mahalanobis distance of the innovation
        threshold: Gate threshold it was compared against
    """

    def __init__(self, message: str, mahalanobis_distance: float, threshold: float):
        super().__init__(message)
        self.mahalanobis_distance = mahalanobis_distance
        self.threshold = threshold
