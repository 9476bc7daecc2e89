"""Exceptions raised by the DFM estimation routines."""


class DimensionMismatchError(ValueError):
    """System matrices and data have inconsistent shapes."""


class InvalidRestrictionError(ValueError):
    """Unknown covariance restriction or estimation method."""
