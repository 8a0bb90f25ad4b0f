"""Exceptions and warnings raised while aggregating copy-number segments."""


class SegmentAggregationError(Exception):
    """Base class for input validation failures in segment aggregation."""


class ConfigurationError(SegmentAggregationError, ValueError):
    """Raised when both or neither of the two input modes are supplied."""


class PathNotFoundError(SegmentAggregationError, FileNotFoundError):
    """Raised when the directory holding per-patient fits cannot be found."""


class LengthMismatchError(SegmentAggregationError, ValueError):
    """Raised when patient names and filenames differ in length."""


class InvalidThresholdError(SegmentAggregationError, ValueError):
    """Raised when the purity threshold lies outside [0, 1]."""


class DuplicatePatientError(SegmentAggregationError, ValueError):
    """Raised when two fit files map to the same patient name."""


class MissingPatientsWarning(UserWarning):
    """Some requested patients were excluded from the aggregate."""
