"""
Exceptions raised by STAC.
"""


class StacError(Exception):
    """Base class for STAC errors."""
    pass


class DimensionMismatchError(StacError, ValueError):
    """Raised when boolean vectors of different lengths are compared or stored together."""
    pass


class TrainingInProgressError(StacError):
    """Raised when a dataset replacement times out waiting for a pending run."""
    pass


class DatasetError(StacError, ValueError):
    """Raised for malformed dataset files, coordinates or labels."""
    pass


class TrainingFailedError(StacError):
    """Raised by wait_until_done when the last training run raised."""
    pass
