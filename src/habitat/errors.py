"""
Exception taxonomy for raster acquisition.

Transient HTTP failures are retried inside the clients and only surface as
RasterRequestError once the retry budget is spent. FetchCancelled is kept
apart from every other failure so callers can tell "the user moved on" from
"the data is unavailable".
"""

from concurrent.futures import CancelledError
from typing import Optional


class HabitatDataError(Exception):
    """Base class for failures while acquiring or decoding source data."""


class RasterRequestError(HabitatDataError):
    """HTTP request failed permanently or exhausted its retries."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RasterResponseError(HabitatDataError):
    """Payload was empty, not a GeoTIFF, or a service exception report."""


class RasterDecodeError(HabitatDataError):
    """GeoTIFF payload could not be parsed."""


class FetchCancelled(Exception):
    """An in-flight fetch was aborted by its caller."""

    def __init__(self, message: str = "Aborted"):
        super().__init__(message)


class GridShapeError(ValueError):
    """A grid channel does not hold width * height samples."""


class OutOfExtentError(HabitatDataError):
    """Requested area lies entirely outside a source dataset."""


class WeatherDataError(HabitatDataError):
    """Weather service answered with an unusable payload."""


def is_cancellation(error: BaseException) -> bool:
    """
    Whether an exception represents a caller-initiated abort.

    Example:
        >>> is_cancellation(FetchCancelled())
        True
        >>> is_cancellation(RuntimeError("boom"))
        False
    """
    if isinstance(error, FetchCancelled):
        return True
    # Futures cancelled before they started raise this instead
    return isinstance(error, CancelledError)
