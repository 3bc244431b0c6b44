"""
Shared machinery for clients that turn (bbox, width, height) into a grid.

Provides:
- fetch_with_backoff: HTTP GET with exponential backoff on 429/5xx
- build_wcs_url / load_source_dataset: locate and decode a GeoTIFF source
- wait_for: block on a Future until it completes or a CancelToken fires
- LazyDataset: one-time, cancellable, reference-counted source load
- GridClient: cached, de-duplicated fetch_grid() with synthetic fallback

Clients run their fetches on a thread pool so that the soil, land-cover and
weather requests of one viewport overlap. Scoring never runs here.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Generic, Optional, Tuple, TypeVar
from urllib.parse import urlencode, urlparse

import requests

from src import config
from src.habitat.cache import CancelToken, InFlightEntry, InFlightTable, TimedCache
from src.habitat.errors import (
    FetchCancelled,
    OutOfExtentError,
    RasterRequestError,
    is_cancellation,
)
from src.habitat.geotiff import decode_geotiff, decoding, ensure_geotiff_response, extract_geotiff_payload
from src.habitat.grid import BoundingBox, RasterGrid
from src.habitat.resample import SourceDataset

logger = logging.getLogger(__name__)

G = TypeVar("G", bound=RasterGrid)
T = TypeVar("T")

RETRYABLE_STATUS = 429


def _is_retryable(status_code: int) -> bool:
    return status_code == RETRYABLE_STATUS or status_code >= 500


def fetch_with_backoff(
    session: requests.Session,
    url: str,
    token: CancelToken,
    source: str,
    params=None,
    max_retries: int = config.MAX_RETRY_ATTEMPTS,
    base_delay: float = config.RETRY_BASE_DELAY_S,
    timeout: float = config.REQUEST_TIMEOUT_S,
) -> requests.Response:
    """
    GET ``url``, retrying rate-limit and server errors with exponential backoff.

    Delays are ``base_delay * 2**attempt`` and are interrupted by ``token``.
    Other non-2xx statuses fail immediately.

    Args:
        session: requests session to issue the call on
        url: Request URL
        token: Cancellation token for this fetch
        source: Service name used in error messages
        params: Optional query parameters
        max_retries: Retries after the first attempt
        base_delay: First backoff delay in seconds
        timeout: Per-request timeout in seconds

    Returns:
        Successful response

    Raises:
        RasterRequestError: Network failure, permanent HTTP error, or retries exhausted
        FetchCancelled: Token fired before or between attempts
    """
    headers = {"User-Agent": config.USER_AGENT}
    attempt = 0
    while True:
        token.raise_if_cancelled()
        try:
            response = session.get(url, params=params, headers=headers, timeout=timeout)
        except requests.exceptions.RequestException as e:
            token.raise_if_cancelled()
            raise RasterRequestError(f"{source} request failed: {e}") from e
        token.raise_if_cancelled()

        if response.ok:
            return response

        status = response.status_code
        if attempt >= max_retries:
            raise RasterRequestError(
                f"{source} request failed after {attempt + 1} attempts: {status}", status
            )
        if not _is_retryable(status):
            raise RasterRequestError(f"{source} request failed: {status}", status)

        delay = base_delay * 2 ** attempt
        logger.info(f"{source} returned {status}; retrying in {delay:.2f}s (attempt {attempt + 1})")
        token.wait(delay)
        attempt += 1


def build_wcs_url(
    base: str,
    coverage_id: str,
    bbox: BoundingBox,
    width: int,
    height: int,
    fmt: str = "GEOTIFF_FLOAT32",
) -> str:
    """
    WCS 2.0.1 GetCoverage URL for ``coverage_id`` clipped to ``bbox``.

    Example:
        >>> url = build_wcs_url("https://example.org/wcs", "phh2o_0-5cm_mean",
        ...                     BoundingBox(-2, 51, -1, 52), 64, 64)
        >>> "SUBSET=Long%28-2%2C-1%29" in url
        True
    """
    params = [
        ("SERVICE", "WCS"),
        ("REQUEST", "GetCoverage"),
        ("VERSION", "2.0.1"),
        ("COVERAGEID", coverage_id),
        ("FORMAT", fmt),
        ("SUBSETTINGCRS", "EPSG:4326"),
        ("SUBSET", f"Long({bbox.min_lon:g},{bbox.max_lon:g})"),
        ("SUBSET", f"Lat({bbox.min_lat:g},{bbox.max_lat:g})"),
        ("SCALESIZE", f"Long({int(width)})"),
        ("SCALESIZE", f"Lat({int(height)})"),
    ]
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode(params)}"


def is_remote(source: str) -> bool:
    return urlparse(str(source)).scheme in ("http", "https")


def load_source_dataset(
    session: requests.Session,
    source: str,
    token: CancelToken,
    source_name: str,
    coverage_id: Optional[str] = None,
) -> SourceDataset:
    """
    Read a GeoTIFF source from a local path or an HTTP(S) URL and decode it.

    Args:
        session: requests session used for remote sources
        source: Local file path or URL
        token: Cancellation token for the load
        source_name: Service name used in error messages
        coverage_id: Coverage identifier used in error messages

    Returns:
        Decoded SourceDataset
    """
    if is_remote(source):
        logger.info(f"Downloading {source_name} raster: {source}")
        response = fetch_with_backoff(session, source, token, source_name)
        payload = response.content
        content_type = response.headers.get("Content-Type")
    else:
        path = Path(source)
        logger.info(f"Reading {source_name} raster: {path}")
        try:
            payload = path.read_bytes()
        except OSError as e:
            raise RasterRequestError(f"{source_name} raster could not be read: {e}") from e
        content_type = None

    token.raise_if_cancelled()
    with decoding(source_name, coverage_id):
        payload = extract_geotiff_payload(payload)
    ensure_geotiff_response(source_name, payload, content_type, coverage_id)
    return decode_geotiff(payload, source_name, coverage_id)


def require_overlap(dataset: SourceDataset, bbox: BoundingBox, source_name: str) -> None:
    """Raise OutOfExtentError if ``bbox`` does not touch the dataset footprint."""
    if not dataset.bounds.intersects(bbox):
        raise OutOfExtentError(
            f"{source_name} dataset {dataset.bounds.as_tuple()} does not cover {bbox.as_tuple()}"
        )


def wait_for(future: "Future[T]", token: CancelToken) -> T:
    """
    Wait for ``future`` unless ``token`` is cancelled first.

    Raises:
        FetchCancelled: Token fired before the future completed
    """
    wake = threading.Event()
    token.add_callback(wake.set)
    future.add_done_callback(lambda _: wake.set())
    wake.wait()
    if token.cancelled:
        raise FetchCancelled()
    return future.result()


class LazyDataset(Generic[T]):
    """
    A source dataset loaded at most once and shared by every resample request.

    The load runs on a private worker thread. Each ``acquire`` registers a
    waiter; when the last waiter is cancelled while the load is still
    running, the load itself is cancelled. ``invalidate`` always aborts the
    load and drops any loaded value.
    """

    def __init__(self, name: str, loader: Callable[[CancelToken], T]):
        """
        Args:
            name: Label used in log messages
            loader: Callable doing the actual load; must honour the token
        """
        self.name = name
        self._loader = loader
        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._load_token: Optional[CancelToken] = None
        self._waiters = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"dataset-{name}")

    @property
    def loaded(self) -> bool:
        with self._lock:
            future = self._future
        return future is not None and future.done() and future.exception() is None

    def start(self) -> "Future[T]":
        """Begin loading if nothing is loaded or loading; return the shared future."""
        with self._lock:
            if self._future is None:
                self._load_token = CancelToken()
                self._future = self._executor.submit(self._run, self._load_token)
                logger.debug(f"Started dataset load: {self.name}")
            return self._future

    def _run(self, token: CancelToken) -> T:
        try:
            value = self._loader(token)
            token.raise_if_cancelled()
            return value
        except BaseException as e:
            # A failed or cancelled load must not poison later requests
            with self._lock:
                if self._load_token is token:
                    self._future = None
                    self._load_token = None
            if token.cancelled and not isinstance(e, FetchCancelled):
                raise FetchCancelled() from e
            raise

    def acquire(self, token: CancelToken) -> T:
        """Wait for the dataset on behalf of one request."""
        token.raise_if_cancelled()
        future = self.start()
        with self._lock:
            self._waiters += 1
        try:
            return wait_for(future, token)
        finally:
            with self._lock:
                self._waiters -= 1
                abandon = (
                    token.cancelled
                    and self._waiters == 0
                    and not future.done()
                    and self._future is future
                )
                load_token = self._load_token if abandon else None
            if load_token is not None:
                logger.debug(f"No waiters left; cancelling dataset load: {self.name}")
                load_token.cancel()

    def abort_loading(self) -> bool:
        """
        Cancel a load that is still running; a finished load is kept.

        Returns:
            True if a running load was aborted
        """
        with self._lock:
            future, load_token = self._future, self._load_token
            if future is None or future.done() or load_token is None:
                return False
            self._future = None
            self._load_token = None
        logger.debug(f"Aborting dataset load: {self.name}")
        load_token.cancel()
        return True

    def invalidate(self) -> None:
        """Abort any running load and forget the loaded value."""
        with self._lock:
            load_token = self._load_token
            self._future = None
            self._load_token = None
        if load_token is not None:
            load_token.cancel()

    def close(self) -> None:
        """Abort any running load and stop the loader thread; the dataset cannot be reused."""
        self.abort_loading()
        self._executor.shutdown(wait=False)


def _completed(value: T) -> "Future[T]":
    future: Future = Future()
    future.set_result(value)
    return future


class GridClient(ABC, Generic[G]):
    """
    Cached, de-duplicated grid fetching.

    Subclasses implement ``_fetch`` (the real acquisition, honouring the
    token) and ``synthetic_grid`` (procedural stand-in of the same shape).

    Returned grids are owned by the cache; callers that hand them to the
    scoring worker must copy them first.
    """

    source_name = "Raster"

    def __init__(
        self,
        use_mock: bool = config.USE_MOCK_DATA,
        cache_ttl: float = config.CACHE_TTL_S,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.use_mock = use_mock
        self.cache: TimedCache[G] = TimedCache(cache_ttl)
        self.in_flight: InFlightTable[G] = InFlightTable()
        self.session = session or requests.Session()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.FETCH_WORKERS, thread_name_prefix=type(self).__name__
        )

    @abstractmethod
    def _fetch(self, bbox: BoundingBox, width: int, height: int, token: CancelToken) -> G:
        """Acquire a real grid for the request."""

    @abstractmethod
    def synthetic_grid(self, bbox: BoundingBox, width: int, height: int) -> G:
        """Deterministic procedural grid with the requested shape."""

    def submit(self, bbox: BoundingBox, width: int, height: int) -> "Future[G]":
        """
        Start (or join) a fetch and return its future.

        A cached grid comes back as an already-completed future; a request for
        a key that is already in flight receives that fetch's future.
        """
        if self.use_mock:
            return _completed(self.synthetic_grid(bbox, width, height))

        key = bbox.cache_key(width, height)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"{self.source_name} cache hit: {key}")
            return _completed(cached)

        token = CancelToken()
        entry, created = self.in_flight.setdefault(
            key, lambda: InFlightEntry(Future(), token.cancel)
        )
        if not created:
            logger.debug(f"{self.source_name} joined in-flight fetch: {key}")
            return entry.future

        logger.debug(f"{self.source_name} cache miss: {key}")
        self._executor.submit(self._complete, key, entry, bbox, width, height, token)
        return entry.future

    def _complete(
        self,
        key: str,
        entry: InFlightEntry[G],
        bbox: BoundingBox,
        width: int,
        height: int,
        token: CancelToken,
    ) -> None:
        future = entry.future
        if not future.set_running_or_notify_cancel():
            self.in_flight.delete(key, entry)
            return
        try:
            token.raise_if_cancelled()
            grid = self._fetch(bbox, width, height, token)
            token.raise_if_cancelled()
        except BaseException as e:
            self.in_flight.delete(key, entry)
            future.set_exception(e)
            return
        self.cache.set(key, grid)
        self.in_flight.delete(key, entry)
        future.set_result(grid)

    def fetch_grid(self, bbox: BoundingBox, width: int, height: int) -> G:
        """Blocking fetch; see ``submit``."""
        return self.submit(bbox, width, height).result()

    def fetch_grid_with_fallback(
        self, bbox: BoundingBox, width: int, height: int
    ) -> Tuple[G, bool]:
        """
        Fetch a grid, substituting synthetic data on failure.

        Returns:
            (grid, used_fallback)

        Raises:
            FetchCancelled: Cancellation is never replaced by fallback data
        """
        try:
            return self.fetch_grid(bbox, width, height), False
        except Exception as e:
            if is_cancellation(e):
                raise FetchCancelled() from e
            logger.warning(f"Falling back to synthetic {self.source_name} data: {e}")
            return self.synthetic_grid(bbox, width, height), True

    def cancel_pending(self) -> None:
        """Abort every in-flight fetch of this client."""
        cancelled = self.in_flight.cancel_all()
        if cancelled:
            logger.info(f"{self.source_name}: cancelled {cancelled} pending fetches")

    def close(self) -> None:
        self.cancel_pending()
        self._executor.shutdown(wait=False)
        self.session.close()
