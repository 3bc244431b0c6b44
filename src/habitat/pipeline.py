"""
Caller-side request pipeline.

SuitabilityPipeline turns a viewport bounding box into a scoring request:

1. Allocate a strictly increasing request id
2. Cancel whatever the previous request still has in flight
3. Fetch soil, land cover and weather concurrently
4. Replace failed layers with synthetic data and mark the request degraded
5. Hand copies of the grids to the SuitabilityWorker

Results arrive on the worker's completion queue and are applied by a
ResultConsumer, which drops anything older than the newest applied result.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from src import config
from src.habitat.errors import FetchCancelled
from src.habitat.grid import BoundingBox, LandCoverGrid, SoilGrid, WeatherGrid
from src.habitat.landcover import TaxonomyLandCoverClient
from src.habitat.raster_client import GridClient
from src.habitat.soilgrids import SoilGridsClient
from src.habitat.weather import WeatherClient
from src.habitat.worker import ResultConsumer, SuitabilityRequest, SuitabilityResult, SuitabilityWorker

logger = logging.getLogger(__name__)


@dataclass
class FetchedLayers:
    """Grids fetched for one request, before hand-off to the worker."""

    soil: SoilGrid
    land_cover: LandCoverGrid
    weather: Optional[WeatherGrid]
    degraded: bool


class SuitabilityPipeline:
    """
    Fetch, fall back and submit suitability requests for a viewport.

    Args:
        soil_client: Soil property client (default: SoilGridsClient())
        land_cover_client: Land-cover client (default: TaxonomyLandCoverClient())
        weather_client: Weather client (default: WeatherClient())
        width: Grid columns per request
        height: Grid rows per request
        include_weather: Fetch weather and apply the overlay
        worker: Scoring worker (default: a new SuitabilityWorker)
        consumer: Result consumer (default: ResultConsumer())

    Example:
        >>> pipeline = SuitabilityPipeline()
        >>> pipeline.request_update(BoundingBox(-2.0, 51.0, -1.0, 52.0))
        1
        >>> result = pipeline.wait_for_result(timeout=30)
        >>> pipeline.close()
    """

    def __init__(
        self,
        soil_client: Optional[GridClient[SoilGrid]] = None,
        land_cover_client: Optional[GridClient[LandCoverGrid]] = None,
        weather_client: Optional[GridClient[WeatherGrid]] = None,
        width: int = config.SAMPLE_GRID_SIZE,
        height: int = config.SAMPLE_GRID_SIZE,
        include_weather: bool = config.ENABLE_WEATHER_OVERLAY,
        worker: Optional[SuitabilityWorker] = None,
        consumer: Optional[ResultConsumer] = None,
    ):
        self.soil_client = soil_client or SoilGridsClient()
        self.land_cover_client = land_cover_client or TaxonomyLandCoverClient()
        self.weather_client = weather_client or WeatherClient(enabled=include_weather)
        self.width = width
        self.height = height
        self.include_weather = include_weather
        self.worker = worker or SuitabilityWorker()
        self.consumer = consumer or ResultConsumer()

        self._lock = threading.Lock()
        self._last_request_id = 0
        self._last_request: Optional[SuitabilityRequest] = None
        self._fan_out = ThreadPoolExecutor(max_workers=3, thread_name_prefix="pipeline-fetch")

    @property
    def clients(self):
        return (self.soil_client, self.land_cover_client, self.weather_client)

    @property
    def last_request_id(self) -> int:
        with self._lock:
            return self._last_request_id

    def _next_request_id(self) -> int:
        with self._lock:
            self._last_request_id += 1
            return self._last_request_id

    def _is_current(self, request_id: int) -> bool:
        with self._lock:
            return request_id == self._last_request_id

    def cancel_pending(self) -> None:
        """Abort every outstanding fetch on all clients."""
        for client in self.clients:
            client.cancel_pending()

    def fetch_layers(self, bbox: BoundingBox) -> FetchedLayers:
        """
        Fetch all layers for ``bbox`` concurrently, applying fallbacks.

        Raises:
            FetchCancelled: Any layer fetch was cancelled
        """
        soil_future = self._fan_out.submit(
            self.soil_client.fetch_grid_with_fallback, bbox, self.width, self.height
        )
        land_future = self._fan_out.submit(
            self.land_cover_client.fetch_grid_with_fallback, bbox, self.width, self.height
        )
        weather_future = None
        if self.include_weather:
            weather_future = self._fan_out.submit(
                self.weather_client.fetch_grid_with_fallback, bbox, self.width, self.height
            )

        soil, soil_fallback = soil_future.result()
        land_cover, land_fallback = land_future.result()
        weather, weather_fallback = weather_future.result() if weather_future else (None, False)

        degraded = soil_fallback or land_fallback or weather_fallback
        return FetchedLayers(soil, land_cover, weather, degraded)

    def request_update(self, bbox: BoundingBox) -> int:
        """
        Start a new suitability request for ``bbox``.

        Cancels the previous request's fetches, waits for this request's
        layers and submits them to the worker.

        Returns:
            The request id

        Raises:
            FetchCancelled: The request was cancelled or superseded before
                its layers were ready; nothing was submitted
        """
        request_id = self._next_request_id()
        self.cancel_pending()
        logger.info(f"Request {request_id}: fetching layers for {bbox.as_tuple()}")

        try:
            layers = self.fetch_layers(bbox)
        except FetchCancelled:
            logger.info(f"Request {request_id} cancelled")
            raise

        if not self._is_current(request_id):
            logger.info(f"Request {request_id} superseded before submission")
            raise FetchCancelled(f"Request {request_id} superseded")

        if layers.degraded:
            logger.warning(f"Request {request_id}: using synthetic data for some layers")

        request = SuitabilityRequest(
            soil=layers.soil,
            land_cover=layers.land_cover,
            weather=layers.weather,
            bbox=bbox,
            request_id=request_id,
            include_weather=self.include_weather and layers.weather is not None,
            degraded=layers.degraded,
        )
        self._submit(request)
        return request_id

    def refresh(self, bbox: Optional[BoundingBox] = None) -> Optional[int]:
        """
        Re-score the last fetched grids under a new request id.

        Only applies when ``bbox`` is omitted or matches the last request's
        box within 1e-3 degrees.

        Returns:
            The new request id, or None if there is nothing to refresh
        """
        with self._lock:
            last = self._last_request
        if last is None:
            return None
        if bbox is not None and not bbox.almost_equal(last.bbox):
            return None

        request = last.copy()
        request.request_id = self._next_request_id()
        logger.debug(f"Refreshing request {last.request_id} as {request.request_id}")
        self._submit(request)
        return request.request_id

    def _submit(self, request: SuitabilityRequest) -> None:
        # The worker copies on submit; keep our own copy so cached grids stay untouched
        stored = request.copy()
        with self._lock:
            self._last_request = stored
        self.worker.submit(stored)

    def poll(self) -> Optional[SuitabilityResult]:
        """Apply any finished results and return the latest one."""
        self.consumer.drain(self.worker.completions)
        return self.consumer.latest

    def wait_for_result(self, timeout: Optional[float] = None) -> Optional[SuitabilityResult]:
        """
        Block until the latest submitted request has been applied.

        Returns:
            Latest applied result, or None on timeout or failure
        """
        with self._lock:
            target = self._last_request.request_id if self._last_request else 0
        deadline = None if timeout is None else time.monotonic() + timeout
        while self.consumer.last_applied_id < target:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            try:
                completion = self.worker.completions.get(timeout=remaining)
            except queue.Empty:
                break
            self.consumer.accept(completion)
        latest = self.consumer.latest
        if latest is None or latest.request_id != target:
            return None
        return latest

    def close(self) -> None:
        self.cancel_pending()
        self._fan_out.shutdown(wait=False)
        self.worker.close()
        for client in self.clients:
            client.close()
