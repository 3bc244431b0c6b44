"""
Suitability computation and the worker thread that runs it.

compute_suitability is a pure function of one SuitabilityRequest. The
SuitabilityWorker runs it on a dedicated thread, fed by a request queue and
reporting on a completion queue, so callers keep fetching and reacting while
a grid is scored. Requests carry strictly increasing ids; ResultConsumer
drops any result older than the newest one it has already applied.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import numpy as np

from src.habitat.grid import BoundingBox, LandCoverGrid, SoilGrid, WeatherGrid
from src.scoring import (
    RunningAverage,
    WeatherOverlay,
    compute_soil_score,
    compute_weather_overlay,
    count_categories,
    derive_land_cover_classes,
    map_score_to_category,
    woodland_mask,
)

logger = logging.getLogger(__name__)


@dataclass
class SuitabilityRequest:
    """
    Inputs for one scoring run.

    Attributes:
        soil: Soil property grid
        land_cover: Land-cover code grid
        weather: Weather grid, or None
        bbox: Area the grids cover
        request_id: Strictly increasing request number
        include_weather: Apply the weather overlay when a weather grid is present
        degraded: Some layer is synthetic fallback data
    """

    soil: SoilGrid
    land_cover: LandCoverGrid
    weather: Optional[WeatherGrid]
    bbox: BoundingBox
    request_id: int
    include_weather: bool = True
    degraded: bool = False

    def copy(self) -> "SuitabilityRequest":
        """Deep copy of every grid; the worker never sees caller-owned arrays."""
        return SuitabilityRequest(
            soil=self.soil.copy(),
            land_cover=self.land_cover.copy(),
            weather=self.weather.copy() if self.weather is not None else None,
            bbox=self.bbox,
            request_id=self.request_id,
            include_weather=self.include_weather,
            degraded=self.degraded,
        )


@dataclass
class SuitabilityResult:
    """Per-cell scores and categories plus summary statistics."""

    width: int
    height: int
    scores: np.ndarray
    categories: np.ndarray
    woodland_mask: np.ndarray
    weather_mask: np.ndarray
    sample_count: int
    average_score: float
    counts_by_category: Dict[str, int]
    request_id: int
    bbox: BoundingBox
    degraded: bool = False
    elapsed_s: float = 0.0


@dataclass
class SuitabilityFailure:
    """Delivered on the completion queue when compute_suitability raises."""

    request_id: int
    error: BaseException


def _common_size(request: SuitabilityRequest, weather: Optional[WeatherGrid]):
    grids = [request.soil, request.land_cover] + ([weather] if weather is not None else [])
    return min(g.width for g in grids), min(g.height for g in grids)


def compute_suitability(request: SuitabilityRequest) -> SuitabilityResult:
    """
    Score every cell of a request.

    All grids are clipped to their common minimum width/height. The weather
    overlay is applied only when ``include_weather`` is set and a weather
    grid is present.

    Args:
        request: Grids and metadata to score

    Returns:
        SuitabilityResult tagged with the request id and bbox
    """
    start = time.perf_counter()
    weather = request.weather if request.include_weather else None
    width, height = _common_size(request, weather)

    soil = request.soil.clip(width, height)
    land_cover = request.land_cover.clip(width, height)
    codes = land_cover.codes

    land_classes = derive_land_cover_classes(codes, width, height)
    breakdown = compute_soil_score(
        ph=soil.channel("phh2o"),
        orcdrc=soil.channel("orcdrc"),
        bdod=soil.channel("bdod"),
        sand=soil.channel("sand"),
        clay=soil.channel("clay"),
        silt=soil.channel("silt"),
    )
    scores = np.asarray(breakdown.overall, dtype=np.float64).reshape(-1)
    weather_mask = np.full(scores.shape, WeatherOverlay.NEUTRAL, dtype=np.uint8)

    if weather is not None and scores.size:
        weather = weather.clip(width, height)
        scores, weather_mask = compute_weather_overlay(scores, weather.precipitation, weather.temperature)
        scores = np.asarray(scores, dtype=np.float64).reshape(-1)
        weather_mask = np.asarray(weather_mask, dtype=np.uint8).reshape(-1)

    categories = np.asarray(map_score_to_category(scores, land_classes), dtype=np.uint8).reshape(-1)

    average = RunningAverage()
    average.add_many(scores)
    elapsed = time.perf_counter() - start

    result = SuitabilityResult(
        width=width,
        height=height,
        scores=scores.astype(np.float32),
        categories=categories,
        woodland_mask=woodland_mask(codes),
        weather_mask=weather_mask,
        sample_count=average.count,
        average_score=average.average,
        counts_by_category=count_categories(categories),
        request_id=request.request_id,
        bbox=request.bbox,
        degraded=request.degraded,
        elapsed_s=elapsed,
    )
    logger.debug(
        f"Request {request.request_id}: scored {width}x{height} in {elapsed * 1000:.1f}ms "
        f"(mean {result.average_score:.1f}, {result.counts_by_category})"
    )
    return result


Completion = Union[SuitabilityResult, SuitabilityFailure]

_STOP = object()


class SuitabilityWorker:
    """
    Dedicated scoring thread.

    Example:
        >>> worker = SuitabilityWorker()
        >>> worker.submit(request)
        >>> result = worker.completions.get()
        >>> worker.close()
    """

    def __init__(self, name: str = "suitability-worker"):
        self.requests: "queue.Queue[object]" = queue.Queue()
        self.completions: "queue.Queue[Completion]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._closed = False
        self._thread.start()

    def submit(self, request: SuitabilityRequest) -> None:
        """Queue a copy of ``request`` for scoring."""
        if self._closed:
            raise RuntimeError("SuitabilityWorker is closed")
        self.requests.put(request.copy())

    def _run(self) -> None:
        while True:
            item = self.requests.get()
            if item is _STOP:
                break
            try:
                completion: Completion = compute_suitability(item)
            except Exception as e:
                logger.error(f"Suitability computation failed for request {item.request_id}: {e}")
                completion = SuitabilityFailure(item.request_id, e)
            self.completions.put(completion)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the thread after the requests already queued."""
        if self._closed:
            return
        self._closed = True
        self.requests.put(_STOP)
        self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()


class ResultConsumer:
    """
    Applies worker completions in request order, last request wins.

    Attributes:
        latest: Most recently applied result
        last_applied_id: Highest request id applied so far
    """

    def __init__(
        self,
        on_result: Optional[Callable[[SuitabilityResult], None]] = None,
        on_failure: Optional[Callable[[SuitabilityFailure], None]] = None,
    ):
        self.on_result = on_result
        self.on_failure = on_failure
        self.latest: Optional[SuitabilityResult] = None
        self.last_applied_id = 0
        self.discarded = 0

    def accept(self, completion: Completion) -> bool:
        """
        Apply a completion unless it is stale.

        Returns:
            True if the completion was applied
        """
        if completion.request_id < self.last_applied_id:
            self.discarded += 1
            logger.debug(
                f"Discarding stale result {completion.request_id} (latest {self.last_applied_id})"
            )
            return False

        self.last_applied_id = completion.request_id
        if isinstance(completion, SuitabilityFailure):
            if self.on_failure is not None:
                self.on_failure(completion)
            return True

        self.latest = completion
        if self.on_result is not None:
            self.on_result(completion)
        return True

    def drain(self, completions: "queue.Queue[Completion]", timeout: Optional[float] = None) -> int:
        """
        Apply every completion currently available.

        Args:
            completions: Worker completion queue
            timeout: Seconds to wait for the first completion (None = don't wait)

        Returns:
            Number of completions applied
        """
        applied = 0
        block = timeout is not None
        while True:
            try:
                completion = completions.get(block=block, timeout=timeout)
            except queue.Empty:
                return applied
            block = False
            if self.accept(completion):
                applied += 1
