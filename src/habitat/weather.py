"""
Recent-weather grids from an Open-Meteo style hourly forecast API.

Only one point is queried, the centre of the bounding box. The last 24 hours
of precipitation (summed) and temperature (averaged) seed a synthetic field
that is spread over the grid by synthesise_weather_grid.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from src import config
from src.habitat.cache import CancelToken
from src.habitat.errors import WeatherDataError
from src.habitat.grid import BoundingBox, WeatherGrid
from src.habitat.raster_client import GridClient, fetch_with_backoff
from src.habitat.synthetic import mock_weather
from src.habitat.weather_synthesis import synthesise_weather_grid

logger = logging.getLogger(__name__)

SOURCE_NAME = "Weather"

DEFAULT_PRECIP_MM = 2.8
DEFAULT_TEMP_C = 11.0
PRECIP_RANGE_MM = (0.0, 12.0)
TEMP_RANGE_C = (-5.0, 23.0)
HOURS_PER_DAY = 24
WEATHER_VARIATION = 0.38


@dataclass(frozen=True)
class WeatherSummary:
    """Area-level weather for the last day."""

    base_precip: float
    base_temp: float

    @property
    def seed(self) -> int:
        return int(round((self.base_precip + self.base_temp) * 1000))


def _finite_numbers(values: Iterable) -> List[float]:
    return [
        float(v)
        for v in values
        if isinstance(v, (int, float)) and not isinstance(v, bool) and np.isfinite(v)
    ]


def summarise_hourly(payload) -> WeatherSummary:
    """
    Reduce an hourly forecast payload to a WeatherSummary.

    Args:
        payload: Decoded JSON with ``hourly.precipitation`` and
            ``hourly.temperature_2m`` lists

    Returns:
        Summary with precipitation clamped to [0, 12] mm and temperature to
        [-5, 23] °C

    Raises:
        WeatherDataError: Payload is not an object or has no hourly block
    """
    if not isinstance(payload, dict):
        raise WeatherDataError("Invalid weather response payload")
    hourly = payload.get("hourly")
    if not isinstance(hourly, dict):
        raise WeatherDataError("Weather payload missing hourly data")

    precipitation = hourly.get("precipitation")
    temperature = hourly.get("temperature_2m")
    precip_values = _finite_numbers(precipitation if isinstance(precipitation, list) else [])
    temp_values = _finite_numbers(temperature if isinstance(temperature, list) else [])

    last_precip = precip_values[-HOURS_PER_DAY:]
    last_temp = temp_values[-HOURS_PER_DAY:]
    precip = sum(last_precip) if last_precip else DEFAULT_PRECIP_MM
    temp = sum(last_temp) / len(last_temp) if last_temp else DEFAULT_TEMP_C

    return WeatherSummary(
        base_precip=float(np.clip(precip, *PRECIP_RANGE_MM)),
        base_temp=float(np.clip(temp, *TEMP_RANGE_C)),
    )


class WeatherClient(GridClient[WeatherGrid]):
    """
    Weather grids for the scoring overlay.

    When the overlay is disabled the client behaves like mock mode and
    returns procedural weather without touching the network.
    """

    source_name = SOURCE_NAME

    def __init__(
        self,
        api_base: Optional[str] = config.WEATHER_API_BASE,
        enabled: bool = config.ENABLE_WEATHER_OVERLAY,
        use_mock: bool = config.USE_MOCK_DATA,
        **kwargs,
    ):
        super().__init__(use_mock=use_mock or not enabled, **kwargs)
        self.api_base = api_base
        self.enabled = enabled

    def fetch_summary(self, bbox: BoundingBox, token: CancelToken) -> WeatherSummary:
        if not self.api_base:
            return WeatherSummary(DEFAULT_PRECIP_MM, DEFAULT_TEMP_C)

        centre_lon, centre_lat = bbox.centre
        params = {
            "latitude": f"{centre_lat:.3f}",
            "longitude": f"{centre_lon:.3f}",
            "hourly": "temperature_2m,precipitation",
            "past_days": "1",
            "forecast_days": "1",
            "timezone": "UTC",
        }
        response = fetch_with_backoff(self.session, self.api_base, token, SOURCE_NAME, params=params)
        try:
            payload = response.json()
        except ValueError as e:
            raise WeatherDataError(f"Invalid weather response payload: {e}") from e

        summary = summarise_hourly(payload)
        logger.info(
            f"Weather at ({centre_lat:.3f}, {centre_lon:.3f}): "
            f"{summary.base_precip:.1f} mm, {summary.base_temp:.1f}°C"
        )
        return summary

    def _fetch(self, bbox: BoundingBox, width: int, height: int, token: CancelToken) -> WeatherGrid:
        summary = self.fetch_summary(bbox, token)
        return synthesise_weather_grid(
            bbox,
            width,
            height,
            summary.base_precip,
            summary.base_temp,
            seed=summary.seed,
            variation_scale=WEATHER_VARIATION,
        )

    def synthetic_grid(self, bbox: BoundingBox, width: int, height: int) -> WeatherGrid:
        return mock_weather(bbox, width, height)
