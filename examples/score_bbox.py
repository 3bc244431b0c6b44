#!/usr/bin/env python3
"""
Habitat Suitability for a Bounding Box.

Fetches soil, land cover and weather for one area, scores every cell on the
worker thread and writes the result.

Pipeline:
1. Fetch soil properties, taxonomy land cover and recent weather
2. Replace any failed layer with synthetic data (result marked degraded)
3. Score every cell and classify it Ideal / Caution / Poor
4. Save a JSON summary and GeoTIFFs of scores and categories

Usage:
    # Area inside the bundled SoilGrids tile
    python examples/score_bbox.py --bbox -121.8 38.2 -121.4 38.6

    # Procedural data only (no network, no local tiles)
    python examples/score_bbox.py --bbox -2 52 -1 53 --mock-data

    # Larger grid without the weather overlay
    python examples/score_bbox.py --bbox -121.8 38.2 -121.4 38.6 --size 128 --no-weather
"""

import sys
import argparse
import json
import logging
from pathlib import Path

import numpy as np
import rasterio
from rasterio.transform import from_bounds

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src import config
from src.habitat import (
    BoundingBox,
    SoilGridsClient,
    SuitabilityPipeline,
    TaxonomyLandCoverClient,
    WeatherClient,
)

logger = logging.getLogger(__name__)


def save_band(path: Path, values: np.ndarray, bbox: BoundingBox, width: int, height: int, nodata=None):
    """Write one flat row-major grid as a single-band EPSG:4326 GeoTIFF."""
    data = values.reshape(height, width)
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=height,
        width=width,
        count=1,
        dtype=data.dtype,
        crs="EPSG:4326",
        transform=from_bounds(*bbox.as_tuple(), width, height),
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
    logger.info(f"Saved {path}")


def main():
    parser = argparse.ArgumentParser(description="Score habitat suitability for a bounding box")
    parser.add_argument(
        "--bbox",
        nargs=4,
        type=float,
        required=True,
        metavar=("MIN_LON", "MIN_LAT", "MAX_LON", "MAX_LAT"),
    )
    parser.add_argument("--size", type=int, default=config.SAMPLE_GRID_SIZE, help="Grid cells per side")
    parser.add_argument("--output-dir", type=Path, default=Path("outputs"))
    parser.add_argument("--mock-data", action="store_true", help="Use procedural data only")
    parser.add_argument("--no-weather", action="store_true", help="Skip the weather overlay")
    parser.add_argument("--timeout", type=float, default=120.0, help="Seconds to wait for the result")
    parser.add_argument("--log-level", default=config.DEFAULT_LOG_LEVEL)
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s: %(message)s",
    )

    bbox = BoundingBox(*args.bbox)
    include_weather = not args.no_weather
    use_mock = args.mock_data or config.USE_MOCK_DATA

    pipeline = SuitabilityPipeline(
        soil_client=SoilGridsClient(use_mock=use_mock),
        land_cover_client=TaxonomyLandCoverClient(use_mock=use_mock),
        weather_client=WeatherClient(enabled=include_weather, use_mock=use_mock),
        width=args.size,
        height=args.size,
        include_weather=include_weather,
    )
    try:
        pipeline.request_update(bbox)
        result = pipeline.wait_for_result(timeout=args.timeout)
    finally:
        pipeline.close()

    if result is None:
        logger.error("No suitability result (scoring failed or timed out)")
        return 1

    logger.info("=" * 70)
    logger.info(f"Suitability for {bbox.as_tuple()} ({result.width}x{result.height})")
    logger.info(f"  Mean score: {result.average_score:.1f} over {result.sample_count} cells")
    for name, count in result.counts_by_category.items():
        logger.info(f"  {name:>8}: {count}")
    if result.degraded:
        logger.warning("  Some layers used synthetic data")
    logger.info("=" * 70)

    args.output_dir.mkdir(parents=True, exist_ok=True)
    summary = {
        "bbox": list(bbox.as_tuple()),
        "width": result.width,
        "height": result.height,
        "average_score": result.average_score,
        "sample_count": result.sample_count,
        "counts_by_category": result.counts_by_category,
        "degraded": result.degraded,
        "weather_overlay": include_weather,
        "elapsed_s": result.elapsed_s,
    }
    summary_path = args.output_dir / "suitability_summary.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)
    logger.info(f"Saved {summary_path}")

    save_band(args.output_dir / "suitability_scores.tif", result.scores, bbox, result.width, result.height)
    save_band(
        args.output_dir / "suitability_categories.tif", result.categories, bbox, result.width, result.height
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
