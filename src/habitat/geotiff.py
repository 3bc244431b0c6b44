"""
GeoTIFF payload handling for raster downloads.

WCS endpoints answer failed requests with a 200/4xx carrying an XML or JSON
exception report instead of a raster. These helpers reject anything that is
not a TIFF, pull a readable message out of service exception bodies, unwrap
ZIP/gzip containers and decode the raster with rasterio.
"""

import gzip
import io
import logging
import re
import zipfile
from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np
from rasterio.io import MemoryFile

from src.habitat.errors import FetchCancelled, RasterDecodeError, RasterResponseError
from src.habitat.resample import SourceDataset

logger = logging.getLogger(__name__)

TIFF_LITTLE_ENDIAN = b"II"
TIFF_BIG_ENDIAN = b"MM"
ZIP_MAGIC = b"PK\x03\x04"
GZIP_MAGIC = b"\x1f\x8b"

SNIPPET_BYTES = 2048
FALLBACK_MESSAGE_CHARS = 280

_STRUCTURED_PATTERNS = [
    re.compile(r"<ows:ExceptionText>([\s\S]*?)</ows:ExceptionText>", re.IGNORECASE),
    re.compile(r"<ExceptionText>([\s\S]*?)</ExceptionText>", re.IGNORECASE),
    re.compile(r"<ServiceException(?:Text)?[^>]*>([\s\S]*?)</ServiceException(?:Text)?>", re.IGNORECASE),
    re.compile(r'"message"\s*:\s*"([^"]+)"', re.IGNORECASE),
]


def _normalise_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _describe(source: str, coverage_id: Optional[str]) -> str:
    return f'{source} coverage "{coverage_id}"' if coverage_id else source


def extract_structured_message(text: str) -> Optional[str]:
    """
    Pull the human-readable message out of an OWS exception report or JSON error.

    Example:
        >>> extract_structured_message("<ExceptionText> Bad  bbox </ExceptionText>")
        'Bad bbox'
    """
    for pattern in _STRUCTURED_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return _normalise_whitespace(match.group(1))
    return None


def _looks_textual(content_type: Optional[str], first_byte: int) -> bool:
    if content_type:
        lowered = content_type.lower()
        if any(kind in lowered for kind in ("xml", "json", "html", "text")):
            return True
    return first_byte in (ord("<"), ord("{"))


def is_geotiff(payload: bytes) -> bool:
    return payload[:2] in (TIFF_LITTLE_ENDIAN, TIFF_BIG_ENDIAN)


def ensure_geotiff_response(
    source: str,
    payload: bytes,
    content_type: Optional[str] = None,
    coverage_id: Optional[str] = None,
) -> None:
    """
    Validate that a downloaded payload is a TIFF.

    Args:
        source: Service name used in error messages (e.g. "SoilGrids")
        payload: Response body
        content_type: Response Content-Type header, if known
        coverage_id: Coverage identifier used in error messages

    Raises:
        RasterResponseError: Empty payload, unexpected binary data, or a
            service exception report (its message is included)
    """
    description = _describe(source, coverage_id)

    if len(payload) < 4:
        raise RasterResponseError(f"{description} returned an empty response.")

    if is_geotiff(payload):
        return

    if not _looks_textual(content_type, payload[0]):
        raise RasterResponseError(
            f"{description} returned unexpected binary data (missing TIFF byte-order marker)."
        )

    snippet = payload[:SNIPPET_BYTES].decode("utf-8", errors="replace")
    detail = extract_structured_message(snippet) or _normalise_whitespace(snippet)[:FALLBACK_MESSAGE_CHARS]
    suffix = f": {detail}" if detail else "."
    raise RasterResponseError(f"{description} request failed{suffix}")


def extract_geotiff_payload(payload: bytes) -> bytes:
    """
    Unwrap ZIP archives and gzip streams around a GeoTIFF.

    ZIP archives yield their first ``.tif``/``.tiff`` entry, or the first entry
    when none has a TIFF extension. Anything else is returned unchanged.
    """
    if payload.startswith(ZIP_MAGIC):
        with zipfile.ZipFile(io.BytesIO(payload)) as zf:
            names = [info.filename for info in zf.infolist() if not info.is_dir()]
            if not names:
                return payload
            tif_names = [n for n in names if n.lower().endswith((".tif", ".tiff"))]
            chosen = tif_names[0] if tif_names else names[0]
            logger.debug(f"Extracting {chosen} from ZIP payload")
            return zf.read(chosen)

    if payload.startswith(GZIP_MAGIC):
        logger.debug("Inflating gzip payload")
        return gzip.decompress(payload)

    return payload


@contextmanager
def decoding(source: str, coverage_id: Optional[str] = None) -> Iterator[None]:
    """Re-raise decode failures as RasterDecodeError with source/coverage context."""
    try:
        yield
    except (FetchCancelled, RasterDecodeError):
        raise
    except Exception as e:
        raise RasterDecodeError(f"{_describe(source, coverage_id)} could not be decoded: {e}") from e


def decode_geotiff(payload: bytes, source: str, coverage_id: Optional[str] = None) -> SourceDataset:
    """
    Decode the first band of a GeoTIFF payload.

    Returns:
        SourceDataset with the band array, its affine transform and nodata value
    """
    with decoding(source, coverage_id):
        with MemoryFile(payload) as memfile:
            with memfile.open() as src:
                if src.count == 0:
                    raise ValueError("raster has no bands")
                data = src.read(1)
                transform = src.transform
                nodata = src.nodata

    if transform.is_identity:
        logger.warning(f"{_describe(source, coverage_id)} has no georeferencing; pixel space used as-is")

    logger.debug(
        f"Decoded {_describe(source, coverage_id)}: {data.shape} {data.dtype}, nodata={nodata}"
    )
    return SourceDataset(np.asarray(data), transform, nodata)
