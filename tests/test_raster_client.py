"""
Tests for the shared raster client machinery.

Covers retry/backoff, WCS URL construction, source loading, the lazily
loaded dataset and GridClient caching, coalescing, fallback and
cancellation.
"""

import io
import threading
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qs, urlparse

import numpy as np
import pytest
import requests

from src import config
from src.habitat.cache import CancelToken
from src.habitat.errors import FetchCancelled, OutOfExtentError, RasterDecodeError, RasterRequestError
from src.habitat.grid import BoundingBox, LandCoverGrid
from src.habitat.raster_client import (
    GridClient,
    LazyDataset,
    build_wcs_url,
    fetch_with_backoff,
    is_remote,
    load_source_dataset,
    require_overlap,
)
from src.habitat.resample import SourceDataset


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached"
        time.sleep(0.005)


# =============================================================================
# RETRY / BACKOFF
# =============================================================================


class TestFetchWithBackoff:
    """Retries on 429/5xx, fails fast on other statuses."""

    def _fetch(self, session, token=None, **kwargs):
        return fetch_with_backoff(
            session, "https://example.org/wcs", token or CancelToken(), "SoilGrids", base_delay=0, **kwargs
        )

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_retries_retryable_status(self, mock_session, response_factory, status):
        ok = response_factory(200, b"II*\x00")
        mock_session.get.side_effect = [response_factory(status), ok]

        assert self._fetch(mock_session) is ok
        assert mock_session.get.call_count == 2

    @pytest.mark.parametrize("status", [400, 403, 404])
    def test_client_errors_fail_immediately(self, mock_session, response_factory, status):
        mock_session.get.return_value = response_factory(status)

        with pytest.raises(RasterRequestError, match=f"SoilGrids request failed: {status}") as excinfo:
            self._fetch(mock_session)

        assert excinfo.value.status_code == status
        assert mock_session.get.call_count == 1

    def test_gives_up_after_max_retries(self, mock_session, response_factory):
        mock_session.get.return_value = response_factory(503)

        with pytest.raises(RasterRequestError, match="after 3 attempts: 503"):
            self._fetch(mock_session, max_retries=2)

        assert mock_session.get.call_count == 3

    def test_network_error_wrapped(self, mock_session):
        mock_session.get.side_effect = requests.exceptions.ConnectionError("connection refused")

        with pytest.raises(RasterRequestError, match="connection refused"):
            self._fetch(mock_session)

    def test_cancelled_token_never_requests(self, mock_session):
        token = CancelToken()
        token.cancel()

        with pytest.raises(FetchCancelled):
            self._fetch(mock_session, token=token)

        mock_session.get.assert_not_called()

    def test_sends_user_agent_and_params(self, mock_session, response_factory):
        mock_session.get.return_value = response_factory(200)

        self._fetch(mock_session, params={"latitude": "52.5"})

        _, kwargs = mock_session.get.call_args
        assert kwargs["headers"]["User-Agent"] == config.USER_AGENT
        assert kwargs["params"] == {"latitude": "52.5"}

    def test_backoff_wait_is_cancellable(self, mock_session, response_factory):
        mock_session.get.return_value = response_factory(503)
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()

        with pytest.raises(FetchCancelled):
            fetch_with_backoff(mock_session, "https://example.org", token, "Test", base_delay=30)


# =============================================================================
# SOURCE LOCATION AND LOADING
# =============================================================================


class TestBuildWcsUrl:

    def test_contains_subsets_and_scale(self):
        url = build_wcs_url(
            "https://maps.isric.org/mapserv?map=/mapfiles/soilgrids.map",
            "phh2o_0-5cm_mean",
            BoundingBox(-2.5, 51.0, -1.0, 52.25),
            64,
            32,
        )
        query = parse_qs(urlparse(url).query)

        assert query["map"] == ["/mapfiles/soilgrids.map"]
        assert query["COVERAGEID"] == ["phh2o_0-5cm_mean"]
        assert query["SUBSET"] == ["Long(-2.5,-1)", "Lat(51,52.25)"]
        assert query["SCALESIZE"] == ["Long(64)", "Lat(32)"]
        assert query["FORMAT"] == ["GEOTIFF_FLOAT32"]

    def test_uses_question_mark_without_query(self):
        url = build_wcs_url("https://example.org/wcs", "x", BoundingBox(0, 0, 1, 1), 1, 1)
        assert url.startswith("https://example.org/wcs?SERVICE=WCS")

    def test_is_remote(self):
        assert is_remote("https://example.org/a.tif")
        assert not is_remote("/data/soil/a.tif")


class TestLoadSourceDataset:

    def test_reads_local_file(self, write_geotiff, mock_session):
        bbox = BoundingBox(0.0, 0.0, 1.0, 1.0)
        path = write_geotiff("a.tif", np.full((4, 4), 3.0, dtype=np.float32), bbox)

        dataset = load_source_dataset(mock_session, str(path), CancelToken(), "Test")

        assert dataset.data.shape == (4, 4)
        mock_session.get.assert_not_called()

    def test_missing_local_file(self, tmp_path, mock_session):
        with pytest.raises(RasterRequestError, match="Test raster could not be read"):
            load_source_dataset(mock_session, str(tmp_path / "missing.tif"), CancelToken(), "Test")

    def test_downloads_remote_source(self, write_geotiff, mock_session, response_factory):
        bbox = BoundingBox(0.0, 0.0, 1.0, 1.0)
        payload = write_geotiff("b.tif", np.ones((2, 2), dtype=np.float32), bbox).read_bytes()
        mock_session.get.return_value = response_factory(200, payload)

        dataset = load_source_dataset(mock_session, "https://example.org/b.tif", CancelToken(), "Test")

        assert dataset.data.shape == (2, 2)

    def test_reads_zipped_local_file(self, write_geotiff, tmp_path, mock_session):
        bbox = BoundingBox(0.0, 0.0, 1.0, 1.0)
        path = write_geotiff("inner.tif", np.ones((3, 3), dtype=np.int16), bbox)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr("inner.tif", path.read_bytes())
        archive = tmp_path / "tile.zip"
        archive.write_bytes(buffer.getvalue())

        dataset = load_source_dataset(mock_session, str(archive), CancelToken(), "Test")

        assert dataset.data.shape == (3, 3)
        assert dataset.data.dtype == np.int16

    @pytest.mark.parametrize(
        "payload",
        [b"\x1f\x8b\x08\x00garbage", b"PK\x03\x04garbage"],
        ids=["gzip", "zip"],
    )
    def test_corrupt_archive_raises_decode_error(self, payload, tmp_path, mock_session):
        path = tmp_path / "broken.tif"
        path.write_bytes(payload)

        with pytest.raises(RasterDecodeError, match='SoilGrids coverage "clay_0-5cm_mean" could not be decoded'):
            load_source_dataset(mock_session, str(path), CancelToken(), "SoilGrids", "clay_0-5cm_mean")

    def test_require_overlap(self):
        dataset = SourceDataset.from_bounds(np.ones((2, 2)), BoundingBox(0.0, 0.0, 1.0, 1.0))

        require_overlap(dataset, BoundingBox(0.5, 0.5, 2.0, 2.0), "Test")
        with pytest.raises(OutOfExtentError, match="does not cover"):
            require_overlap(dataset, BoundingBox(5.0, 5.0, 6.0, 6.0), "Test")


# =============================================================================
# LAZY DATASET
# =============================================================================


class TestLazyDataset:
    """One-time, reference-counted dataset load."""

    def test_loads_once(self):
        calls = []

        def loader(token):
            calls.append(1)
            return "dataset"

        lazy = LazyDataset("test", loader)

        assert lazy.acquire(CancelToken()) == "dataset"
        assert lazy.acquire(CancelToken()) == "dataset"
        assert len(calls) == 1
        assert lazy.loaded

    def test_failed_load_is_retried(self):
        attempts = []

        def loader(token):
            attempts.append(1)
            if len(attempts) == 1:
                raise RasterRequestError("first attempt fails")
            return "dataset"

        lazy = LazyDataset("test", loader)

        with pytest.raises(RasterRequestError):
            lazy.acquire(CancelToken())
        assert lazy.acquire(CancelToken()) == "dataset"

    def test_last_waiter_cancelling_aborts_load(self):
        started = threading.Event()
        aborted = threading.Event()

        def loader(token):
            started.set()
            try:
                token.wait(10)
            except FetchCancelled:
                aborted.set()
                raise
            return "dataset"

        lazy = LazyDataset("test", loader)
        token = CancelToken()
        with ThreadPoolExecutor(max_workers=1) as pool:
            waiter = pool.submit(lazy.acquire, token)
            assert started.wait(5)
            token.cancel()

            with pytest.raises(FetchCancelled):
                waiter.result(timeout=5)

        assert aborted.wait(5)
        assert not lazy.loaded

    def test_other_waiter_keeps_load_alive(self):
        started = threading.Event()
        release = threading.Event()
        aborted = threading.Event()

        def loader(token):
            started.set()
            release.wait(5)
            if token.cancelled:
                aborted.set()
            token.raise_if_cancelled()
            return "dataset"

        lazy = LazyDataset("test", loader)
        first, second = CancelToken(), CancelToken()
        with ThreadPoolExecutor(max_workers=2) as pool:
            first_waiter = pool.submit(lazy.acquire, first)
            assert started.wait(5)
            second_waiter = pool.submit(lazy.acquire, second)
            _wait_until(lambda: lazy._waiters == 2)

            first.cancel()
            with pytest.raises(FetchCancelled):
                first_waiter.result(timeout=5)

            release.set()
            assert second_waiter.result(timeout=5) == "dataset"

        assert not aborted.is_set()

    def test_abort_loading_keeps_finished_load(self):
        lazy = LazyDataset("test", lambda token: "dataset")
        lazy.acquire(CancelToken())

        assert lazy.abort_loading() is False
        assert lazy.loaded

    def test_invalidate_forgets_value(self):
        calls = []

        def loader(token):
            calls.append(1)
            return len(calls)

        lazy = LazyDataset("test", loader)
        assert lazy.acquire(CancelToken()) == 1

        lazy.invalidate()
        assert lazy.acquire(CancelToken()) == 2

    def test_close_aborts_load_and_stops_loader(self):
        started = threading.Event()
        aborted = threading.Event()

        def loader(token):
            started.set()
            try:
                token.wait(10)
            except FetchCancelled:
                aborted.set()
                raise
            return "dataset"

        lazy = LazyDataset("test", loader)
        lazy.start()
        assert started.wait(5)

        lazy.close()

        assert aborted.wait(5)
        with pytest.raises(RuntimeError):
            lazy.start()


# =============================================================================
# GRID CLIENT
# =============================================================================


class StubClient(GridClient[LandCoverGrid]):
    """GridClient whose fetch is gated by events."""

    source_name = "Stub"

    def __init__(self, fail=None, **kwargs):
        super().__init__(**kwargs)
        self.fail = fail
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()

    def _fetch(self, bbox, width, height, token):
        self.calls += 1
        self.started.set()
        while not self.release.is_set():
            token.wait(0.01)
        if self.fail is not None:
            raise self.fail
        return LandCoverGrid.from_codes(width, height, [30] * (width * height))

    def synthetic_grid(self, bbox, width, height):
        return LandCoverGrid.from_codes(width, height, [40] * (width * height))


@pytest.fixture
def stub_client(mock_session):
    client = StubClient(use_mock=False, session=mock_session)
    yield client
    client.release.set()
    client.close()


class TestGridClient:
    """Caching, coalescing, fallback and cancellation."""

    def test_concurrent_identical_requests_coalesce(self, stub_client, bbox):
        first = stub_client.submit(bbox, 2, 2)
        second = stub_client.submit(bbox, 2, 2)

        assert first is second
        stub_client.release.set()
        assert first.result(timeout=5).codes.tolist() == [30, 30, 30, 30]
        assert stub_client.calls == 1

    def test_completed_fetch_is_cached(self, stub_client, bbox):
        stub_client.release.set()
        stub_client.fetch_grid(bbox, 2, 2)
        stub_client.fetch_grid(bbox, 2, 2)

        assert stub_client.calls == 1
        assert len(stub_client.in_flight) == 0
        assert len(stub_client.cache) == 1

    def test_cache_key_rounds_coordinates(self, stub_client):
        stub_client.release.set()
        stub_client.fetch_grid(BoundingBox(-2.0, 52.0, -1.0, 53.0), 2, 2)
        stub_client.fetch_grid(BoundingBox(-2.000001, 52.0, -1.0, 53.0), 2, 2)

        assert stub_client.calls == 1

    def test_failure_falls_back_to_synthetic(self, mock_session, bbox):
        client = StubClient(fail=RasterRequestError("SoilGrids request failed: 404", 404), use_mock=False, session=mock_session)
        client.release.set()
        try:
            grid, used_fallback = client.fetch_grid_with_fallback(bbox, 2, 2)
        finally:
            client.close()

        assert used_fallback is True
        assert grid.codes.tolist() == [40, 40, 40, 40]

    def test_success_is_not_fallback(self, stub_client, bbox):
        stub_client.release.set()
        grid, used_fallback = stub_client.fetch_grid_with_fallback(bbox, 2, 2)

        assert used_fallback is False
        assert grid.codes.tolist() == [30, 30, 30, 30]

    def test_cancellation_is_never_replaced_by_fallback(self, stub_client, bbox):
        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(stub_client.fetch_grid_with_fallback, bbox, 2, 2)
            assert stub_client.started.wait(5)
            stub_client.cancel_pending()

            with pytest.raises(FetchCancelled):
                pending.result(timeout=5)

        assert len(stub_client.in_flight) == 0
        assert len(stub_client.cache) == 0

    def test_fetch_after_cancel_starts_fresh(self, stub_client, bbox):
        cancelled = stub_client.submit(bbox, 2, 2)
        assert stub_client.started.wait(5)
        stub_client.cancel_pending()
        with pytest.raises(FetchCancelled):
            cancelled.result(timeout=5)

        stub_client.release.set()
        assert stub_client.fetch_grid(bbox, 2, 2).size == 4
        assert stub_client.calls == 2

    def test_mock_mode_skips_fetch(self, mock_session, bbox):
        client = StubClient(use_mock=True, session=mock_session)
        try:
            grid = client.fetch_grid(bbox, 3, 1)
        finally:
            client.close()

        assert grid.codes.tolist() == [40, 40, 40]
        assert client.calls == 0
