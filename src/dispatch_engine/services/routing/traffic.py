"""Traffic duration providers and bounded collection of their answers."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import httpx

from ...config import settings
from ...errors import TrafficLookupError, TrafficTimeoutError
from ...models.domain import GeoPoint

logger = logging.getLogger(__name__)

MAX_SEGMENT_WORKERS = 8


class TrafficDataProvider(Protocol):
    def segment_duration(self, origin: GeoPoint, destination: GeoPoint) -> float:
        """Travel minutes for one segment; raises ``TrafficLookupError`` or ``TrafficTimeoutError``."""
        ...


@runtime_checkable
class TrafficMatrixProvider(Protocol):
    def duration_matrix(self, points: Sequence[GeoPoint]) -> list[list[Optional[float]]]: ...


class OSRMTrafficProvider:
    """Segment durations from an OSRM server."""

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.traffic_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("Traffic base URL is not configured.")
        self.profile = profile or settings.traffic_profile
        self.timeout = timeout if timeout is not None else settings.traffic_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.traffic_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.traffic_backoff_seconds
        self._client = client

    def segment_duration(self, origin: GeoPoint, destination: GeoPoint) -> float:
        url = f"{self.base_url}/route/v1/{self.profile}/{_coordinates([origin, destination])}"
        data = self._get(url, {"overview": "false", "steps": "false"})
        try:
            return float(data["routes"][0]["duration"]) / 60.0
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise TrafficLookupError(f"OSRM route response has no duration: {exc}") from exc

    def duration_matrix(self, points: Sequence[GeoPoint]) -> list[list[Optional[float]]]:
        if len(points) < 2:
            raise ValueError("At least two points are required for a duration matrix.")
        url = f"{self.base_url}/table/v1/{self.profile}/{_coordinates(points)}"
        data = self._get(url, {"annotations": "duration"})
        durations = data.get("durations")
        if not isinstance(durations, list):
            raise TrafficLookupError("OSRM table response missing durations.")
        return [[None if value is None else float(value) / 60.0 for value in row] for row in durations]

    def _get(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        client = self._client or httpx.Client(timeout=httpx.Timeout(self.timeout))
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise TrafficLookupError(f"OSRM request failed: {data.get('message', data.get('code'))}")
                    return data
                except httpx.TimeoutException as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise TrafficTimeoutError(f"OSRM request timed out after {attempt} attempts: {exc}") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise TrafficLookupError(f"OSRM request to {self.base_url} failed: {exc}") from exc
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            if self._client is None:
                client.close()


def _coordinates(points: Sequence[GeoPoint]) -> str:
    return ";".join(f"{point.lon},{point.lat}" for point in points)


def collect_traffic_durations(
    provider: TrafficDataProvider | TrafficMatrixProvider,
    points: Sequence[GeoPoint],
    timeout_seconds: float = settings.traffic_timeout_seconds,
) -> dict[tuple[int, int], float]:
    """Ask ``provider`` for every ordered pair of points within one overall deadline.

    Segments the provider cannot answer in time are simply absent from the result, so the
    cost model falls back to haversine-derived durations for them.
    """

    if len(points) < 2:
        return {}

    executor = ThreadPoolExecutor(max_workers=MAX_SEGMENT_WORKERS, thread_name_prefix="traffic")
    durations: dict[tuple[int, int], float] = {}
    try:
        if isinstance(provider, TrafficMatrixProvider):
            future = executor.submit(provider.duration_matrix, list(points))
            try:
                matrix = future.result(timeout=timeout_seconds)
                for i, row in enumerate(matrix[: len(points)]):
                    for j, minutes in enumerate(row[: len(points)]):
                        if i != j and minutes is not None:
                            durations[(i, j)] = float(minutes)
            except Exception as exc:
                logger.warning(f"Traffic matrix lookup failed, using distance-based durations: {exc}")
                return {}
            return durations

        pairs = {
            executor.submit(provider.segment_duration, points[i], points[j]): (i, j)
            for i in range(len(points))
            for j in range(len(points))
            if i != j
        }
        try:
            for future in as_completed(pairs, timeout=timeout_seconds):
                try:
                    durations[pairs[future]] = future.result()
                except Exception as exc:
                    logger.debug(f"Traffic lookup for segment {pairs[future]} failed: {exc}")
        except FuturesTimeoutError:
            logger.warning(
                f"Traffic lookups exceeded {timeout_seconds}s; "
                f"{len(pairs) - len(durations)} of {len(pairs)} segments use distance-based durations"
            )
        return durations
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
