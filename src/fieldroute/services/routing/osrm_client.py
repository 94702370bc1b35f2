"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from ...config import settings
from ...errors import OracleUnavailableError
from ...models.domain import TravelMode

logger = logging.getLogger(__name__)

# OSRM profiles exposed by the public demo server and the default osrm-backend images.
MODE_PROFILES: dict[TravelMode, str] = {
    TravelMode.DRIVING: "driving",
    TravelMode.BICYCLING: "bike",
    TravelMode.WALKING: "foot",
}


def profile_for(mode: TravelMode) -> str:
    """Map a travel mode to an OSRM profile; unsupported modes cannot be routed."""

    if mode == TravelMode.DRIVING:
        return settings.osrm_profile
    try:
        return MODE_PROFILES[mode]
    except KeyError:
        raise OracleUnavailableError(f"OSRM has no profile for travel mode '{mode.value}'.") from None


class OSRMClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        """Get a fresh HTTP client; oracle lookups run on worker threads."""
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
            limits=httpx.Limits(max_connections=1, max_keepalive_connections=0),
            transport=self._transport,
        )

    def _get_json(self, service: str, coordinates: Sequence[tuple[float, float]], params: dict, profile: str | None) -> dict:
        """Issue one OSRM request with bounded retries.

        Transport failures surface as ``OracleUnavailableError`` once retries are spent;
        an OSRM error code in the body is a ``ValueError`` and is not retried.
        """
        # OSRM expects "lon,lat;lon,lat;..."
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        url = f"{self.base_url}/{service}/v1/{profile or self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    if status == 414:
                        raise ValueError(f"OSRM request URL too large ({len(coordinates)} coordinates).") from e
                    attempt += 1
                    if attempt > self.max_retries or (400 <= status < 500 and status != 429):
                        raise OracleUnavailableError(f"OSRM {service} request failed with HTTP {status}.") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM HTTP {status}, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                    continue
                except httpx.TimeoutException as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"OSRM {service} request timed out after {self.max_retries} retries: {e}")
                        raise OracleUnavailableError(f"OSRM {service} request timed out.") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                    continue
                except (httpx.TransportError, OSError) as e:
                    # DNS failures, connection refused, resets.
                    attempt += 1
                    if attempt > self.max_retries:
                        raise OracleUnavailableError(f"Failed to connect to OSRM service at {self.base_url}: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                    continue

                if not isinstance(data, dict) or data.get("code") != "Ok":
                    message = data.get("message", "Unknown OSRM error") if isinstance(data, dict) else "Malformed response"
                    raise ValueError(f"OSRM {service} request failed: {message}")
                return data
        finally:
            client.close()

    def table(self, coordinates: Sequence[tuple[float, float]], profile: str | None = None) -> dict:
        """Distance/duration matrix for ``(lat, lon)`` coordinates."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")
        data = self._get_json("table", coordinates, {"annotations": "duration,distance"}, profile)
        if "durations" not in data or "distances" not in data:
            raise ValueError("OSRM response missing durations/distances.")
        return data

    def route(self, coordinates: Sequence[tuple[float, float]], profile: str | None = None) -> dict:
        """Route through the coordinates in the given order."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")
        params = {"overview": "false", "steps": "false"}
        data = self._get_json("route", coordinates, params, profile)
        if not data.get("routes"):
            raise ValueError("OSRM route response contains no routes.")
        return data

    def trip(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        roundtrip: bool = True,
        profile: str | None = None,
    ) -> dict:
        """Solve the visiting order with the OSRM trip service.

        The first coordinate is always the start; without ``roundtrip`` the last
        coordinate is the fixed end.
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM trip.")
        params = {
            "roundtrip": "true" if roundtrip else "false",
            "source": "first",
            "destination": "any" if roundtrip else "last",
            "overview": "false",
            "steps": "false",
        }
        data = self._get_json("trip", coordinates, params, profile)
        if not data.get("trips") or not data.get("waypoints"):
            raise ValueError("OSRM trip response missing trips/waypoints.")
        return data


def check_health(base_url: str | None = None, transport: httpx.BaseTransport | None = None) -> bool:
    """Check OSRM service health with a minimal two-point table request.

    Public OSRM endpoints may not have a /health endpoint.
    """
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        client = OSRMClient(base_url=base, max_retries=0, timeout=5.0, transport=transport)
        data = client.table([(52.517037, 13.388860), (52.496891, 13.385983)])
    except (OracleUnavailableError, ValueError) as e:
        logger.info(f"OSRM health check failed: {e}")
        return False
    return isinstance(data.get("durations"), list)
