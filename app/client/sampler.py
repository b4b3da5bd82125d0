"""
Device-side location sampler.

While the employee is checked in, a position and battery reading is taken every
``interval`` seconds and posted to the location-update endpoint. Samples that
cannot be delivered are kept in a bounded queue and retried on the next tick,
oldest first.
"""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Optional, Tuple

import httpx

from app.client.session import AuthGate, AuthState
from app.core.config import (
    LOCATION_HEARTBEAT_SECONDS,
    LOCATION_MAX_PENDING,
    LOCATION_MOVEMENT_THRESHOLD_METERS,
    LOCATION_SAMPLE_INTERVAL_SECONDS,
    LOCATION_SEND_TIMEOUT_SECONDS,
)
from app.services.location import has_significant_movement

logger = logging.getLogger(__name__)

# (latitude, longitude, accuracy)
Position = Tuple[float, float, Optional[float]]

# Client errors that may succeed on a later attempt
RETRYABLE_CLIENT_ERRORS = {401, 408, 429}


class LocationSendError(Exception):
    """The server answered, but not with a location-update response"""


@dataclass(frozen=True)
class LocationSample:
    latitude: float
    longitude: float
    accuracy: Optional[float]
    battery_level: Optional[float]
    timestamp: datetime

    def to_payload(self) -> dict:
        return {
            "location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "accuracy": self.accuracy,
                "timestamp": self.timestamp.isoformat(),
            },
            "batteryLevel": self.battery_level,
            "timestamp": self.timestamp.isoformat(),
        }


class HttpLocationTransport:
    """Posts samples to ``/mobile/attendance/{id}/location-update``"""

    def __init__(self, base_url: str, token: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url)
        self._owns_client = client is None

    async def send(self, attendance_id: str, sample: LocationSample) -> bool:
        response = await self._client.post(
            f"/mobile/attendance/{attendance_id}/location-update",
            json=sample.to_payload(),
            headers={"Authorization": f"Bearer {self.token}"},
        )
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise LocationSendError(f"Unreadable response from {response.url}: {e}") from e
        if not isinstance(body, dict):
            raise LocationSendError(f"Unexpected response from {response.url}")
        return bool((body.get("data") or {}).get("appended"))

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()


class LocationSampler:
    def __init__(
        self,
        attendance_id: str,
        transport,
        get_position: Callable[[], Awaitable[Position]],
        get_battery_level: Callable[[], Awaitable[Optional[float]]],
        is_checked_in: Callable[[], Awaitable[bool]],
        interval: float = LOCATION_SAMPLE_INTERVAL_SECONDS,
        max_pending: int = LOCATION_MAX_PENDING,
        send_timeout: float = LOCATION_SEND_TIMEOUT_SECONDS,
        movement_threshold_meters: float = LOCATION_MOVEMENT_THRESHOLD_METERS,
        heartbeat_seconds: float = LOCATION_HEARTBEAT_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        auth_gate: Optional[AuthGate] = None,
    ):
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.attendance_id = attendance_id
        self.transport = transport
        self.get_position = get_position
        self.get_battery_level = get_battery_level
        self.is_checked_in = is_checked_in
        self.interval = interval
        self.send_timeout = send_timeout
        self.movement_threshold_meters = movement_threshold_meters
        self.heartbeat_seconds = heartbeat_seconds
        self.clock = clock
        self.auth_gate = auth_gate

        self.pending: Deque[LocationSample] = deque(maxlen=max_pending)
        self.dropped = 0
        self.sent = 0
        self._last_sent: Optional[LocationSample] = None
        self._stop_event = asyncio.Event()

    def should_enqueue(self, sample: LocationSample) -> bool:
        """Moved far enough from the last delivered sample, or a heartbeat period passed since it"""
        last = self._last_sent
        if last is None:
            return True
        if has_significant_movement((last.latitude, last.longitude), (sample.latitude, sample.longitude),
                                    self.movement_threshold_meters):
            return True
        return (sample.timestamp - last.timestamp).total_seconds() >= self.heartbeat_seconds

    def enqueue(self, sample: LocationSample):
        if len(self.pending) == self.pending.maxlen:
            self.dropped += 1
            logger.warning("Location queue full (%d), dropping sample from %s",
                           self.pending.maxlen, self.pending[0].timestamp.isoformat())
        self.pending.append(sample)

    async def capture(self) -> LocationSample:
        latitude, longitude, accuracy = await self.get_position()
        battery_level = await self.get_battery_level()
        return LocationSample(
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            battery_level=battery_level,
            timestamp=self.clock(),
        )

    async def flush(self) -> int:
        """
        Deliver pending samples oldest first.

        A sample the server rejects outright (4xx) is dropped. Any other
        failure stops the flush and leaves the remaining samples queued.
        Returns the number delivered.
        """
        delivered = 0
        while self.pending:
            sample = self.pending[0]
            try:
                await asyncio.wait_for(
                    self.transport.send(self.attendance_id, sample),
                    timeout=self.send_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Location send timed out after %.1fs; %d pending",
                               self.send_timeout, len(self.pending))
                break
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if 400 <= status < 500 and status not in RETRYABLE_CLIENT_ERRORS:
                    self.pending.popleft()
                    self.dropped += 1
                    logger.warning("Location sample from %s rejected with %d, dropped",
                                   sample.timestamp.isoformat(), status)
                    continue
                logger.warning("Location send failed: %s; %d pending", e, len(self.pending))
                break
            except (httpx.HTTPError, OSError, LocationSendError) as e:
                logger.warning("Location send failed: %s; %d pending", e, len(self.pending))
                break
            except Exception:
                logger.exception("Unexpected error sending location; %d pending", len(self.pending))
                break
            self.pending.popleft()
            self._last_sent = sample
            delivered += 1
        self.sent += delivered
        return delivered

    async def tick(self) -> int:
        try:
            sample = await self.capture()
        except (OSError, RuntimeError, ValueError) as e:
            logger.warning("Could not read device location: %s", e)
        else:
            if self.should_enqueue(sample):
                self.enqueue(sample)
        return await self.flush()

    async def run(self):
        if self.auth_gate is not None:
            if await self.auth_gate.wait() != AuthState.AUTHENTICATED:
                logger.info("Not signed in, location sampling not started")
                return
        logger.info("Location sampling started for %s every %ss", self.attendance_id, self.interval)
        while not self._stop_event.is_set():
            if not await self.is_checked_in():
                break
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Location sampling stopped for %s (%d sent, %d pending, %d dropped)",
                    self.attendance_id, self.sent, len(self.pending), self.dropped)

    def stop(self):
        self._stop_event.set()
