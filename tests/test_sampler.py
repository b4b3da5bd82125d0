import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.client.sampler import HttpLocationTransport, LocationSample, LocationSampler
from app.client.session import AuthGate, AuthState
from app.core.security import ROLE_EMPLOYEE, SessionContext

START = datetime(2025, 1, 15, 4, 0, tzinfo=timezone.utc)


class FakeTransport:
    def __init__(self):
        self.sent = []
        self.fail = False
        self.delay = 0.0

    async def send(self, attendance_id, sample):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise httpx.ConnectError("offline")
        self.sent.append((attendance_id, sample))
        return True


class Device:
    """Scripted position source with a controllable clock"""

    def __init__(self, positions):
        self.positions = list(positions)
        self.now = START
        self.reads = 0

    async def position(self):
        self.reads += 1
        return self.positions[min(self.reads - 1, len(self.positions) - 1)]

    async def battery(self):
        return 76.0

    def clock(self):
        current = self.now
        self.now += timedelta(seconds=30)
        return current


async def _always_checked_in():
    return True


def make_sampler(transport, device, **kwargs):
    return LocationSampler(
        "record-1",
        transport,
        get_position=device.position,
        get_battery_level=device.battery,
        is_checked_in=kwargs.pop("is_checked_in", _always_checked_in),
        clock=device.clock,
        **kwargs,
    )


def sample(lat, seconds):
    return LocationSample(lat, 77.2, 5.0, 50.0, START + timedelta(seconds=seconds))


def test_tick_captures_and_sends():
    transport = FakeTransport()
    device = Device([(28.6, 77.2, 5.0)])
    sampler = make_sampler(transport, device)

    delivered = asyncio.run(sampler.tick())

    assert delivered == 1
    attendance_id, sent = transport.sent[0]
    assert attendance_id == "record-1"
    assert sent.latitude == 28.6
    assert sent.battery_level == 76.0
    assert sent.timestamp == START


def test_stationary_samples_wait_for_heartbeat():
    transport = FakeTransport()
    device = Device([(28.6, 77.2, 5.0)])
    sampler = make_sampler(transport, device, movement_threshold_meters=10, heartbeat_seconds=90)

    async def ticks(n):
        for _ in range(n):
            await sampler.tick()
    asyncio.run(ticks(4))

    # t=0 first fix, t=30 and t=60 suppressed, t=90 heartbeat
    assert [s.timestamp for _, s in transport.sent] == [START, START + timedelta(seconds=90)]


def test_movement_is_always_sent():
    transport = FakeTransport()
    device = Device([(28.6, 77.2, 5.0), (28.601, 77.2, 5.0)])
    sampler = make_sampler(transport, device, movement_threshold_meters=10, heartbeat_seconds=3600)

    async def ticks():
        await sampler.tick()
        await sampler.tick()
    asyncio.run(ticks())

    assert len(transport.sent) == 2


def test_queue_is_bounded_and_drops_oldest():
    transport = FakeTransport()
    transport.fail = True
    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), max_pending=3)

    for seconds in range(5):
        sampler.enqueue(sample(28.6 + seconds * 0.01, seconds))

    assert len(sampler.pending) == 3
    assert sampler.dropped == 2
    assert [s.timestamp for s in sampler.pending] == [START + timedelta(seconds=s) for s in (2, 3, 4)]


def test_failed_flush_keeps_samples_in_order():
    transport = FakeTransport()
    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]))
    for seconds in range(3):
        sampler.enqueue(sample(28.6 + seconds * 0.01, seconds))

    transport.fail = True
    assert asyncio.run(sampler.flush()) == 0
    assert len(sampler.pending) == 3

    transport.fail = False
    assert asyncio.run(sampler.flush()) == 3
    assert [s.timestamp for _, s in transport.sent] == [START + timedelta(seconds=s) for s in range(3)]
    assert not sampler.pending


def test_slow_send_times_out_and_is_retried_later():
    transport = FakeTransport()
    transport.delay = 0.5
    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), send_timeout=0.01)
    sampler.enqueue(sample(28.6, 0))

    assert asyncio.run(sampler.flush()) == 0
    assert len(sampler.pending) == 1

    transport.delay = 0.0
    assert asyncio.run(sampler.flush()) == 1


def test_run_stops_when_checked_out():
    transport = FakeTransport()
    state = {"ticks": 0}

    async def is_checked_in():
        state["ticks"] += 1
        return state["ticks"] <= 2

    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0), (28.61, 77.2, 5.0)]),
                           interval=0.01, is_checked_in=is_checked_in)
    asyncio.run(asyncio.wait_for(sampler.run(), timeout=2))

    assert len(transport.sent) == 2


def test_stop_ends_the_loop():
    transport = FakeTransport()
    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), interval=60)

    async def scenario():
        task = asyncio.create_task(sampler.run())
        await asyncio.sleep(0.05)
        sampler.stop()
        await asyncio.wait_for(task, timeout=1)
    asyncio.run(scenario())

    assert len(transport.sent) == 1


def test_run_waits_for_sign_in():
    transport = FakeTransport()

    async def scenario():
        gate = AuthGate()
        sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), interval=60, auth_gate=gate)
        task = asyncio.create_task(sampler.run())
        await asyncio.sleep(0.02)
        assert transport.sent == []
        gate.resolve(SessionContext(subject="user-1", role=ROLE_EMPLOYEE, expires_at=0, employee_id=1))
        await asyncio.sleep(0.05)
        sampler.stop()
        await asyncio.wait_for(task, timeout=1)
    asyncio.run(scenario())

    assert len(transport.sent) == 1


def test_run_skipped_when_signed_out():
    transport = FakeTransport()

    async def scenario():
        gate = AuthGate()
        gate.resolve(None)
        sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), interval=60, auth_gate=gate)
        await asyncio.wait_for(sampler.run(), timeout=1)
    asyncio.run(scenario())

    assert transport.sent == []


def test_auth_gate_states():
    async def scenario():
        gate = AuthGate()
        assert gate.state == AuthState.UNKNOWN
        with pytest.raises(asyncio.TimeoutError):
            await gate.wait(timeout=0.01)

        gate.resolve(SessionContext(subject="user-1", role=ROLE_EMPLOYEE, expires_at=0, employee_id=1))
        assert await gate.wait() == AuthState.AUTHENTICATED
        assert gate.session.employee_id == 1

        gate.reset()
        assert gate.state == AuthState.UNKNOWN
        assert gate.session is None
        gate.resolve(None)
        assert await gate.wait(timeout=0.01) == AuthState.ANONYMOUS
    asyncio.run(scenario())


def test_http_transport_posts_payload():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"success": True, "data": {"appended": True}})

    async def scenario():
        client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
        transport = HttpLocationTransport("http://api.test", "token-123", client=client)
        try:
            return await transport.send("record-1", sample(28.6, 0))
        finally:
            await client.aclose()

    assert asyncio.run(scenario()) is True
    assert seen["url"] == "http://api.test/mobile/attendance/record-1/location-update"
    assert seen["auth"] == "Bearer token-123"
    assert b'"batteryLevel":50.0' in seen["body"].replace(b" ", b"")


def _http_sampler(handler, **kwargs):
    client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
    sampler = make_sampler(HttpLocationTransport("http://api.test", "t", client=client),
                           Device([(28.6, 77.2, 5.0)]), **kwargs)
    return sampler, client


def test_rejected_sample_is_dropped_and_later_samples_go_through():
    posted = []

    def handler(request: httpx.Request):
        latitude = json.loads(request.read())["location"]["latitude"]
        posted.append(latitude)
        if latitude > 90:
            return httpx.Response(400, json={"success": False, "error_code": "VALIDATION_ERROR"})
        return httpx.Response(200, json={"success": True, "data": {"appended": True}})

    async def scenario():
        sampler, client = _http_sampler(handler)
        sampler.enqueue(sample(95.0, 0))
        for seconds in range(1, 6):
            sampler.enqueue(sample(28.6 + seconds * 0.01, seconds))
        try:
            return sampler, await sampler.flush()
        finally:
            await client.aclose()

    sampler, delivered = asyncio.run(scenario())

    assert delivered == 5
    assert sampler.dropped == 1
    assert not sampler.pending
    assert posted[0] == 95.0
    assert len(posted) == 6


def test_inactive_record_rejection_is_dropped():
    def handler(request: httpx.Request):
        return httpx.Response(409, json={"success": False, "error_code": "RECORD_NOT_ACTIVE"})

    async def scenario():
        sampler, client = _http_sampler(handler)
        sampler.enqueue(sample(28.6, 0))
        try:
            return sampler, await sampler.flush()
        finally:
            await client.aclose()

    sampler, delivered = asyncio.run(scenario())
    assert delivered == 0
    assert sampler.dropped == 1
    assert not sampler.pending


@pytest.mark.parametrize("status", [401, 429, 500, 503])
def test_retryable_status_keeps_sample_queued(status):
    def handler(request: httpx.Request):
        return httpx.Response(status, json={"success": False})

    async def scenario():
        sampler, client = _http_sampler(handler)
        sampler.enqueue(sample(28.6, 0))
        sampler.enqueue(sample(28.7, 1))
        try:
            return sampler, await sampler.flush()
        finally:
            await client.aclose()

    sampler, delivered = asyncio.run(scenario())
    assert delivered == 0
    assert sampler.dropped == 0
    assert len(sampler.pending) == 2


def test_non_json_response_keeps_sample_and_tick_survives():
    def handler(request: httpx.Request):
        return httpx.Response(200, text="<html>proxy</html>")

    async def scenario():
        sampler, client = _http_sampler(handler)
        try:
            return sampler, await sampler.tick()
        finally:
            await client.aclose()

    sampler, delivered = asyncio.run(scenario())
    assert delivered == 0
    assert len(sampler.pending) == 1
    assert sampler.sent == 0


def test_unexpected_transport_error_does_not_stop_the_loop():
    class BrokenTransport:
        def __init__(self):
            self.calls = 0

        async def send(self, attendance_id, sample):
            self.calls += 1
            raise RuntimeError("driver crashed")

    transport = BrokenTransport()
    state = {"ticks": 0}

    async def is_checked_in():
        state["ticks"] += 1
        return state["ticks"] <= 3

    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), interval=0.01, is_checked_in=is_checked_in)
    asyncio.run(asyncio.wait_for(sampler.run(), timeout=2))

    assert transport.calls == 3
    assert len(sampler.pending) == 3


def test_movement_is_measured_from_last_sent_sample():
    transport = FakeTransport()
    sampler = make_sampler(transport, Device([(28.6, 77.2, 5.0)]), movement_threshold_meters=10,
                           heartbeat_seconds=90)

    async def scenario():
        transport.fail = True
        await sampler.tick()
        await sampler.tick()
        # Nothing has been delivered yet, so the stationary fix is still queued
        assert len(sampler.pending) == 2

        transport.fail = False
        assert await sampler.tick() == 3
        await sampler.tick()
    asyncio.run(scenario())

    # t=90 is only 30s after the last delivered fix (t=60)
    assert [s.timestamp for _, s in transport.sent] == [START + timedelta(seconds=s) for s in (0, 30, 60)]
    assert not sampler.pending
