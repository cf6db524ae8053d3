from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from posetrail.config import RecorderConfig
from posetrail.core.errors import DeliveryError
from posetrail.core.scene import OrbitControls, PerspectiveCamera
from posetrail.page import InputSurface, Page
from posetrail.recorder import LifecycleSignal, RecordingSessionController, SessionState

FOLDER = "https://www.dropbox.com/scl/fo/F00/?rlkey=k&st=s"


class _Clock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _Transport:
    """Async transport double: records calls, can fail or hold until released."""

    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: list[dict] = []
        self.error = error
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0

    async def send(self, payload):
        self.calls.append(payload)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            return {"success": True, "path": f"/{payload['folderId']}/{payload['filename']}"}
        finally:
            self.active -= 1


class _Beacon:
    def __init__(self, *, accept: bool = True) -> None:
        self.calls: list[dict] = []
        self.accept = accept

    def send(self, payload) -> bool:
        self.calls.append(payload)
        return self.accept


class _Rig:
    def __init__(
        self,
        *,
        transport: _Transport | None = None,
        beacon: _Beacon | None = None,
        manifest: str | None = FOLDER,
        config: RecorderConfig | None = None,
    ) -> None:
        self.clock = _Clock(1_000)
        self.camera = PerspectiveCamera(position=(0.0, 0.0, 5.0))
        self.surface = InputSurface()
        self.controls = OrbitControls(self.camera, dom_element=self.surface)
        self.page = Page()
        self.transport = transport or _Transport()
        self.beacon = beacon or _Beacon()
        self.ctl = RecordingSessionController(
            self.camera,
            self.controls,
            transport=self.transport,
            beacon=self.beacon,
            page=self.page,
            manifest_source=lambda: manifest,
            config=config,
            clock=self.clock,
        )

    def drag(self, steps: int = 3) -> None:
        for _ in range(steps):
            self.clock.now += 100
            self.camera.position = self.camera.position + [0.0, 0.1, 0.0]
            self.controls.update()


def _states(payload: dict) -> list[dict]:
    return json.loads(payload["data"])["states"]


def test_flush_uploads_whole_buffer_without_clearing() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()
        rig.drag(2)

        assert await rig.ctl.flush()

        assert len(rig.transport.calls) == 1
        payload = rig.transport.calls[0]
        assert payload["folderId"] == "F00"
        assert payload["filename"].startswith("camera_states_")
        doc = json.loads(payload["data"])
        assert doc["metadata"]["totalStates"] == 3
        assert doc["metadata"]["modelPath"] == FOLDER
        assert doc["metadata"]["dropboxFolderUrl"] == "https://www.dropbox.com/scl/fo/F00/?dl=0"
        assert doc["metadata"]["recordInterval"] == 100
        assert [s["timestamp"] for s in doc["states"]] == [1000, 1100, 1200]

        assert len(rig.ctl.buffer) == 3
        assert rig.ctl.last_flush_time == rig.clock.now
        await rig.ctl.aclose()

    asyncio.run(scenario())


def test_missing_target_skips_flush_silently() -> None:
    async def scenario() -> None:
        rig = _Rig(manifest=None)
        rig.surface.pointer_down()

        assert not await rig.ctl.flush()
        assert not await rig.ctl.autosave_tick()
        assert rig.ctl.handle_lifecycle(LifecycleSignal.UNLOADING) is False

        assert rig.transport.calls == []
        assert rig.beacon.calls == []
        assert not rig.ctl.delivery_disabled

        # Once content is loaded the same session can be delivered.
        rig.ctl.set_manifest_source(FOLDER)
        assert await rig.ctl.autosave_tick()
        assert len(rig.transport.calls) == 1

    asyncio.run(scenario())


def test_first_failure_disables_every_later_delivery() -> None:
    async def scenario() -> None:
        rig = _Rig(transport=_Transport(error=DeliveryError("Upload failed: 500 boom", status_code=500)))
        rig.surface.pointer_down()
        rig.drag(1)

        assert not await rig.ctl.autosave_tick()
        assert len(rig.transport.calls) == 1
        assert rig.ctl.delivery_disabled
        assert not rig.ctl.flush_in_progress

        rig.clock.now += 5_000
        rig.drag(1)
        assert not await rig.ctl.autosave_tick()
        assert not await rig.ctl.flush()

        rig.page.hide()
        rig.page.pagehide(persisted=False)
        rig.page.beforeunload()
        await rig.ctl.drain()
        await rig.ctl.aclose()

        assert len(rig.transport.calls) == 1
        assert rig.beacon.calls == []

    asyncio.run(scenario())


def test_network_error_trips_breaker() -> None:
    async def scenario() -> None:
        rig = _Rig(transport=_Transport(error=httpx.ConnectError("connection refused")))
        rig.surface.pointer_down()

        assert not await rig.ctl.flush()
        assert rig.ctl.delivery_disabled
        assert rig.ctl.breaker.reason is not None

    asyncio.run(scenario())


def test_unexpected_transport_error_trips_breaker() -> None:
    async def scenario() -> None:
        rig = _Rig(transport=_Transport(error=RuntimeError("client has been closed")))
        rig.surface.pointer_down()

        for _ in range(3):
            rig.clock.now += 5_000
            assert not await rig.ctl.autosave_tick()

        assert len(rig.transport.calls) == 1
        assert rig.ctl.delivery_disabled
        assert "RuntimeError" in rig.ctl.breaker.reason
        assert not rig.ctl.flush_in_progress

    asyncio.run(scenario())


def test_unexpected_beacon_error_trips_breaker() -> None:
    class _BrokenBeacon(_Beacon):
        def send(self, payload) -> bool:
            self.calls.append(payload)
            raise RuntimeError("beacon worker could not start")

    async def scenario() -> None:
        rig = _Rig(beacon=_BrokenBeacon())
        rig.surface.pointer_down()

        assert rig.ctl.flush_beacon() is False
        assert rig.ctl.delivery_disabled
        assert rig.ctl.flush_beacon() is False
        assert not await rig.ctl.flush()

        assert len(rig.beacon.calls) == 1
        assert rig.transport.calls == []

    asyncio.run(scenario())


def test_beacon_skipped_during_upload_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        transport = _Transport()
        transport.gate = asyncio.Event()
        rig = _Rig(transport=transport)
        rig.surface.pointer_down()

        first = asyncio.ensure_future(rig.ctl.autosave_tick())
        await asyncio.sleep(0)
        with caplog.at_level(logging.WARNING, logger="posetrail.recorder"):
            assert rig.ctl.flush_beacon() is False

        transport.gate.set()
        assert await first

    asyncio.run(scenario())

    assert any(
        r.levelno == logging.WARNING and "beacon" in r.getMessage() for r in caplog.records
    )


def test_refused_beacon_trips_breaker() -> None:
    async def scenario() -> None:
        rig = _Rig(beacon=_Beacon(accept=False))
        rig.surface.pointer_down()

        rig.page.beforeunload()
        assert rig.ctl.delivery_disabled

        assert not await rig.ctl.autosave_tick()
        assert rig.transport.calls == []
        assert len(rig.beacon.calls) == 1

    asyncio.run(scenario())


def test_only_one_flush_in_flight() -> None:
    async def scenario() -> None:
        transport = _Transport()
        transport.gate = asyncio.Event()
        rig = _Rig(transport=transport)
        rig.surface.pointer_down()

        first = asyncio.ensure_future(rig.ctl.autosave_tick())
        await asyncio.sleep(0)
        assert rig.ctl.flush_in_progress

        assert not await rig.ctl.autosave_tick()
        assert not await rig.ctl.flush()
        assert rig.ctl.flush_beacon() is False
        assert len(transport.calls) == 1
        assert rig.beacon.calls == []

        transport.gate.set()
        assert await first
        assert not rig.ctl.flush_in_progress
        assert transport.max_active == 1

    asyncio.run(scenario())


def test_hidden_page_flushes_asynchronously_and_keeps_buffer() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()
        rig.drag(2)

        rig.page.show()
        await rig.ctl.drain()
        assert rig.transport.calls == []

        rig.clock.now += 10
        rig.page.hide()
        await rig.ctl.drain()

        assert len(rig.transport.calls) == 1
        assert rig.beacon.calls == []
        # The final capture is included even though it is inside the sample interval.
        assert len(_states(rig.transport.calls[0])) == 4
        assert len(rig.ctl.buffer) == 4
        assert rig.ctl.is_recording

    asyncio.run(scenario())


def test_cached_page_uses_async_transport() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()

        rig.page.pagehide(persisted=True)
        await rig.ctl.drain()

        assert len(rig.transport.calls) == 1
        assert rig.beacon.calls == []
        assert len(rig.ctl.buffer) == 2

    asyncio.run(scenario())


def test_unloading_page_uses_beacon() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()
        rig.drag(1)

        rig.page.pagehide(persisted=False)
        assert len(rig.beacon.calls) == 1
        assert len(_states(rig.beacon.calls[0])) == 3

        rig.page.beforeunload()
        await rig.ctl.drain()

        assert len(rig.beacon.calls) == 2
        assert rig.transport.calls == []
        assert len(rig.ctl.buffer) == 4

    asyncio.run(scenario())


def test_idle_page_events_without_history_do_nothing() -> None:
    async def scenario() -> None:
        rig = _Rig()
        assert rig.ctl.handle_lifecycle(LifecycleSignal.HIDDEN) is None
        rig.page.beforeunload()
        await rig.ctl.drain()
        assert rig.transport.calls == []
        assert rig.beacon.calls == []

    asyncio.run(scenario())


def test_stopped_session_is_still_flushed_on_hide() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()
        rig.drag(1)
        rig.ctl.stop_recording()

        rig.page.hide()
        await rig.ctl.drain()

        assert len(rig.transport.calls) == 1
        # No final capture once the session has stopped.
        assert len(_states(rig.transport.calls[0])) == 2

    asyncio.run(scenario())


def test_dispose_flushes_clears_and_detaches_once() -> None:
    async def scenario() -> None:
        rig = _Rig()
        rig.surface.pointer_down()
        rig.drag(1)

        assert await rig.ctl.aclose()

        assert len(rig.transport.calls) == 1
        assert len(_states(rig.transport.calls[0])) == 3
        assert rig.ctl.buffer == ()
        assert rig.ctl.state is SessionState.IDLE

        assert not rig.page.has_listener("visibilitychange")
        assert not rig.page.has_listener("pagehide")
        assert not rig.page.has_listener("beforeunload")
        assert not rig.surface.has_listener("pointerdown")
        assert not rig.surface.has_listener("touchstart")
        assert not rig.controls.has_listener("change")

        rig.surface.pointer_down()
        rig.page.hide()
        assert await rig.ctl.aclose()
        await rig.ctl.drain()

        assert rig.ctl.state is SessionState.IDLE
        assert len(rig.transport.calls) == 1

    asyncio.run(scenario())


def test_dispose_waits_for_in_flight_autosave() -> None:
    async def scenario() -> None:
        transport = _Transport()
        transport.gate = asyncio.Event()
        rig = _Rig(transport=transport)
        rig.surface.pointer_down()

        tick = asyncio.ensure_future(rig.ctl.autosave_tick())
        await asyncio.sleep(0)
        closing = asyncio.ensure_future(rig.ctl.aclose())
        await asyncio.sleep(0)
        assert len(transport.calls) == 1

        transport.gate.set()
        assert await tick
        assert await closing

        assert len(transport.calls) == 2
        assert transport.max_active == 1
        assert len(_states(transport.calls[1])) == 2
        assert rig.ctl.buffer == ()

    asyncio.run(scenario())


def test_failed_dispose_keeps_buffer() -> None:
    async def scenario() -> None:
        rig = _Rig(transport=_Transport(error=DeliveryError("down")))
        rig.surface.pointer_down()

        assert not await rig.ctl.aclose()
        assert len(rig.ctl.buffer) == 2

    asyncio.run(scenario())


def test_autosave_timer_ticks_while_recording() -> None:
    async def scenario() -> None:
        rig = _Rig(config=RecorderConfig(autosave_interval_ms=20))
        rig.surface.pointer_down()

        await asyncio.sleep(0.15)
        await rig.ctl.drain()
        ticks = len(rig.transport.calls)
        assert ticks >= 2

        rig.ctl.stop_recording()
        await asyncio.sleep(0.1)
        await rig.ctl.drain()
        assert len(rig.transport.calls) == ticks

    asyncio.run(scenario())
