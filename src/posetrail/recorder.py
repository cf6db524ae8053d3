from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine

import httpx

from .codec import PoseCodec, now_ms
from .config import RecorderConfig
from .core.errors import DeliveryError
from .core.events import EventSource
from .core.snapshot import PoseSnapshot
from .io.store import JsonFileStore, KeyValueStore
from .page import Page
from .payload import build_session_document, build_upload_payload, upload_filename
from .targets import Resolution, SourceProvider, TargetResolver
from .transport import AsyncTransport, BeaconTransport, HttpTransport, OneWayTransport

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


class LifecycleSignal(str, Enum):
    HIDDEN = "hidden"
    CACHED = "cached"
    UNLOADING = "unloading"
    DISPOSED = "disposed"


class Delivery(str, Enum):
    ASYNC = "async"
    BEACON = "beacon"


@dataclass(frozen=True)
class LifecycleRoute:
    delivery: Delivery
    clear_after: bool


# Which transport each page-lifecycle signal uses and whether a successful
# delivery empties the buffer. Pages that may be destroyed get the beacon.
LIFECYCLE_ROUTES: dict[LifecycleSignal, LifecycleRoute] = {
    LifecycleSignal.HIDDEN: LifecycleRoute(Delivery.ASYNC, clear_after=False),
    LifecycleSignal.CACHED: LifecycleRoute(Delivery.ASYNC, clear_after=False),
    LifecycleSignal.UNLOADING: LifecycleRoute(Delivery.BEACON, clear_after=False),
    LifecycleSignal.DISPOSED: LifecycleRoute(Delivery.ASYNC, clear_after=True),
}


class DeliveryBreaker:
    """One-shot switch that disables delivery after the first failure.

    There is no reset: once tripped it stays tripped for the controller's lifetime.
    """

    def __init__(self) -> None:
        self._reason: str | None = None

    @property
    def delivery_disabled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def trip(self, reason: str) -> None:
        if self._reason is not None:
            return
        self._reason = reason
        logger.warning("Camera state upload failed (%s); further uploads are disabled", reason)


class RecordingSessionController:
    """Record camera poses while the user manipulates the view and ship them to the relay.

    Inputs:
    - ``pointerdown`` (primary button) / ``touchstart`` on `input_surface` start a session
    - ``change`` on `controls` appends a sample, at most one per `sample_interval_ms`
    - an autosave task flushes every `autosave_interval_ms` while recording
    - ``visibilitychange`` / ``pagehide`` / ``beforeunload`` on `page` and `aclose()`
      go through `handle_lifecycle()`, which captures once more and flushes

    At most one delivery is in flight at any time. The first failed delivery trips
    the breaker and every later flush becomes a no-op.
    """

    def __init__(
        self,
        camera: Any,
        controls: Any,
        *,
        transport: AsyncTransport | None = None,
        beacon: OneWayTransport | None = None,
        page: Page | None = None,
        input_surface: EventSource | None = None,
        manifest_source: SourceProvider = None,
        model_source: SourceProvider = None,
        config: RecorderConfig | None = None,
        clock: Callable[[], int] | None = None,
        store: KeyValueStore | None = None,
    ) -> None:
        self.config = config or RecorderConfig()
        self._clock = clock or now_ms

        if store is None and self.config.store_path is not None:
            store = JsonFileStore(self.config.store_path)
        self.codec = PoseCodec(camera, controls, store=store, clock=self._clock)
        self.controls = controls
        self.page = page
        self.input_surface = input_surface if input_surface is not None else getattr(controls, "dom_element", None)

        self._owns_transport = transport is None
        self.transport: AsyncTransport = transport or HttpTransport(
            self.config.upload_url, timeout_s=self.config.request_timeout_s
        )
        self._owns_beacon = beacon is None
        self.beacon: OneWayTransport = beacon or BeaconTransport(
            self.config.upload_url,
            timeout_s=self.config.request_timeout_s,
            queue_size=self.config.beacon_queue_size,
        )
        self.resolver = TargetResolver(manifest_source, model_source)
        self.breaker = DeliveryBreaker()

        self._state = SessionState.IDLE
        self._buffer: list[PoseSnapshot] = []
        self._last_sample_time = 0
        self._last_flush_time = 0
        self._flush_count = 0

        self._flush_in_progress = False
        self._flush_settled: asyncio.Event | None = None
        self._autosave_task: asyncio.Task | None = None
        self._pending: set[asyncio.Task] = set()

        self._disposed = False
        self._dispose_result: asyncio.Task | bool | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._attach()

    # Wiring

    def _attach(self) -> None:
        surface = self.input_surface
        if surface is not None:
            self._unsubscribers.append(surface.add_listener("pointerdown", self._on_control_start))
            self._unsubscribers.append(surface.add_listener("touchstart", self._on_control_start))
        else:
            logger.warning("No input surface; recording starts only via start_recording()")

        if hasattr(self.controls, "add_listener"):
            self._unsubscribers.append(self.controls.add_listener("change", self._on_control_change))

        if self.page is not None:
            self._unsubscribers.append(self.page.add_listener("visibilitychange", self._on_visibility_change))
            self._unsubscribers.append(self.page.add_listener("pagehide", self._on_page_hide))
            self._unsubscribers.append(self.page.add_listener("beforeunload", self._on_before_unload))

    def _detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def set_manifest_source(self, provider: SourceProvider) -> None:
        self.resolver.set_manifest_source(provider)

    def set_model_source(self, provider: SourceProvider) -> None:
        self.resolver.set_model_source(provider)

    # State

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    @property
    def buffer(self) -> tuple[PoseSnapshot, ...]:
        return tuple(self._buffer)

    @property
    def delivery_disabled(self) -> bool:
        return self.breaker.delivery_disabled

    @property
    def flush_in_progress(self) -> bool:
        return self._flush_in_progress

    @property
    def last_sample_time(self) -> int:
        return self._last_sample_time

    @property
    def last_flush_time(self) -> int:
        return self._last_flush_time

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "bufferedStates": len(self._buffer),
            "lastSampleTime": int(self._last_sample_time),
            "lastFlushTime": int(self._last_flush_time),
            "flushInProgress": self._flush_in_progress,
            "deliveryDisabled": self.breaker.delivery_disabled,
            "flushCount": int(self._flush_count),
            "disposed": self._disposed,
        }

    # Event handlers

    def _on_control_start(self, event: Any) -> None:
        if getattr(event, "type", None) == "touchstart" or getattr(event, "button", None) == 0:
            self.start_recording()

    def _on_control_change(self, event: Any = None) -> None:
        if self._state is not SessionState.RECORDING:
            return
        now = int(self._clock())
        if now - self._last_sample_time >= self.config.sample_interval_ms:
            self.record_state(now)
            self._last_sample_time = now

    def _on_visibility_change(self, event: Any) -> None:
        hidden = getattr(event, "hidden", None)
        if hidden is None and self.page is not None:
            hidden = self.page.hidden
        if hidden:
            self.handle_lifecycle(LifecycleSignal.HIDDEN)

    def _on_page_hide(self, event: Any) -> None:
        if getattr(event, "persisted", False):
            self.handle_lifecycle(LifecycleSignal.CACHED)
        else:
            self.handle_lifecycle(LifecycleSignal.UNLOADING)

    def _on_before_unload(self, event: Any = None) -> None:
        self.handle_lifecycle(LifecycleSignal.UNLOADING)

    # Recording

    def start_recording(self) -> bool:
        if self._state is SessionState.RECORDING or self._disposed:
            return False
        now = int(self._clock())
        self._state = SessionState.RECORDING
        self._buffer = []
        self._last_sample_time = now
        self._last_flush_time = now
        self.record_state(now)
        self._arm_autosave()
        logger.info("Camera state recording started")
        return True

    def stop_recording(self) -> bool:
        if self._state is not SessionState.RECORDING:
            return False
        self._state = SessionState.IDLE
        self._cancel_autosave()
        logger.info("Camera state recording stopped: %d states recorded", len(self._buffer))
        return True

    def record_state(self, timestamp: int | None = None) -> PoseSnapshot | None:
        if self._state is not SessionState.RECORDING:
            return None
        ts = int(self._clock()) if timestamp is None else int(timestamp)
        if self._buffer and self._buffer[-1].timestamp is not None:
            # Wall clocks can step backwards; keep the session ordered.
            ts = max(ts, int(self._buffer[-1].timestamp))
        snapshot = self.codec.capture(ts)
        self._buffer.append(snapshot)
        logger.debug("Recorded camera state #%d at %d", len(self._buffer), ts)
        return snapshot

    # Autosave

    def _arm_autosave(self) -> None:
        self._cancel_autosave()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; autosave timer not armed")
            return
        self._autosave_task = loop.create_task(self._autosave_loop(), name="posetrail-autosave")

    def _cancel_autosave(self) -> None:
        task = self._autosave_task
        self._autosave_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _autosave_loop(self) -> None:
        period_s = self.config.autosave_interval_ms / 1000.0
        while True:
            await asyncio.sleep(period_s)
            # Ticks run as their own tasks so cancelling the timer never
            # cancels a delivery that is already in flight.
            self._spawn(self.autosave_tick())

    async def autosave_tick(self) -> bool:
        if (
            self._state is not SessionState.RECORDING
            or not self._buffer
            or self._flush_in_progress
            or self.breaker.delivery_disabled
        ):
            return False
        delivered = await self.flush(clear=False)
        if delivered:
            logger.info("Autosaved %d camera states", len(self._buffer))
        return delivered

    # Delivery

    def _prepare(self, resolution: Resolution) -> dict[str, str]:
        now = int(self._clock())
        document = build_session_document(
            list(self._buffer),
            recorded_at_ms=now,
            model_path=resolution.source,
            folder_url=resolution.folder_url,
            record_interval_ms=self.config.sample_interval_ms,
        )
        return build_upload_payload(resolution.target.folder_id, upload_filename(now), document)

    def _ready_to_deliver(self, label: str) -> Resolution | None:
        if self.breaker.delivery_disabled:
            logger.debug("Skipping %s flush: uploads disabled after an earlier failure", label)
            return None
        if self._flush_in_progress:
            # The beacon is the last chance before the page goes away, so say so loudly.
            level = logging.WARNING if label == "beacon" else logging.DEBUG
            logger.log(level, "Skipping %s flush: another upload is in flight", label)
            return None
        if not self._buffer:
            return None
        return self.resolver.resolve()

    async def flush(self, *, clear: bool = False) -> bool:
        """Deliver the whole buffer over the asynchronous transport.

        Returns True on success. With ``clear=True`` the delivered states are removed
        from the buffer afterwards. Returns False without contacting the transport when
        uploads are disabled, another upload is in flight, the buffer is empty or no
        upload folder is known.
        """

        resolution = self._ready_to_deliver("async")
        if resolution is None:
            return False

        payload = self._prepare(resolution)
        sent = self._buffer
        count = len(sent)

        # Checked and set before the only suspension point below.
        self._flush_in_progress = True
        settled = self._flush_settled = asyncio.Event()
        try:
            result = await self.transport.send(payload)
        except (DeliveryError, httpx.HTTPError, OSError) as e:
            self.breaker.trip(str(e))
            return False
        except Exception as e:
            logger.error("Unexpected error from upload transport", exc_info=True)
            self.breaker.trip(f"{type(e).__name__}: {e}")
            return False
        finally:
            self._flush_in_progress = False
            settled.set()

        if result is False:
            self.breaker.trip("transport reported failure")
            return False

        self._flush_count += 1
        self._last_flush_time = int(self._clock())
        if clear and self._buffer is sent:
            del self._buffer[:count]
        logger.info("Uploaded %d camera states as %s", count, payload["filename"])
        return True

    def flush_beacon(self) -> bool:
        """Hand the buffer to the one-way transport. Returns whether it was accepted."""
        resolution = self._ready_to_deliver("beacon")
        if resolution is None:
            return False

        payload = self._prepare(resolution)
        try:
            accepted = self.beacon.send(payload)
        except (DeliveryError, OSError) as e:
            self.breaker.trip(str(e))
            return False
        except Exception as e:
            logger.error("Unexpected error from beacon transport", exc_info=True)
            self.breaker.trip(f"{type(e).__name__}: {e}")
            return False

        if not accepted:
            self.breaker.trip("beacon send was refused")
            return False

        self._flush_count += 1
        self._last_flush_time = int(self._clock())
        logger.info("Queued %d camera states as %s (beacon)", len(self._buffer), payload["filename"])
        return True

    async def _settle_then_flush(self, *, clear: bool) -> bool:
        while self._flush_in_progress and self._flush_settled is not None:
            await self._flush_settled.wait()
        return await self.flush(clear=clear)

    # Lifecycle

    def handle_lifecycle(self, signal: LifecycleSignal | str) -> asyncio.Task | bool | None:
        """Final capture and flush for a page-lifecycle signal.

        Returns the scheduled flush task for asynchronous routes, the beacon result
        for the unloading route, or None when there was nothing to do.
        """

        signal = LifecycleSignal(signal)
        route = LIFECYCLE_ROUTES[signal]

        if signal is LifecycleSignal.DISPOSED:
            if self._disposed:
                return self._dispose_result
            self._disposed = True
            self._detach()
            self._cancel_autosave()

        if self._state is SessionState.RECORDING:
            self.record_state()
        if signal is LifecycleSignal.DISPOSED:
            self._state = SessionState.IDLE

        if not self._buffer:
            return None

        logger.debug("Lifecycle signal %s: flushing %d states", signal.value, len(self._buffer))
        result: asyncio.Task | bool | None
        if route.delivery is Delivery.BEACON:
            result = self.flush_beacon()
        else:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # Without an event loop the asynchronous transport cannot run.
                logger.info("No running event loop for %s flush; using beacon", signal.value)
                result = self.flush_beacon()
                if result and route.clear_after:
                    self._buffer.clear()
            else:
                result = self._spawn(self._settle_then_flush(clear=route.clear_after))

        if signal is LifecycleSignal.DISPOSED:
            self._dispose_result = result
        return result

    async def aclose(self) -> bool:
        """Dispose the controller: detach listeners, stop autosave, flush and clear.

        Safe to call more than once; later calls wait for the same final flush.
        """

        result = self.handle_lifecycle(LifecycleSignal.DISPOSED)
        delivered = bool(await result) if isinstance(result, asyncio.Task) else bool(result)
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            await self.transport.aclose()
        if self._owns_beacon and isinstance(self.beacon, BeaconTransport):
            self.beacon.close(timeout_s=0)
        return delivered

    # Tasks

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Camera state task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until every scheduled flush has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
