from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Mapping, Protocol

import httpx

from .core.errors import DeliveryError

logger = logging.getLogger(__name__)


class AsyncTransport(Protocol):
    async def send(self, payload: Mapping[str, Any]) -> Any: ...


class OneWayTransport(Protocol):
    def send(self, payload: Mapping[str, Any]) -> bool: ...


def _error_message(res: httpx.Response) -> str:
    try:
        data = res.json()
    except ValueError:
        return res.text
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return res.text


class HttpTransport:
    """Ordinary request/response delivery to the relay endpoint.

    Contract:
    - POST `url` with the upload payload as JSON
    - 2xx: returns the decoded JSON body (``{"success": true, "path": ...}``)
    - anything else, or a network error: raises `DeliveryError`
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_s = float(timeout_s)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def send(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        client = self._get_client()
        try:
            res = await client.post(self.url, json=dict(payload))
        except httpx.HTTPError as e:
            raise DeliveryError(f"Upload request failed: {e!r}") from e

        if not res.is_success:
            raise DeliveryError(
                f"Upload failed: {res.status_code} {_error_message(res)}",
                status_code=res.status_code,
            )

        try:
            data = res.json()
        except ValueError:
            return {}
        return dict(data) if isinstance(data, dict) else {}

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class BeaconTransport:
    """One-way delivery that survives the caller going away.

    `send()` only queues the body and reports whether it was accepted, like
    ``navigator.sendBeacon``. A non-daemon worker thread posts queued bodies, so the
    interpreter waits for them before exiting. The worker stops after
    `idle_timeout_s` without work and is restarted by the next `send()`.
    Responses are logged, never returned.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 10.0,
        queue_size: int = 16,
        http_transport: httpx.BaseTransport | None = None,
        idle_timeout_s: float = 0.5,
    ) -> None:
        self.url = url
        self.timeout_s = float(timeout_s)
        self.idle_timeout_s = float(idle_timeout_s)
        self._http_transport = http_transport
        self._queue: queue.Queue[bytes] = queue.Queue(maxsize=int(queue_size))
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._closed = False

    def send(self, payload: Mapping[str, Any]) -> bool:
        if self._closed:
            return False
        body = json.dumps(dict(payload)).encode("utf-8")
        try:
            self._queue.put_nowait(body)
        except queue.Full:
            logger.warning("Beacon queue is full; dropping %d byte payload", len(body))
            return False
        self._ensure_worker()
        return True

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None:
                self._worker = threading.Thread(target=self._drain, name="posetrail-beacon", daemon=False)
                self._worker.start()

    def _drain(self) -> None:
        with httpx.Client(timeout=self.timeout_s, transport=self._http_transport) as client:
            while True:
                try:
                    body = self._queue.get(timeout=self.idle_timeout_s)
                except queue.Empty:
                    with self._lock:
                        if self._queue.empty():
                            self._worker = None
                            return
                    continue
                try:
                    res = client.post(self.url, content=body, headers={"content-type": "application/json"})
                    if res.is_success:
                        logger.debug("Beacon delivered (%d bytes)", len(body))
                    else:
                        logger.warning("Beacon rejected: %s %s", res.status_code, _error_message(res))
                except httpx.HTTPError as e:
                    logger.warning("Beacon delivery failed: %r", e)
                finally:
                    self._queue.task_done()

    def close(self, timeout_s: float | None = None) -> bool:
        """Stop accepting sends and wait for queued ones. Returns True when drained."""
        self._closed = True
        with self._lock:
            worker = self._worker
        if worker is not None:
            worker.join(timeout_s)
        return self._queue.empty()
