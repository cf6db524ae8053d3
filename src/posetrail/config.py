from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_UPLOAD_PATH = "/api/dropbox/upload-camera-states"


def _normalize_base_url(url: str) -> str:
    url = url.strip()
    if not url:
        return ""
    # Allow passing just host:port.
    if "://" not in url:
        url = "http://" + url
    return url.rstrip("/")


@dataclass(frozen=True)
class RecorderConfig:
    """Settings for a recording controller and its transports.

    `sample_interval_ms` is also written to every session document as
    ``recordInterval``; consumers of uploaded files assume 100.
    """

    relay_url: str = "http://127.0.0.1:8000"
    upload_path: str = DEFAULT_UPLOAD_PATH
    sample_interval_ms: int = 100
    autosave_interval_ms: int = 5000
    request_timeout_s: float = 10.0
    beacon_queue_size: int = 16
    store_path: Path | None = None

    def __post_init__(self) -> None:
        if int(self.sample_interval_ms) < 0:
            raise ValueError("sample_interval_ms must be >= 0")
        if int(self.autosave_interval_ms) <= 0:
            raise ValueError("autosave_interval_ms must be > 0")
        if float(self.request_timeout_s) <= 0:
            raise ValueError("request_timeout_s must be > 0")
        if int(self.beacon_queue_size) <= 0:
            raise ValueError("beacon_queue_size must be > 0")

    @property
    def upload_url(self) -> str:
        path = self.upload_path if self.upload_path.startswith("/") else "/" + self.upload_path
        return _normalize_base_url(self.relay_url) + path

    @classmethod
    def from_env(cls, **overrides: object) -> "RecorderConfig":
        """Build a config from ``POSETRAIL_*`` environment variables.

        Recognised: POSETRAIL_RELAY_URL, POSETRAIL_UPLOAD_PATH, POSETRAIL_TIMEOUT_S,
        POSETRAIL_AUTOSAVE_MS, POSETRAIL_STORE_PATH. Keyword overrides win.
        """

        cfg = cls()
        env: dict[str, object] = {}

        relay_url = _normalize_base_url(os.getenv("POSETRAIL_RELAY_URL", ""))
        if relay_url:
            env["relay_url"] = relay_url
        upload_path = os.getenv("POSETRAIL_UPLOAD_PATH", "").strip()
        if upload_path:
            env["upload_path"] = upload_path
        timeout = os.getenv("POSETRAIL_TIMEOUT_S", "").strip()
        if timeout:
            env["request_timeout_s"] = float(timeout)
        autosave = os.getenv("POSETRAIL_AUTOSAVE_MS", "").strip()
        if autosave:
            env["autosave_interval_ms"] = int(autosave)
        store_path = os.getenv("POSETRAIL_STORE_PATH", "").strip()
        if store_path:
            env["store_path"] = Path(store_path).expanduser()

        env.update(overrides)
        return replace(cfg, **env)  # type: ignore[arg-type]
