from __future__ import annotations

import contextlib
import logging
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import DEFAULT_UPLOAD_PATH

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def _is_safe_name(name: str) -> bool:
    return name not in {".", ".."} and "/" not in name and "\\" not in name and "\x00" not in name


def _available_path(folder: Path, filename: str) -> Path:
    """Return `folder/filename`, or ``name (n).ext`` when that already exists."""
    candidate = folder / filename
    if not candidate.exists():
        return candidate
    stem = Path(filename).stem
    suffix = Path(filename).suffix
    n = 1
    while True:
        candidate = folder / f"{stem} ({n}){suffix}"
        if not candidate.exists():
            return candidate
        n += 1


def create_relay_app(storage_root: str | Path, *, upload_path: str = DEFAULT_UPLOAD_PATH) -> FastAPI:
    """Relay that accepts camera-state uploads and writes them under `storage_root`.

    Each upload lands in ``<storage_root>/<folderId>/<filename>``; a name that is
    already taken gets a `` (n)`` suffix instead of being overwritten.
    """

    root = Path(storage_root)
    app = FastAPI(title="posetrail relay", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/healthz")
    def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.post(upload_path)
    async def upload_camera_states(request: Request) -> Any:
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Request body must be JSON")
        if not isinstance(body, dict):
            return _error(400, "Request body must be a JSON object")

        folder_id = body.get("folderId")
        filename = body.get("filename")
        data = body.get("data")
        if not all(isinstance(v, str) and v for v in (folder_id, filename, data)):
            return _error(400, "folderId, filename and data are required")
        if not _is_safe_name(folder_id) or not _is_safe_name(filename):
            return _error(400, "folderId and filename must be plain names")

        folder = root / folder_id
        try:
            folder.mkdir(parents=True, exist_ok=True)
            target = _available_path(folder, filename)
            target.write_text(data, encoding="utf-8")
        except OSError as e:
            logger.error("Failed to store camera states %s/%s: %s", folder_id, filename, e)
            return _error(500, f"Failed to store camera states: {e}")

        path = f"/{folder_id}/{target.name}"
        logger.info("Stored camera states at %s", path)
        return {"success": True, "path": path, "message": "Camera states uploaded"}

    return app


@dataclass(frozen=True)
class RelayServer:
    host: str
    port: int
    url: str
    storage_root: Path


def _find_free_port(host: str) -> int:
    with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind((host, 0))
        return int(s.getsockname()[1])


def run_relay(
    storage_root: str | Path,
    *,
    host: str = "127.0.0.1",
    port: int = 0,
    log_level: str = "info",
    access_log: bool = False,
) -> RelayServer:
    """Start the relay on a background thread and return its address.

    `port=0` picks a free port.
    """

    if port == 0:
        port = _find_free_port(host)

    root = Path(storage_root)
    app = create_relay_app(root)

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level, access_log=access_log)
    server = uvicorn.Server(config)

    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    # Give it a moment so a first upload doesn't race with startup.
    time.sleep(0.05)

    return RelayServer(host=host, port=port, url=f"http://{host}:{port}/", storage_root=root)
