from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path

import numpy as np

from posetrail import (
    InputSurface,
    OrbitControls,
    Page,
    PerspectiveCamera,
    RecorderConfig,
    RecordingSessionController,
)
from posetrail.runtime import run_relay


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    storage = Path(tempfile.mkdtemp(prefix="posetrail_"))
    relay = run_relay(storage, log_level="warning")

    camera = PerspectiveCamera(fov=45.0, position=(0.0, 0.0, 5.0))
    surface = InputSurface()
    controls = OrbitControls(camera, dom_element=surface)
    page = Page()

    recorder = RecordingSessionController(
        camera,
        controls,
        page=page,
        model_source="https://www.dropbox.com/scl/fo/demoFolder/liver.glb?rlkey=demo&dl=0",
        config=RecorderConfig(relay_url=relay.url, autosave_interval_ms=1000),
    )

    # Simulated drag: orbit the camera around the origin for ~2.5 seconds.
    surface.pointer_down(button=0)
    for i in range(50):
        angle = 0.05 * i
        camera.position = (5.0 * np.sin(angle), 0.0, 5.0 * np.cos(angle))
        controls.update()
        await asyncio.sleep(0.05)

    page.hide()
    await recorder.drain()
    await recorder.aclose()

    for path in sorted(storage.rglob("*.json")):
        print(path.relative_to(storage))


if __name__ == "__main__":
    asyncio.run(main())
