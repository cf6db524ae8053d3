from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .runtime.relay import run_relay


def main() -> None:
    p = argparse.ArgumentParser(prog="posetrail", description="posetrail: camera-state upload relay")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--storage", type=Path, default=Path("camera_states"), help="Folder uploads are written to")
    p.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    args = p.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    srv = run_relay(args.storage, host=args.host, port=args.port, log_level=args.log_level)
    print(srv.url)

    # Block forever (so it behaves like a normal CLI server)
    import time

    while True:
        time.sleep(3600)


if __name__ == "__main__":
    main()
