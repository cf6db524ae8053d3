from __future__ import annotations

from .relay import RelayServer, create_relay_app, run_relay

__all__ = ["RelayServer", "create_relay_app", "run_relay"]
