from __future__ import annotations

from .codec import PoseCodec
from .config import RecorderConfig
from .core.errors import (
    DeliveryError,
    MalformedFolderUrlError,
    MalformedSnapshotError,
    MissingDependencyError,
    PosetrailError,
)
from .core.scene import OrbitControls, PerspectiveCamera
from .core.snapshot import PoseSnapshot
from .page import InputSurface, Page
from .payload import load_session_document
from .recorder import DeliveryBreaker, LifecycleSignal, RecordingSessionController, SessionState
from .targets import TargetResolver, UploadTarget, parse_folder_url
from .transport import BeaconTransport, HttpTransport

__all__ = [
    "PoseCodec",
    "PoseSnapshot",
    "RecordingSessionController",
    "SessionState",
    "LifecycleSignal",
    "DeliveryBreaker",
    "RecorderConfig",
    "PerspectiveCamera",
    "OrbitControls",
    "InputSurface",
    "Page",
    "UploadTarget",
    "TargetResolver",
    "parse_folder_url",
    "HttpTransport",
    "BeaconTransport",
    "load_session_document",
    "PosetrailError",
    "MissingDependencyError",
    "MalformedSnapshotError",
    "MalformedFolderUrlError",
    "DeliveryError",
]
