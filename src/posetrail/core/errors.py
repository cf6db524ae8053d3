from __future__ import annotations


class PosetrailError(Exception):
    """Base class for every error raised by posetrail."""


class MissingDependencyError(PosetrailError, TypeError):
    """A required collaborator (camera, controls) was not provided."""


class MalformedSnapshotError(PosetrailError, ValueError):
    """A serialized pose could not be decoded."""


class MalformedFolderUrlError(PosetrailError, ValueError):
    """A shared-folder URL does not match any accepted shape."""

    def __init__(self, url: object, reason: str) -> None:
        super().__init__(f"{reason}: {url!r}")
        self.url = url
        self.reason = reason


class DeliveryError(PosetrailError, RuntimeError):
    """An upload attempt failed (network error or non-success response)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
