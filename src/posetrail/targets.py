from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal, Union

import httpx

from .core.errors import MalformedFolderUrlError

logger = logging.getLogger(__name__)

TargetVariant = Literal["folder", "file-in-folder"]

_VARIANT_BY_SEGMENT: dict[str, TargetVariant] = {
    "fo": "folder",
    "fi": "file-in-folder",
}
_SEGMENT_BY_VARIANT: dict[str, str] = {v: k for k, v in _VARIANT_BY_SEGMENT.items()}

SourceProvider = Union[Callable[[], Union[str, None]], str, None]


@dataclass(frozen=True)
class UploadTarget:
    folder_id: str
    rlkey: str | None
    st: str | None
    variant: TargetVariant


@dataclass(frozen=True)
class Resolution:
    target: UploadTarget
    # The location the target was parsed from (reported as `modelPath`).
    source: str
    folder_url: str


def parse_folder_url(url: str) -> UploadTarget:
    """Parse a shared-folder URL into an `UploadTarget`.

    Accepted shapes (any host; query parameters other than ``rlkey``/``st`` ignored)::

        https://www.dropbox.com/scl/fo/<folderId>/...?rlkey=...&st=...
        https://dl.dropboxusercontent.com/scl/fi/<folderId>/<name>?rlkey=...

    Raises `MalformedFolderUrlError` for anything else.
    """

    if not isinstance(url, str) or not url.strip():
        raise MalformedFolderUrlError(url, "Folder URL must be a non-empty string")

    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL as e:
        raise MalformedFolderUrlError(url, f"Invalid URL ({e})") from e

    if parsed.scheme not in {"http", "https"} or not parsed.host:
        raise MalformedFolderUrlError(url, "Folder URL must be an absolute http(s) URL")

    parts = [p for p in parsed.path.split("/") if p]
    if "scl" not in parts:
        raise MalformedFolderUrlError(url, "No 'scl' segment in folder URL")
    i = parts.index("scl")

    segment = parts[i + 1] if i + 1 < len(parts) else ""
    variant = _VARIANT_BY_SEGMENT.get(segment)
    if variant is None:
        raise MalformedFolderUrlError(url, "Expected 'fo' or 'fi' after 'scl'")

    folder_id = parts[i + 2] if i + 2 < len(parts) else ""
    if not folder_id:
        raise MalformedFolderUrlError(url, "Folder id missing from folder URL")

    return UploadTarget(
        folder_id=folder_id,
        rlkey=parsed.params.get("rlkey"),
        st=parsed.params.get("st"),
        variant=variant,
    )


def folder_url(target: UploadTarget) -> str:
    """Canonical share URL for `target`'s folder, whatever host it was parsed from."""
    return f"https://www.dropbox.com/scl/{_SEGMENT_BY_VARIANT[target.variant]}/{target.folder_id}/?dl=0"


def _read_source(provider: SourceProvider) -> str | None:
    if provider is None:
        return None
    value = provider() if callable(provider) else provider
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


class TargetResolver:
    """Derive the upload destination from whatever content is currently loaded.

    The manifest location (the last JSON listing that was loaded) is preferred
    because it points at the folder itself; the model's own URL is the fallback.
    Results are cached until either reported location changes.
    """

    def __init__(
        self,
        manifest_source: SourceProvider = None,
        model_source: SourceProvider = None,
    ) -> None:
        self._manifest_source = manifest_source
        self._model_source = model_source
        self._cache_key: tuple[str | None, str | None] | None = None
        self._cached: Resolution | None = None

    def set_manifest_source(self, provider: SourceProvider) -> None:
        self._manifest_source = provider
        self._cache_key = None

    def set_model_source(self, provider: SourceProvider) -> None:
        self._model_source = provider
        self._cache_key = None

    def locations(self) -> tuple[str | None, str | None]:
        return _read_source(self._manifest_source), _read_source(self._model_source)

    def resolve(self) -> Resolution | None:
        key = self.locations()
        if key == self._cache_key:
            return self._cached

        resolution: Resolution | None = None
        for label, location in zip(("manifest", "model"), key):
            if location is None:
                continue
            try:
                target = parse_folder_url(location)
            except MalformedFolderUrlError as e:
                logger.info("Cannot derive upload folder from %s location: %s", label, e)
                continue
            resolution = Resolution(target=target, source=location, folder_url=folder_url(target))
            logger.debug("Upload folder resolved from %s location: %s", label, resolution.folder_url)
            break

        if resolution is None:
            logger.info("No upload folder known yet (manifest=%r, model=%r)", key[0], key[1])

        self._cache_key = key
        self._cached = resolution
        return resolution
