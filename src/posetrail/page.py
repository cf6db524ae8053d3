from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .core.events import EventSource


PointerEventType = Literal["pointerdown", "touchstart"]


@dataclass(frozen=True)
class PointerEvent:
    type: PointerEventType
    button: int = 0


@dataclass(frozen=True)
class VisibilityEvent:
    hidden: bool


@dataclass(frozen=True)
class PageTransitionEvent:
    # True when the page goes into the back/forward cache instead of being destroyed.
    persisted: bool


class InputSurface(EventSource):
    """The viewport element the user drags on."""

    def pointer_down(self, button: int = 0) -> None:
        self.dispatch("pointerdown", PointerEvent(type="pointerdown", button=int(button)))

    def touch_start(self) -> None:
        self.dispatch("touchstart", PointerEvent(type="touchstart", button=0))


class Page(EventSource):
    """Lifecycle events of the hosting page (window + document).

    Event types:
    - ``"visibilitychange"`` with a `VisibilityEvent`
    - ``"pagehide"`` with a `PageTransitionEvent`
    - ``"beforeunload"`` with no payload
    """

    def __init__(self) -> None:
        super().__init__()
        self.hidden = False

    def hide(self) -> None:
        self.hidden = True
        self.dispatch("visibilitychange", VisibilityEvent(hidden=True))

    def show(self) -> None:
        self.hidden = False
        self.dispatch("visibilitychange", VisibilityEvent(hidden=False))

    def pagehide(self, *, persisted: bool = False) -> None:
        self.dispatch("pagehide", PageTransitionEvent(persisted=bool(persisted)))

    def beforeunload(self) -> None:
        self.dispatch("beforeunload", None)
