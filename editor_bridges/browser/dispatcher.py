from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

_LOGGER = logging.getLogger("bridge.browser.dispatcher")

WIN_ID_KEY = "win-id"

# Keys the browser sends in window updates. Anything else in a payload is still
# merged, but these are the ones the browser guarantees to keep stable.
WINDOW_FIELDS: tuple[str, ...] = (
    "url",
    "title",
    "icon-file",
    "search",
    "hover",
    "private",
    "mode",
    "recently-audible",
    "x-scroll-perc",
    "y-scroll-perc",
)


class EventKind(str, Enum):
    URL_CHANGED = "url-changed"
    TITLE_CHANGED = "title-changed"
    ICON_CHANGED = "icon-changed"
    LINK_HOVERED = "link-hovered"
    LOAD_STARTED = "load-started"
    LOAD_FINISHED = "load-finished"
    SCROLL_PERC_CHANGED = "scroll-perc-changed"
    RECENTLY_AUDIBLE_CHANGED = "recently-audible-changed"
    ENTERED_MODE = "entered-mode"
    LEFT_MODE = "left-mode"
    SEARCH = "search"
    NEW_WINDOW = "new-window"
    WINDOW_CLOSED = "window-closed"
    WINDOW_INFO = "window-info"

    @staticmethod
    def normalize(method: str) -> str:
        return str(method or "").strip().lower().replace("_", "-")

    @classmethod
    def from_method(cls, method: str) -> EventKind | None:
        try:
            return cls(cls.normalize(method))
        except ValueError:
            return None


@dataclass(slots=True)
class WindowState:
    win_id: Any
    fields: dict[str, Any] = field(default_factory=dict)

    def merge(self, update: Mapping[str, Any]) -> list[str]:
        changed: list[str] = []
        for key, value in update.items():
            if key == WIN_ID_KEY:
                continue
            if key not in self.fields or self.fields[key] != value:
                changed.append(key)
            self.fields[key] = value
        return changed

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self.fields)

    def snapshot(self) -> Mapping[str, Any]:
        return MappingProxyType({WIN_ID_KEY: self.win_id, **self.fields})

    @property
    def url(self) -> str | None:
        return self.fields.get("url")

    @property
    def title(self) -> str | None:
        return self.fields.get("title")

    @property
    def private(self) -> bool | None:
        return self.fields.get("private")


class WindowStateStore:
    """Window records keyed by win-id. Only the dispatcher writes here."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: dict[Any, WindowState] = {}

    def get(self, win_id: Any) -> WindowState | None:
        with self._lock:
            return self._windows.get(win_id)

    def ensure(self, win_id: Any) -> WindowState:
        with self._lock:
            state = self._windows.get(win_id)
            if state is None:
                state = WindowState(win_id=win_id)
                self._windows[win_id] = state
            return state

    def merge(self, win_id: Any, update: Mapping[str, Any]) -> WindowState:
        state = self.ensure(win_id)
        with self._lock:
            state.merge(update)
        return state

    def forget(self, win_id: Any) -> bool:
        with self._lock:
            return self._windows.pop(win_id, None) is not None

    def items(self) -> list[tuple[Any, WindowState]]:
        with self._lock:
            return list(self._windows.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def __iter__(self) -> Iterator[Any]:
        return iter([win_id for win_id, _ in self.items()])

    def __contains__(self, win_id: object) -> bool:
        with self._lock:
            return win_id in self._windows


@dataclass(frozen=True, slots=True)
class Notification:
    method: str
    kind: EventKind | None
    params: Mapping[str, Any]
    win_id: Any = None
    window: Mapping[str, Any] | None = None


Handler = Callable[[Notification], None]


class Dispatcher:
    """Route browser notifications to handlers registered per event kind.

    Every notification first goes through the state-sync step, which merges the
    payload into the window record named by its `win-id`. Handlers then run in
    registration order; a handler raising is logged and skipped so the rest of
    the chain (and the read loop that called us) carries on.
    """

    def __init__(self, store: WindowStateStore | None = None) -> None:
        self.store = store if store is not None else WindowStateStore()
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(kind: EventKind | str) -> str:
        if isinstance(kind, EventKind):
            return kind.value
        return EventKind.normalize(kind)

    def register(self, kind: EventKind | str, handler: Handler) -> Handler:
        if not callable(handler):
            raise TypeError("handler must be callable")
        key = self._key(kind)
        if not key:
            raise ValueError("event kind is required")
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)
        return handler

    def unregister(self, kind: EventKind | str, handler: Handler) -> bool:
        key = self._key(kind)
        with self._lock:
            handlers = self._handlers.get(key)
            if not handlers or handler not in handlers:
                return False
            handlers.remove(handler)
            if not handlers:
                self._handlers.pop(key, None)
            return True

    def on(self, kind: EventKind | str) -> Callable[[Handler], Handler]:
        def _decorator(fn: Handler) -> Handler:
            return self.register(kind, fn)

        return _decorator

    def handlers_for(self, kind: EventKind | str) -> list[Handler]:
        with self._lock:
            return list(self._handlers.get(self._key(kind), ()))

    def sync_state(self, record: Mapping[str, Any]) -> WindowState | None:
        win_id = record.get(WIN_ID_KEY)
        if win_id is None:
            return None
        return self.store.merge(win_id, record)

    def dispatch(self, method: str, params: Any = None) -> Notification:
        payload: Mapping[str, Any] = params if isinstance(params, Mapping) else {}
        kind = EventKind.from_method(method)

        state = self.sync_state(payload)
        note = Notification(
            method=method,
            kind=kind,
            params=payload,
            win_id=state.win_id if state is not None else None,
            window=state.snapshot() if state is not None else None,
        )

        for handler in self.handlers_for(kind if kind is not None else method):
            try:
                handler(note)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("handler %r failed for %s", handler, method)
        return note


__all__ = [
    "Dispatcher",
    "EventKind",
    "Handler",
    "Notification",
    "WINDOW_FIELDS",
    "WIN_ID_KEY",
    "WindowState",
    "WindowStateStore",
]
