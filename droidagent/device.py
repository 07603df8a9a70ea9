"""Capability interfaces the agent core depends on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

GestureCallback = Callable[[bool], None]


@dataclass
class RawFrame:
    """One captured frame as a packed RGBA buffer.

    `row_stride` may exceed `pixel_stride * width` when the capture surface
    pads its rows.
    """

    width: int
    height: int
    pixel_stride: int
    row_stride: int
    data: bytes


class DeviceCapabilities(ABC):
    """Gesture, input and app control on the target device.

    Gesture methods return immediately and report through `on_done`:
    True when the gesture completed, False when the device cancelled it.
    """

    @abstractmethod
    def tap(self, x: float, y: float, on_done: GestureCallback) -> None:
        pass

    @abstractmethod
    def double_tap(self, x: float, y: float, on_done: GestureCallback) -> None:
        pass

    @abstractmethod
    def long_press(self, x: float, y: float, duration_ms: int, on_done: GestureCallback) -> None:
        pass

    @abstractmethod
    def swipe(
        self,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        duration_ms: int,
        on_done: GestureCallback,
    ) -> None:
        pass

    @abstractmethod
    def set_focused_text(self, text: str) -> bool:
        pass

    @abstractmethod
    def global_back(self) -> bool:
        pass

    @abstractmethod
    def global_home(self) -> bool:
        pass

    @abstractmethod
    def current_foreground_app(self) -> str:
        pass

    @abstractmethod
    def installed_apps(self) -> list[tuple[str, str]]:
        """Return (package, label) candidates; some may have no launcher activity."""

    @abstractmethod
    def launch_app(self, package: str) -> bool:
        pass


class FrameSource(ABC):
    @abstractmethod
    def is_ready(self) -> bool:
        pass

    @abstractmethod
    def acquire(self) -> RawFrame | None:
        pass
