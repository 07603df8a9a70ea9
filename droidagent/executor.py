from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass
from typing import Callable

from droidagent.actions import ActionParams, FinishAction, ParsedAction
from droidagent.coords import to_pixels
from droidagent.device import DeviceCapabilities, GestureCallback

_GESTURE_POLL_SEC = 0.05
_INFO_ACTIONS = {
    "Note": "Note recorded",
    "Call_API": "API called",
    "Interact": "User interaction required",
}


@dataclass
class ActionResult:
    success: bool
    should_finish: bool
    message: str | None = None


def _parse_wait_seconds(duration: str | None) -> float:
    m = re.match(r"\s*(\d+(?:\.\d+)?)", duration or "1 seconds")
    if not m:
        return 1.0
    return float(m.group(1))


class ActionExecutor:
    def __init__(
        self,
        device: DeviceCapabilities,
        stop_event: threading.Event | None = None,
        long_press_ms: int = 1000,
        swipe_duration_ms: int = 500,
        gesture_timeout_sec: float = 10.0,
        log: Callable[[str], None] = print,
    ) -> None:
        self.device = device
        self.stop_event = stop_event or threading.Event()
        self.long_press_ms = long_press_ms
        self.swipe_duration_ms = swipe_duration_ms
        self.gesture_timeout_sec = gesture_timeout_sec
        self.log = log

    def execute(self, action: ParsedAction, screen_width: int, screen_height: int) -> ActionResult:
        if isinstance(action, FinishAction):
            return ActionResult(True, True, action.message)

        handlers: dict[str, Callable[[ActionParams, int, int], ActionResult]] = {
            "Tap": self._tap,
            "Double Tap": self._double_tap,
            "Long Press": self._long_press,
            "Swipe": self._swipe,
            "Type": self._type,
            "Type_Name": self._type,
            "Launch": self._launch,
            "Back": self._back,
            "Home": self._home,
            "Wait": self._wait,
            "Take_over": self._take_over,
        }
        if action.name in _INFO_ACTIONS:
            return ActionResult(True, False, _INFO_ACTIONS[action.name])
        handler = handlers.get(action.name)
        if handler is None:
            return ActionResult(False, False, f"Unknown action: {action.name}")
        try:
            return handler(action.params, screen_width, screen_height)
        except Exception as exc:  # noqa: BLE001
            self.log(f"[exec] {action.name} raised: {exc}")
            return ActionResult(False, False, f"{action.name} failed: {exc}")

    def _await_gesture(self, label: str, dispatch: Callable[[GestureCallback], None]) -> ActionResult:
        done = threading.Event()
        outcome: list[bool] = []

        def on_done(completed: bool) -> None:
            outcome.append(completed)
            done.set()

        dispatch(on_done)
        deadline = time.monotonic() + self.gesture_timeout_sec
        while not done.wait(_GESTURE_POLL_SEC):
            if self.stop_event.is_set():
                return ActionResult(False, False, f"{label} interrupted by stop request")
            if time.monotonic() >= deadline:
                return ActionResult(False, False, f"{label} gesture timed out")
        if not outcome[0]:
            return ActionResult(False, False, f"{label} gesture cancelled")
        return ActionResult(True, False)

    def _tap(self, params: ActionParams, width: int, height: int) -> ActionResult:
        if params.element is None:
            return ActionResult(False, False, "No element coordinates")
        x, y = to_pixels(params.element, width, height)
        self.log(f"[exec] tap ({x:.1f},{y:.1f}) from {params.element}")
        return self._await_gesture("Tap", lambda cb: self.device.tap(x, y, cb))

    def _double_tap(self, params: ActionParams, width: int, height: int) -> ActionResult:
        if params.element is None:
            return ActionResult(False, False, "No element coordinates")
        x, y = to_pixels(params.element, width, height)
        self.log(f"[exec] double tap ({x:.1f},{y:.1f})")
        return self._await_gesture("Double Tap", lambda cb: self.device.double_tap(x, y, cb))

    def _long_press(self, params: ActionParams, width: int, height: int) -> ActionResult:
        if params.element is None:
            return ActionResult(False, False, "No element coordinates")
        x, y = to_pixels(params.element, width, height)
        self.log(f"[exec] long press ({x:.1f},{y:.1f}) for {self.long_press_ms}ms")
        return self._await_gesture(
            "Long Press", lambda cb: self.device.long_press(x, y, self.long_press_ms, cb)
        )

    def _swipe(self, params: ActionParams, width: int, height: int) -> ActionResult:
        if params.start is None or params.end is None:
            return ActionResult(False, False, "Missing start/end coordinates")
        x1, y1 = to_pixels(params.start, width, height)
        x2, y2 = to_pixels(params.end, width, height)
        self.log(f"[exec] swipe ({x1:.1f},{y1:.1f})->({x2:.1f},{y2:.1f})")
        return self._await_gesture(
            "Swipe",
            lambda cb: self.device.swipe(x1, y1, x2, y2, self.swipe_duration_ms, cb),
        )

    def _type(self, params: ActionParams, width: int, height: int) -> ActionResult:
        text = params.text or ""
        self.log(f"[exec] type {text!r}")
        ok = self.device.set_focused_text(text)
        return ActionResult(ok, False, "Text typed" if ok else "No focused input field")

    def _launch(self, params: ActionParams, width: int, height: int) -> ActionResult:
        app = params.app
        if not app:
            return ActionResult(False, False, "No app name specified")
        self.log(f"[exec] launch {app!r}")

        installed = self.device.installed_apps()
        needle = app.lower()
        candidates = [(package, app) for package, _ in installed if package == app]
        candidates += [(package, label) for package, label in installed if needle in label.lower()]

        tried: set[str] = set()
        for package, label in candidates:
            if package in tried:
                continue
            tried.add(package)
            if self.device.launch_app(package):
                return ActionResult(True, False, f"Launched {label}")
            self.log(f"[exec] launch {package} refused, trying next match")
        return ActionResult(False, False, f"App not found: {app}")

    def _back(self, params: ActionParams, width: int, height: int) -> ActionResult:
        return ActionResult(self.device.global_back(), False)

    def _home(self, params: ActionParams, width: int, height: int) -> ActionResult:
        return ActionResult(self.device.global_home(), False)

    def _wait(self, params: ActionParams, width: int, height: int) -> ActionResult:
        seconds = _parse_wait_seconds(params.duration)
        self.log(f"[exec] wait {seconds}s")
        if self.stop_event.wait(seconds):
            return ActionResult(True, False, "Wait interrupted")
        return ActionResult(True, False)

    def _take_over(self, params: ActionParams, width: int, height: int) -> ActionResult:
        message = params.message or "User intervention required"
        self.log(f"[exec] takeover requested: {message}")
        return ActionResult(True, False, message)
