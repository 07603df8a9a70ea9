"""
ADB-backed device control and screen capture.

Gestures go through `adb shell input`, frames through
`adb exec-out screencap` in raw RGBA form.
"""

from __future__ import annotations

import re
import struct
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from droidagent.capture import padded_surface_size
from droidagent.device import DeviceCapabilities, FrameSource, GestureCallback, RawFrame

KEYCODE_HOME = 3
KEYCODE_BACK = 4
_RGBA_8888 = 1
_DOUBLE_TAP_GAP_SEC = 0.1


class AdbError(RuntimeError):
    pass


def adb_text_escape(text: str) -> str:
    escaped = text.replace("\\", "\\\\")
    for ch in "\"'`$&|;<>()*?~#":
        escaped = escaped.replace(ch, "\\" + ch)
    return escaped.replace(" ", "%s")


class AdbClient:
    def __init__(self, adb_path: str = "adb", serial: str | None = None, timeout_sec: int = 20) -> None:
        self.adb_path = adb_path
        self.serial = serial
        self.timeout_sec = timeout_sec

    def _base_cmd(self) -> list[str]:
        cmd = [self.adb_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        return cmd

    def run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess:
        cmd = self._base_cmd() + args
        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout_sec)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise AdbError(f"adb {' '.join(args)} failed: {exc}") from exc
        if check and result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise AdbError(f"adb {' '.join(args)} exited {result.returncode}: {stderr}")
        return result

    def shell(self, args: list[str], check: bool = True) -> str:
        result = self.run(["shell"] + args, check=check)
        return result.stdout.decode("utf-8", errors="replace")

    def exec_out(self, args: list[str]) -> bytes:
        return self.run(["exec-out"] + args).stdout

    def get_state(self) -> str:
        result = self.run(["get-state"], check=False)
        return result.stdout.decode("utf-8", errors="replace").strip()

    def screen_size(self) -> tuple[int, int]:
        output = self.shell(["wm", "size"])
        # "Override size" wins over "Physical size" when both are present.
        matches = re.findall(r"(Physical|Override) size:\s*(\d+)x(\d+)", output)
        if not matches:
            raise AdbError(f"cannot parse screen size from: {output.strip()}")
        sizes = {kind: (int(w), int(h)) for kind, w, h in matches}
        return sizes.get("Override") or sizes["Physical"]


class AdbDevice(DeviceCapabilities):
    def __init__(
        self,
        client: AdbClient,
        app_aliases: dict[str, str] | None = None,
        log: Callable[[str], None] = print,
    ) -> None:
        self.client = client
        self.app_aliases = app_aliases or {}
        self.log = log
        # One worker keeps gestures strictly ordered.
        self._gestures = ThreadPoolExecutor(max_workers=1, thread_name_prefix="adb-gesture")

    def close(self) -> None:
        self._gestures.shutdown(wait=True)

    def _dispatch(self, label: str, work: Callable[[], None], on_done: GestureCallback) -> None:
        def _run() -> None:
            try:
                work()
            except AdbError as exc:
                self.log(f"[adb] {label} cancelled: {exc}")
                on_done(False)
                return
            on_done(True)

        self._gestures.submit(_run)

    def tap(self, x: float, y: float, on_done: GestureCallback) -> None:
        px, py = round(x), round(y)
        self._dispatch("tap", lambda: self.client.shell(["input", "tap", str(px), str(py)]), on_done)

    def double_tap(self, x: float, y: float, on_done: GestureCallback) -> None:
        px, py = round(x), round(y)

        def _work() -> None:
            self.client.shell(["input", "tap", str(px), str(py)])
            time.sleep(_DOUBLE_TAP_GAP_SEC)
            self.client.shell(["input", "tap", str(px), str(py)])

        self._dispatch("double tap", _work, on_done)

    def long_press(self, x: float, y: float, duration_ms: int, on_done: GestureCallback) -> None:
        px, py = str(round(x)), str(round(y))
        self._dispatch(
            "long press",
            lambda: self.client.shell(["input", "swipe", px, py, px, py, str(duration_ms)]),
            on_done,
        )

    def swipe(
        self,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        duration_ms: int,
        on_done: GestureCallback,
    ) -> None:
        args = ["input", "swipe"] + [str(round(v)) for v in (x1, y1, x2, y2)] + [str(duration_ms)]
        self._dispatch("swipe", lambda: self.client.shell(args), on_done)

    def _input_method_shown(self) -> bool:
        output = self.client.shell(["dumpsys", "input_method"], check=False)
        return "mInputShown=true" in output

    def set_focused_text(self, text: str) -> bool:
        if not self._input_method_shown():
            return False
        self.client.shell(["input", "text", adb_text_escape(text)])
        return True

    def _keyevent(self, keycode: int) -> bool:
        result = self.client.run(["shell", "input", "keyevent", str(keycode)], check=False)
        return result.returncode == 0

    def global_back(self) -> bool:
        return self._keyevent(KEYCODE_BACK)

    def global_home(self) -> bool:
        return self._keyevent(KEYCODE_HOME)

    def current_foreground_app(self) -> str:
        output = self.client.shell(["dumpsys", "window"], check=False)
        m = re.search(r"mCurrentFocus=Window\{[^}]*?\s([\w.]+)/", output)
        if not m:
            m = re.search(r"mFocusedApp=.*?\s([\w.]+)/", output)
        return m.group(1) if m else "unknown"

    def installed_apps(self) -> list[tuple[str, str]]:
        output = self.client.shell(["pm", "list", "packages"])
        packages = [line.split(":", 1)[1].strip() for line in output.splitlines() if line.startswith("package:")]
        installed = set(packages)
        apps = [(pkg, label) for label, pkg in self.app_aliases.items() if pkg in installed]
        apps.extend((pkg, pkg) for pkg in packages)
        return apps

    def launch_app(self, package: str) -> bool:
        result = self.client.run(
            ["shell", "monkey", "-p", package, "-c", "android.intent.category.LAUNCHER", "1"],
            check=False,
        )
        output = result.stdout.decode("utf-8", errors="replace")
        return result.returncode == 0 and "No activities found" not in output


def parse_raw_screencap(data: bytes) -> RawFrame:
    """Decode `screencap` raw output: a 12 or 16 byte header then RGBA rows."""
    if len(data) < 12:
        raise AdbError(f"screencap output too short: {len(data)} bytes")
    width, height, fmt = struct.unpack_from("<III", data, 0)
    pixel_bytes = width * height * 4
    header = len(data) - pixel_bytes
    if header not in (12, 16):
        raise AdbError(f"unexpected screencap size {len(data)} for {width}x{height}")
    if fmt != _RGBA_8888:
        raise AdbError(f"unsupported screencap pixel format {fmt}")
    return RawFrame(
        width=width,
        height=height,
        pixel_stride=4,
        row_stride=width * 4,
        data=data[header:],
    )


class AdbFrameSource(FrameSource):
    def __init__(self, client: AdbClient, log: Callable[[str], None] = print) -> None:
        self.client = client
        self.log = log
        self._open = False
        self._surface: tuple[int, int] | None = None

    def open(self) -> None:
        state = self.client.get_state()
        if state != "device":
            raise AdbError(f"device not available (state={state or 'none'})")
        width, height = self.client.screen_size()
        self._surface = padded_surface_size(width, height)
        self._open = True
        self.log(f"[capture] session open screen={width}x{height} surface={self._surface[0]}x{self._surface[1]}")

    def close(self) -> None:
        self._open = False
        self._surface = None

    def is_ready(self) -> bool:
        return self._open and self._surface is not None

    def acquire(self) -> RawFrame | None:
        if not self.is_ready():
            return None
        data = self.client.exec_out(["screencap"])
        if not data:
            return None
        return parse_raw_screencap(data)
