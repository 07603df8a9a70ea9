import struct
import subprocess
import threading
from unittest.mock import patch

import pytest

from droidagent.adb import (
    AdbClient,
    AdbDevice,
    AdbError,
    AdbFrameSource,
    adb_text_escape,
    parse_raw_screencap,
)


def completed(stdout: bytes | str = b"", returncode: int = 0, stderr: bytes = b"") -> subprocess.CompletedProcess:
    if isinstance(stdout, str):
        stdout = stdout.encode("utf-8")
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeAdb:
    """Routes `subprocess.run` calls by the adb arguments after the serial."""

    def __init__(self, responses: dict[str, subprocess.CompletedProcess]) -> None:
        self.responses = responses
        self.commands: list[list[str]] = []

    def __call__(self, cmd, capture_output, timeout):
        args = cmd[3:] if cmd[1:2] == ["-s"] else cmd[1:]
        self.commands.append(args)
        key = " ".join(args)
        for prefix, result in self.responses.items():
            if key.startswith(prefix):
                return result
        return completed()


def screencap_bytes(width: int, height: int, header_len: int = 16, fmt: int = 1) -> bytes:
    header = struct.pack("<III", width, height, fmt)
    if header_len == 16:
        header += struct.pack("<I", 0)
    return header + bytes([10, 20, 30, 255]) * (width * height)


class TestRawScreencap:
    @pytest.mark.parametrize("header_len", [12, 16])
    def test_header_variants(self, header_len: int) -> None:
        frame = parse_raw_screencap(screencap_bytes(3, 2, header_len))
        assert (frame.width, frame.height) == (3, 2)
        assert frame.row_stride == 12
        assert frame.pixel_stride == 4
        assert len(frame.data) == 24

    def test_unsupported_format(self) -> None:
        with pytest.raises(AdbError, match="pixel format"):
            parse_raw_screencap(screencap_bytes(2, 2, fmt=4))

    def test_truncated_output(self) -> None:
        with pytest.raises(AdbError):
            parse_raw_screencap(screencap_bytes(4, 4)[:-10])


def test_text_escape() -> None:
    assert adb_text_escape("hi there") == "hi%sthere"
    assert adb_text_escape("a&b") == "a\\&b"
    assert adb_text_escape("it's") == "it\\'s"


class TestAdbClient:
    def test_serial_is_passed(self) -> None:
        fake = FakeAdb({})
        with patch("droidagent.adb.subprocess.run", side_effect=fake) as run:
            AdbClient(serial="emulator-5554").shell(["echo", "x"])
        assert run.call_args.args[0] == ["adb", "-s", "emulator-5554", "shell", "echo", "x"]

    def test_nonzero_exit_raises(self) -> None:
        fake = FakeAdb({"shell": completed(returncode=1, stderr=b"error: closed")})
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            with pytest.raises(AdbError, match="closed"):
                AdbClient().shell(["input", "tap", "1", "1"])

    def test_missing_binary_raises(self) -> None:
        with patch("droidagent.adb.subprocess.run", side_effect=FileNotFoundError("adb")):
            with pytest.raises(AdbError):
                AdbClient().get_state()

    def test_screen_size_prefers_override(self) -> None:
        fake = FakeAdb({"shell wm size": completed("Physical size: 1080x2400\nOverride size: 720x1600\n")})
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert AdbClient().screen_size() == (720, 1600)

    def test_screen_size_physical(self) -> None:
        fake = FakeAdb({"shell wm size": completed("Physical size: 1080x2400\n")})
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert AdbClient().screen_size() == (1080, 2400)


def wait_for(dispatch) -> bool:
    done = threading.Event()
    outcome: list[bool] = []

    def on_done(ok: bool) -> None:
        outcome.append(ok)
        done.set()

    dispatch(on_done)
    assert done.wait(5)
    return outcome[0]


class TestAdbDevice:
    def test_tap_rounds_and_completes(self) -> None:
        fake = FakeAdb({})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert wait_for(lambda cb: device.tap(540.4, 1199.6, cb)) is True
        device.close()
        assert fake.commands == [["shell", "input", "tap", "540", "1200"]]

    def test_long_press_is_stationary_swipe(self) -> None:
        fake = FakeAdb({})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert wait_for(lambda cb: device.long_press(10, 20, 1000, cb))
        device.close()
        assert fake.commands == [["shell", "input", "swipe", "10", "20", "10", "20", "1000"]]

    def test_double_tap_sends_two_taps(self) -> None:
        fake = FakeAdb({})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert wait_for(lambda cb: device.double_tap(5, 6, cb))
        device.close()
        assert fake.commands == [["shell", "input", "tap", "5", "6"]] * 2

    def test_failed_gesture_reports_cancelled(self) -> None:
        fake = FakeAdb({"shell input": completed(returncode=255)})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert wait_for(lambda cb: device.swipe(0, 0, 10, 10, 500, cb)) is False
        device.close()

    def test_type_requires_visible_keyboard(self) -> None:
        fake = FakeAdb({"shell dumpsys input_method": completed("mInputShown=false")})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.set_focused_text("hello") is False
        assert ["shell", "input", "text", "hello"] not in fake.commands

    def test_type_into_keyboard_field(self) -> None:
        fake = FakeAdb({"shell dumpsys input_method": completed("  mInputShown=true\n")})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.set_focused_text("hello world") is True
        assert fake.commands[-1] == ["shell", "input", "text", "hello%sworld"]

    def test_back_and_home_keyevents(self) -> None:
        fake = FakeAdb({})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.global_back()
            assert device.global_home()
        assert fake.commands == [
            ["shell", "input", "keyevent", "4"],
            ["shell", "input", "keyevent", "3"],
        ]

    def test_foreground_app(self) -> None:
        dump = "  mCurrentFocus=Window{1a2b3c u0 com.android.settings/com.android.settings.Settings}\n"
        fake = FakeAdb({"shell dumpsys window": completed(dump)})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.current_foreground_app() == "com.android.settings"

    def test_foreground_app_unknown(self) -> None:
        fake = FakeAdb({"shell dumpsys window": completed("nothing useful")})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.current_foreground_app() == "unknown"

    def test_installed_apps_include_aliases_for_installed_packages(self) -> None:
        listing = "package:com.android.settings\npackage:com.example.notes\n"
        fake = FakeAdb({"shell pm list packages": completed(listing)})
        device = AdbDevice(
            AdbClient(),
            app_aliases={"Settings": "com.android.settings", "Maps": "com.google.android.apps.maps"},
            log=lambda _: None,
        )
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            apps = device.installed_apps()
        assert apps == [
            ("com.android.settings", "Settings"),
            ("com.android.settings", "com.android.settings"),
            ("com.example.notes", "com.example.notes"),
        ]

    def test_launch_app(self) -> None:
        fake = FakeAdb({"shell monkey": completed("Events injected: 1")})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.launch_app("com.android.settings")
        assert fake.commands[0][:4] == ["shell", "monkey", "-p", "com.android.settings"]

    def test_launch_app_without_launcher_activity(self) -> None:
        fake = FakeAdb({"shell monkey": completed("** No activities found to run, monkey aborted.")})
        device = AdbDevice(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            assert device.launch_app("com.example.service") is False


class TestAdbFrameSource:
    def test_ready_only_after_open(self) -> None:
        fake = FakeAdb(
            {
                "get-state": completed("device\n"),
                "shell wm size": completed("Physical size: 1080x2400\n"),
                "exec-out screencap": completed(screencap_bytes(2, 2)),
            }
        )
        source = AdbFrameSource(AdbClient(), log=lambda _: None)
        assert not source.is_ready()
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            source.open()
            assert source.is_ready()
            frame = source.acquire()
        assert frame is not None and frame.width == 2
        source.close()
        assert not source.is_ready()

    def test_acquire_after_close_skips_adb(self) -> None:
        fake = FakeAdb(
            {
                "get-state": completed("device\n"),
                "shell wm size": completed("Physical size: 1080x2400\n"),
            }
        )
        source = AdbFrameSource(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            source.open()
            source.close()
            assert source.acquire() is None
        assert not any(cmd[0] == "exec-out" for cmd in fake.commands)

    def test_unreadable_screen_size_leaves_source_closed(self) -> None:
        fake = FakeAdb({"get-state": completed("device\n"), "shell wm size": completed("no size here")})
        source = AdbFrameSource(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            with pytest.raises(AdbError, match="screen size"):
                source.open()
        assert not source.is_ready()

    def test_open_fails_when_device_offline(self) -> None:
        fake = FakeAdb({"get-state": completed("", returncode=1)})
        source = AdbFrameSource(AdbClient(), log=lambda _: None)
        with patch("droidagent.adb.subprocess.run", side_effect=fake):
            with pytest.raises(AdbError, match="not available"):
                source.open()
        assert not source.is_ready()
