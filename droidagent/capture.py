from __future__ import annotations

import base64
import io
import time
from pathlib import Path
from typing import Callable

from PIL import Image

from droidagent.device import FrameSource, RawFrame


def padded_surface_size(width: int, height: int) -> tuple[int, int]:
    # Capture surfaces are allocated in 16px blocks.
    return ((width + 15) // 16) * 16, ((height + 15) // 16) * 16


def frame_to_image(frame: RawFrame, screen_width: int, screen_height: int) -> Image.Image:
    row_padding = frame.row_stride - frame.pixel_stride * frame.width
    buffer_width = frame.width + row_padding // frame.pixel_stride
    needed = frame.row_stride * frame.height
    image = Image.frombytes("RGBA", (buffer_width, frame.height), bytes(frame.data[:needed]))
    crop_w = min(screen_width, frame.width)
    crop_h = min(screen_height, frame.height)
    return image.crop((0, 0, crop_w, crop_h)).convert("RGB")


def encode_jpeg_base64(image: Image.Image, quality: int) -> str:
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return base64.b64encode(out.getvalue()).decode("ascii")


class CapturePipeline:
    def __init__(
        self,
        source: FrameSource,
        screen_width: int,
        screen_height: int,
        attempts: int = 10,
        retry_delay_sec: float = 0.05,
        jpeg_quality: int = 70,
        capture_dir: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        log: Callable[[str], None] = print,
    ) -> None:
        self.source = source
        self.screen_width = screen_width
        self.screen_height = screen_height
        self.attempts = attempts
        self.retry_delay_sec = retry_delay_sec
        self.jpeg_quality = jpeg_quality
        self.capture_dir = capture_dir
        self.sleep = sleep
        self.log = log

    def _acquire_with_retry(self) -> RawFrame | None:
        for attempt in range(1, self.attempts + 1):
            try:
                frame = self.source.acquire()
            except Exception as exc:  # noqa: BLE001
                self.log(f"[capture] acquire attempt {attempt} failed: {exc}")
                frame = None
            if frame is not None:
                return frame
            self.sleep(self.retry_delay_sec)
        return None

    def capture_frame(self) -> str | None:
        """Return the current screen as base64 JPEG text, or None."""
        if not self.source.is_ready():
            self.log("[capture] source not ready")
            return None

        frame = self._acquire_with_retry()
        if frame is None:
            self.log(f"[capture] no frame after {self.attempts} attempts")
            return None

        try:
            image = frame_to_image(frame, self.screen_width, self.screen_height)
            encoded = encode_jpeg_base64(image, self.jpeg_quality)
        except Exception as exc:  # noqa: BLE001
            self.log(f"[capture] encode failed: {exc}")
            return None

        if self.capture_dir is not None:
            self._save_debug_image(encoded)
        return encoded

    def _save_debug_image(self, image_b64: str) -> None:
        path = self.capture_dir / f"frame_{time.time_ns()}.jpg"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(base64.b64decode(image_b64))
        self.log(f"[capture] saved {path}")
