from __future__ import annotations

NORMALIZED_AXIS = 1000


def to_pixels(normalized: tuple[int, int], screen_width: int, screen_height: int) -> tuple[float, float]:
    """Map a 0-1000 model coordinate to device pixels.

    Values outside the normalized range are passed through unclamped.
    """
    x, y = normalized
    return x / NORMALIZED_AXIS * screen_width, y / NORMALIZED_AXIS * screen_height
