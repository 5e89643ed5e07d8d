# -*- coding: utf-8 -*-
import math
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class CropWindow:
    top: int
    left: int
    width: int
    height: int
    max_y: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower) as expected by PIL's Image.crop."""
        return self.left, self.top, self.left + self.width, self.top + self.height


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def compute_crop_window(natural_width: int, natural_height: int, requested_y: float, target_aspect: float) -> CropWindow:
    """
    Full-width crop band of the target aspect, moved vertically to requested_y.

    When the image is too short for a full-width band, the band spans the full
    height and is centered horizontally instead; it then has no vertical travel.
    """
    natural_width = max(0, int(natural_width))
    natural_height = max(0, int(natural_height))
    crop_height = round_half_up(natural_width / target_aspect)

    if crop_height <= natural_height:
        max_y = max(0, natural_height - crop_height)
        top = int(clamp(round_half_up(requested_y), 0, max_y))
        return CropWindow(top=top, left=0, width=natural_width, height=crop_height, max_y=max_y)

    width = min(natural_width, round_half_up(natural_height * target_aspect))
    left = (natural_width - width) // 2
    return CropWindow(top=0, left=left, width=width, height=natural_height, max_y=0)

