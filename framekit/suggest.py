# -*- coding: utf-8 -*-
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from framekit.geometry import clamp, compute_crop_window, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_TARGET_ASPECT: float = 800 / 480


@dataclass(frozen=True)
class FaceBox:
    x: float
    y: float
    width: float
    height: float
    confidence: Optional[float] = None

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}
        if self.confidence is not None:
            payload['confidence'] = self.confidence
        return payload


@dataclass(frozen=True)
class SuggestionResult:
    y: int
    natural_width: int
    natural_height: int
    faces: Optional[List[FaceBox]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'y': self.y, 'naturalWidth': self.natural_width, 'naturalHeight': self.natural_height}
        if self.faces is not None:
            payload['faces'] = [face.to_dict() for face in self.faces]
        return payload


@dataclass(frozen=True)
class _Candidate:
    position: float
    offset: int
    count: int
    ranks: Tuple[int, ...]
    area: float
    distance: float

    def sort_key(self) -> Tuple[Any, ...]:
        # Smaller is better. A sorted rank tuple that is lexicographically
        # smaller contains the larger faces, which always win the tie-break.
        return (-self.count, self.ranks, -self.area, self.distance, self.position)


def centered_offset(natural_height: int, crop_height: int, max_y: int) -> int:
    return int(clamp(round_half_up((natural_height - crop_height) / 2), 0, max_y))


def suggest_y(natural_width: int, natural_height: int, faces: Sequence[FaceBox],
              min_confidence: float = 0.0, target_aspect: float = DEFAULT_TARGET_ASPECT) -> int:
    """
    Picks the crop band offset that keeps the most face centers inside the band.

    Ties are broken by the ranks of the included faces (largest face first),
    then by total included area, then by how close the band center is to the
    mean center of the included faces.
    """
    window = compute_crop_window(natural_width, natural_height, 0, target_aspect)
    crop_height, max_y = window.height, window.max_y
    fallback = centered_offset(natural_height, crop_height, max_y)

    kept = [f for f in faces if f.confidence is None or f.confidence >= min_confidence]
    if not kept:
        logger.debug(f"  -> Debug: No faces above confidence {min_confidence}. Using centered offset {fallback}.")
        return fallback

    order = sorted(range(len(kept)), key=lambda i: (-kept[i].area, i))
    ranked = [kept[i] for i in order]

    # Events are (position, phase, rank); phase 0 (start) sorts before phase 1 (end).
    events: List[Tuple[float, int, int]] = []
    for rank, face in enumerate(ranked):
        start = clamp(face.center_y - crop_height, 0, max_y)
        end = clamp(face.center_y, 0, max_y)
        events.append((start, 0, rank))
        events.append((end, 1, rank))
    events.sort()

    best: Optional[_Candidate] = None
    active = set()
    i = 0
    while i < len(events):
        position = events[i][0]
        while i < len(events) and events[i][0] == position:
            _, phase, rank = events[i]
            if phase == 0:
                active.add(rank)
            else:
                active.discard(rank)
            i += 1
        if i == len(events) or not active:
            continue
        next_position = events[i][0]

        ranks = tuple(sorted(active))
        offset = int(clamp(round_half_up((position + next_position) / 2), 0, max_y))
        mean_center = sum(ranked[r].center_y for r in ranks) / len(ranks)
        candidate = _Candidate(
            position=position,
            offset=offset,
            count=len(ranks),
            ranks=ranks,
            area=sum(ranked[r].area for r in ranks),
            distance=abs(offset + crop_height / 2 - mean_center),
        )
        if best is None or candidate.sort_key() < best.sort_key():
            best = candidate

    if best is None:
        logger.debug(f"  -> Debug: No offset includes any face. Using centered offset {fallback}.")
        return fallback

    logger.debug(f"  -> Debug: Suggested offset {best.offset} includes {best.count} of {len(ranked)} face(s).")
    return best.offset
