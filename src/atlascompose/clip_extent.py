"""Clip extent calculations for sub-projections.

All functions are pure. Pixel extents are ``((x1, y1), (x2, y2))`` with the
top-left corner first, in the same screen space as a projection's translate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

from .models import GeoBounds, PixelExtent, Point

_LOGGER = logging.getLogger("atlascompose.clip_extent")

CLIP_EPSILON = 1e-6
DEFAULT_PADDING_RATIO = 0.1


@dataclass(frozen=True, slots=True)
class NormalizedClipExtent:
    """Clip rectangle expressed as fractions of the projection scale."""

    x1: float
    y1: float
    x2: float
    y2: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> NormalizedClipExtent:
        values = []
        for key in ("x1", "y1", "x2", "y2"):
            value = raw.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise ValueError(f"Expected number for normalized clip extent '{key}'")
            values.append(float(value))
        return cls(*values)

    def to_dict(self) -> dict[str, float]:
        return {"x1": self.x1, "y1": self.y1, "x2": self.x2, "y2": self.y2}


@dataclass(frozen=True, slots=True)
class PixelSize:
    """Width and height of a clip rectangle centred on a territory."""

    width: float
    height: float


@dataclass(frozen=True, slots=True)
class PixelOffsetClipExtent:
    """Clip rectangle in pixels relative to the territory's translate point."""

    x1: float
    y1: float
    x2: float
    y2: float

    @classmethod
    def from_value(cls, value: Any) -> PixelOffsetClipExtent:
        """Accept ``[[x1, y1], [x2, y2]]`` or flat ``[x1, y1, x2, y2]``."""
        if isinstance(value, PixelOffsetClipExtent):
            return value
        if isinstance(value, (list, tuple)) and len(value) == 4:
            flat = list(value)
        elif (
            isinstance(value, (list, tuple))
            and len(value) == 2
            and all(isinstance(corner, (list, tuple)) and len(corner) == 2 for corner in value)
        ):
            flat = [value[0][0], value[0][1], value[1][0], value[1][1]]
        else:
            raise ValueError("Expected [[x1, y1], [x2, y2]] or [x1, y1, x2, y2] for clip extent")
        for item in flat:
            if not isinstance(item, (int, float)) or isinstance(item, bool) or not math.isfinite(item):
                raise ValueError("Clip extent values must be finite numbers")
        return cls(*(float(item) for item in flat))

    def to_array(self) -> list[list[float]]:
        return [[self.x1, self.y1], [self.x2, self.y2]]


LayoutClip = Union[NormalizedClipExtent, PixelOffsetClipExtent, PixelSize]


def normalized_to_pixel_clip_extent(
    normalized: NormalizedClipExtent,
    scale: float,
    translate: Point,
    epsilon: float = CLIP_EPSILON,
) -> PixelExtent:
    tx, ty = translate
    return (
        (tx + normalized.x1 * scale + epsilon, ty + normalized.y1 * scale + epsilon),
        (tx + normalized.x2 * scale - epsilon, ty + normalized.y2 * scale - epsilon),
    )


def pixel_clip_extent_from_offset(
    center: Point,
    pixel_offset: PixelSize | PixelOffsetClipExtent | Any,
    epsilon: float = CLIP_EPSILON,
) -> PixelExtent:
    """Absolute clip rectangle around `center` from a size or an offset rectangle."""
    cx, cy = center
    if isinstance(pixel_offset, PixelSize):
        half_w = pixel_offset.width / 2.0
        half_h = pixel_offset.height / 2.0
        x1, y1, x2, y2 = -half_w, -half_h, half_w, half_h
    else:
        offset = PixelOffsetClipExtent.from_value(pixel_offset)
        x1, y1, x2, y2 = offset.x1, offset.y1, offset.x2, offset.y2
    return (
        (cx + x1 + epsilon, cy + y1 + epsilon),
        (cx + x2 - epsilon, cy + y2 - epsilon),
    )


def default_clip_extent(
    scale: float,
    translate: Point,
    padding_ratio: float = DEFAULT_PADDING_RATIO,
) -> PixelExtent:
    """Square of side ``2 * scale * padding_ratio`` centred on the translate point."""
    padding = abs(scale) * padding_ratio
    tx, ty = translate
    return ((tx - padding, ty - padding), (tx + padding, ty + padding))


def is_valid_extent(extent: Any) -> bool:
    try:
        (x1, y1), (x2, y2) = extent
    except (TypeError, ValueError):
        return False
    values = (x1, y1, x2, y2)
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return False
    if not all(math.isfinite(v) for v in values):
        return False
    return x1 < x2 and y1 < y2


def extent_contains(extent: PixelExtent | None, point: Point) -> bool:
    if extent is None:
        return True
    (x1, y1), (x2, y2) = extent
    x, y = point
    return x1 <= x <= x2 and y1 <= y <= y2


def intersect_extents(a: PixelExtent | None, b: PixelExtent | None) -> PixelExtent | None:
    """Intersection of two extents; a disjoint pair collapses to a zero-area box."""
    if a is None:
        return b
    if b is None:
        return a
    x1 = max(a[0][0], b[0][0])
    y1 = max(a[0][1], b[0][1])
    x2 = min(a[1][0], b[1][0])
    y2 = min(a[1][1], b[1][1])
    if x2 < x1:
        x2 = x1
    if y2 < y1:
        y2 = y1
    return ((x1, y1), (x2, y2))


def union_extent(extents: Iterable[PixelExtent | None]) -> PixelExtent | None:
    items = [extent for extent in extents if extent is not None]
    if not items:
        return None
    return (
        (min(e[0][0] for e in items), min(e[0][1] for e in items)),
        (max(e[1][0] for e in items), max(e[1][1] for e in items)),
    )


def clip_extent_from_bounds(
    projection: Any,
    bounds: GeoBounds,
    epsilon: float = CLIP_EPSILON,
) -> PixelExtent | None:
    """Project the north-west and south-east corners of `bounds`.

    Returns None when either corner falls outside the projection's domain.
    """
    top_left = projection((bounds.min_lon + epsilon, bounds.max_lat - epsilon))
    bottom_right = projection((bounds.max_lon - epsilon, bounds.min_lat + epsilon))
    if top_left is None or bottom_right is None:
        return None
    return ((top_left[0], top_left[1]), (bottom_right[0], bottom_right[1]))


def resolve_clip_extent(
    clip: LayoutClip | None,
    scale: float,
    translate: Point,
    *,
    label: str = "",
) -> PixelExtent:
    """Absolute clip extent for a layout clip, falling back to the scale default."""
    extent: PixelExtent | None = None
    if isinstance(clip, NormalizedClipExtent):
        extent = normalized_to_pixel_clip_extent(clip, scale, translate)
    elif isinstance(clip, (PixelOffsetClipExtent, PixelSize)):
        extent = pixel_clip_extent_from_offset(translate, clip)

    if extent is not None and is_valid_extent(extent):
        return extent
    if extent is not None:
        _LOGGER.debug(
            "Malformed clip extent %s for %s; using scale-derived default",
            extent,
            label or "territory",
        )
    return default_clip_extent(scale, translate)
