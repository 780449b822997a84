"""Composite projection: N sub-projections behind one projection contract.

Point projection routes to the first sub-projection (in config order) whose
result lands inside its own clip extent, so overlapping clip rectangles are
resolved in favour of the earlier territory. Streams fan out to every
sub-projection; each one clips its own output.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from .clip_extent import (
    LayoutClip,
    NormalizedClipExtent,
    PixelOffsetClipExtent,
    PixelSize,
    extent_contains,
    intersect_extents,
    resolve_clip_extent,
    union_extent,
)
from .errors import CompositeBuildError, SubProjectionError
from .models import (
    CompositePattern,
    GeoBounds,
    PixelExtent,
    Point,
    ProjectionFamily,
    ProjectionParameters,
    TerritoryRole,
)
from .streams import FanOutStream, GeoStream

_LOGGER = logging.getLogger("atlascompose.composite")
_UNSET: Any = object()

DEFAULT_REFERENCE_SCALE = 2700.0


@dataclass(slots=True)
class SubProjectionEntry:
    """One territory's projection plus the layout needed to re-lay it out."""

    id: str
    projection: Any
    bounds: GeoBounds
    name: str = ""
    role: TerritoryRole = TerritoryRole.MEMBER
    projection_id: str = ""
    family: ProjectionFamily = ProjectionFamily.OTHER
    parameters: ProjectionParameters = field(default_factory=ProjectionParameters)
    scale_multiplier: float = 1.0
    translate_offset: Point = (0.0, 0.0)
    clip: LayoutClip | None = None

    def clip_extent(self) -> PixelExtent | None:
        accessor = getattr(self.projection, "clip_extent", None)
        return accessor() if callable(accessor) else None


def _as_layout_clip(value: Any) -> LayoutClip | None:
    if value is None or isinstance(value, (NormalizedClipExtent, PixelOffsetClipExtent, PixelSize)):
        return value
    return PixelOffsetClipExtent.from_value(value)


class CompositeProjection:
    def __init__(
        self,
        entries: Sequence[SubProjectionEntry],
        *,
        pattern: CompositePattern = CompositePattern.SINGLE_FOCUS,
        reference_scale: float = DEFAULT_REFERENCE_SCALE,
        translate: Sequence[float] = (480.0, 250.0),
        debug: bool = False,
    ) -> None:
        if not entries:
            raise CompositeBuildError("A composite projection needs at least one sub-projection")
        codes = [entry.id for entry in entries]
        if len(set(codes)) != len(codes):
            raise CompositeBuildError(f"Duplicate territory codes in composite: {codes}")
        self._entries: list[SubProjectionEntry] = list(entries)
        self._pattern = pattern
        self._reference_scale = float(reference_scale)
        self._translate: Point = (float(translate[0]), float(translate[1]))
        self._viewport: PixelExtent | None = None
        self._precision: float | None = None
        self._debug = debug
        self._stream_cache: tuple[GeoStream, FanOutStream] | None = None
        for entry in self._entries:
            self._layout_entry(entry)

    def __repr__(self) -> str:
        return (
            f"CompositeProjection({list(self.territory_codes)}, "
            f"scale={self._reference_scale:g}, translate={self._translate})"
        )

    # -- projection contract -------------------------------------------

    def __call__(self, coordinates: Sequence[float]) -> Point | None:
        for entry in self._entries:
            point = entry.projection(coordinates)
            if point is None:
                continue
            if extent_contains(entry.clip_extent(), point):
                if self._debug:
                    _LOGGER.info("[composite-debug] %s -> %s via %s", tuple(coordinates), point, entry.id)
                return point
        if self._debug:
            _LOGGER.info("[composite-debug] %s outside every territory", tuple(coordinates))
        return None

    def invert(self, point: Sequence[float]) -> Point | None:
        entry = self.territory_at(point)
        if entry is None:
            return None
        invert = getattr(entry.projection, "invert", None)
        if not callable(invert):
            return None
        return invert(point)

    def stream(self, output: GeoStream) -> FanOutStream:
        if self._stream_cache is not None and self._stream_cache[0] is output:
            return self._stream_cache[1]
        fan_out = FanOutStream([entry.projection.stream(output) for entry in self._entries])
        self._stream_cache = (output, fan_out)
        return fan_out

    def scale(self, value: float | None = None) -> Any:
        if value is None:
            return self._reference_scale
        value = float(value)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"scale must be a positive number, got {value!r}")
        self._reference_scale = value
        self._relayout()
        return self

    def translate(self, value: Sequence[float] | None = None) -> Any:
        if value is None:
            return self._translate
        self._translate = (float(value[0]), float(value[1]))
        self._relayout()
        return self

    def clip_extent(self, value: Sequence[Sequence[float]] | None = _UNSET) -> Any:
        """Outer viewport; each territory keeps its own clip inside it."""
        if value is _UNSET:
            if self._viewport is not None:
                return self._viewport
            return union_extent(entry.clip_extent() for entry in self._entries)
        if value is None:
            self._viewport = None
        else:
            (x1, y1), (x2, y2) = value
            self._viewport = ((float(x1), float(y1)), (float(x2), float(y2)))
        self._relayout()
        return self

    def precision(self, value: float | None = None) -> Any:
        if value is None:
            if self._precision is not None:
                return self._precision
            accessor = getattr(self.primary.projection, "precision", None)
            return accessor() if callable(accessor) else None
        self._precision = float(value)
        for entry in self._entries:
            _apply(entry.projection, "precision", self._precision)
        self._invalidate()
        return self

    def center(self, value: Sequence[float] | None = None) -> Any:
        return self._primary_accessor("center", _UNSET if value is None else value)

    def rotate(self, value: Sequence[float] | None = None) -> Any:
        return self._primary_accessor("rotate", _UNSET if value is None else value)

    def parallels(self, value: Sequence[float] | None = None) -> Any:
        return self._primary_accessor("parallels", _UNSET if value is None else value)

    def clip_angle(self, value: float | None = _UNSET) -> Any:
        return self._primary_accessor("clip_angle", value)

    # -- territories ---------------------------------------------------

    @property
    def pattern(self) -> CompositePattern:
        return self._pattern

    @property
    def entries(self) -> tuple[SubProjectionEntry, ...]:
        return tuple(self._entries)

    @property
    def territory_codes(self) -> tuple[str, ...]:
        return tuple(entry.id for entry in self._entries)

    @property
    def primary(self) -> SubProjectionEntry:
        if self._pattern is CompositePattern.SINGLE_FOCUS:
            for entry in self._entries:
                if entry.role is TerritoryRole.PRIMARY:
                    return entry
        return self._entries[0]

    def territory(self, code: str) -> SubProjectionEntry | None:
        for entry in self._entries:
            if entry.id == code:
                return entry
        return None

    def territory_at(self, point: Sequence[float]) -> SubProjectionEntry | None:
        """First territory (config order) whose clip extent contains the pixel."""
        xy = (float(point[0]), float(point[1]))
        for entry in self._entries:
            if extent_contains(entry.clip_extent(), xy):
                return entry
        return None

    def update_territory(self, entry: SubProjectionEntry) -> None:
        """Replace the territory with the same code, or append a new one."""
        self._layout_entry(entry)
        for idx, existing in enumerate(self._entries):
            if existing.id == entry.id:
                self._entries[idx] = entry
                break
        else:
            self._entries.append(entry)
        self._invalidate()

    def remove_territory(self, code: str) -> bool:
        entry = self.territory(code)
        if entry is None:
            return False
        if len(self._entries) == 1:
            raise CompositeBuildError(f"Cannot remove {code}: it is the last territory")
        self._entries.remove(entry)
        self._invalidate()
        return True

    def set_translate_offset(self, code: str, offset: Sequence[float]) -> None:
        entry = self._require(code)
        entry.translate_offset = (float(offset[0]), float(offset[1]))
        self._layout_entry(entry)
        self._invalidate()

    def set_scale_multiplier(self, code: str, multiplier: float) -> None:
        multiplier = float(multiplier)
        if not math.isfinite(multiplier) or multiplier <= 0:
            raise ValueError(f"scale multiplier must be a positive number, got {multiplier!r}")
        entry = self._require(code)
        entry.scale_multiplier = multiplier
        self._layout_entry(entry)
        self._invalidate()

    def set_territory_clip(self, code: str, clip: Any) -> None:
        entry = self._require(code)
        entry.clip = _as_layout_clip(clip)
        self._layout_entry(entry)
        self._invalidate()

    # -- internals -----------------------------------------------------

    def _require(self, code: str) -> SubProjectionEntry:
        entry = self.territory(code)
        if entry is None:
            raise KeyError(f"Unknown territory {code!r}; known: {', '.join(self.territory_codes)}")
        return entry

    def _primary_accessor(self, name: str, value: Any) -> Any:
        primary = self.primary
        accessor = getattr(primary.projection, name, None)
        supports = getattr(primary.projection, "supports", None)
        available = callable(accessor) and (not callable(supports) or supports(name))
        if value is _UNSET:
            return accessor() if available else None
        if not available:
            raise AttributeError(f"Projection of primary territory {primary.id} has no {name}")
        accessor(value)
        self._invalidate()
        return self

    def _layout_entry(self, entry: SubProjectionEntry) -> None:
        scale = self._reference_scale * entry.scale_multiplier
        translate = (
            self._translate[0] + entry.translate_offset[0],
            self._translate[1] + entry.translate_offset[1],
        )
        _apply(entry.projection, "scale", scale)
        _apply(entry.projection, "translate", translate)
        extent = resolve_clip_extent(entry.clip, scale, translate, label=entry.id)
        _apply(entry.projection, "clip_extent", intersect_extents(self._viewport, extent))
        if self._precision is not None:
            _apply(entry.projection, "precision", self._precision)

    def _relayout(self) -> None:
        for entry in self._entries:
            self._layout_entry(entry)
        self._invalidate()

    def _invalidate(self) -> None:
        self._stream_cache = None


def _apply(projection: Any, accessor: str, value: Any) -> None:
    method = getattr(projection, accessor, None)
    if callable(method):
        method(value)


SubProjectionFactory = Callable[[Any], SubProjectionEntry]


def build_composite_projection(
    territories: Iterable[Any],
    factory: SubProjectionFactory,
    *,
    pattern: CompositePattern = CompositePattern.SINGLE_FOCUS,
    reference_scale: float | None = None,
    translate: Sequence[float] = (480.0, 250.0),
    debug: bool = False,
) -> CompositeProjection:
    """Build every territory with `factory` and assemble the survivors.

    A territory whose sub-projection cannot be built is skipped with a
    warning. Registry errors are not caught.
    """
    entries: list[SubProjectionEntry] = []
    skipped: list[str] = []
    for territory in territories:
        try:
            entries.append(factory(territory))
        except SubProjectionError as exc:
            _LOGGER.warning("Skipping territory %s: %s", exc.territory_code, exc.reason)
            skipped.append(exc.territory_code)
    if not entries:
        raise CompositeBuildError(
            f"No territory could be projected (skipped: {', '.join(skipped) or 'none'})"
        )
    composite = CompositeProjection(
        entries,
        pattern=pattern,
        reference_scale=reference_scale or DEFAULT_REFERENCE_SCALE,
        translate=translate,
        debug=debug,
    )
    if debug:
        _LOGGER.info(
            "[composite-debug] built %d sub-projections (%s), skipped %d",
            len(entries),
            ", ".join(composite.territory_codes),
            len(skipped),
        )
    return composite
