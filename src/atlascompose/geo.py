"""Projection objects with the standard accessor and stream contract.

The raw forward/inverse math of each projection family comes from pyproj on
a unit sphere. `GeoProjection` adds what renderers expect on top of it:
spherical rotation, centring, scale and translate, and stream clipping
(antimeridian cut, clip angle, adaptive resampling, rectangular clip extent
via shapely).

Accessors follow the getter/setter convention: called without an argument
they return the current value, called with one they set it and return the
projection so calls can be chained.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Sequence

from .clip_extent import extent_contains
from .models import PixelExtent, Point, ProjectionFamily
from .streams import GeoStream

_LOGGER = logging.getLogger("atlascompose.geo")

_SPHERE_LONLAT = "+proj=longlat +R=1 +no_defs"
_UNSET: Any = object()
_MAX_RESAMPLE_DEPTH = 8
# Cut edges sit just inside +/-180 so they project on the correct side.
_BACK_MERIDIAN = 180.0 - 1e-6
DEFAULT_PRECISION = math.sqrt(0.5)


@dataclass(frozen=True, slots=True)
class RawProjection:
    """PROJ definition of a projection family member, on the unit sphere."""

    proj: str
    family: ProjectionFamily
    options: tuple[tuple[str, float], ...] = ()
    default_parallels: tuple[float, float] | None = None
    # Azimuthals hide their antipode (or their unprojectable far side) by default.
    default_clip_angle: float | None = None

    @property
    def is_conic(self) -> bool:
        return self.default_parallels is not None

    def definition(self, parallels: Sequence[float] | None = None) -> str:
        parts = [f"+proj={self.proj}"]
        if self.is_conic:
            lat_1, lat_2 = parallels if parallels is not None else self.default_parallels
            parts.append(f"+lat_1={float(lat_1)!r}")
            parts.append(f"+lat_2={float(lat_2)!r}")
        parts.extend(f"+{key}={value!r}" for key, value in self.options)
        parts.extend(("+R=1", "+no_defs"))
        return " ".join(parts)


@lru_cache(maxsize=128)
def _raw_transformer(definition: str) -> Any:
    transformer_cls, _ = _require_pyproj()
    return transformer_cls.from_crs(_SPHERE_LONLAT, definition, always_xy=True)


class _Rotation:
    """Spherical rotation by (lambda, phi, gamma) degrees."""

    __slots__ = ("_delta_lambda", "_cos_phi", "_sin_phi", "_cos_gamma", "_sin_gamma", "_tilted")

    def __init__(self, angles: Sequence[float]) -> None:
        delta_lambda, delta_phi, delta_gamma = (math.radians(a) for a in angles)
        self._delta_lambda = delta_lambda
        self._cos_phi = math.cos(delta_phi)
        self._sin_phi = math.sin(delta_phi)
        self._cos_gamma = math.cos(delta_gamma)
        self._sin_gamma = math.sin(delta_gamma)
        self._tilted = bool(delta_phi or delta_gamma)

    def forward(self, lon: float, lat: float) -> Point:
        lam = _wrap_pi(math.radians(lon) + self._delta_lambda)
        phi = math.radians(lat)
        if self._tilted:
            cos_p = math.cos(phi)
            x = math.cos(lam) * cos_p
            y = math.sin(lam) * cos_p
            z = math.sin(phi)
            k = z * self._cos_phi + x * self._sin_phi
            lam = math.atan2(
                y * self._cos_gamma - k * self._sin_gamma,
                x * self._cos_phi - z * self._sin_phi,
            )
            phi = _asin(k * self._cos_gamma + y * self._sin_gamma)
        return (math.degrees(lam), math.degrees(phi))

    def invert(self, lon: float, lat: float) -> Point:
        lam = math.radians(lon)
        phi = math.radians(lat)
        if self._tilted:
            cos_p = math.cos(phi)
            x = math.cos(lam) * cos_p
            y = math.sin(lam) * cos_p
            z = math.sin(phi)
            k = z * self._cos_gamma - y * self._sin_gamma
            lam = math.atan2(
                y * self._cos_gamma + z * self._sin_gamma,
                x * self._cos_phi + k * self._sin_phi,
            )
            phi = _asin(k * self._cos_phi - x * self._sin_phi)
        lam = _wrap_pi(lam - self._delta_lambda)
        return (math.degrees(lam), math.degrees(phi))


class GeoProjection:
    """One concrete projection: raw pyproj math plus screen positioning."""

    def __init__(self, raw: RawProjection, *, name: str = "") -> None:
        self.raw = raw
        self.name = name or raw.proj
        self._parallels: tuple[float, float] | None = raw.default_parallels
        self._scale = 150.0
        self._translate: Point = (480.0, 250.0)
        self._center: Point = (0.0, 0.0)
        self._rotate: tuple[float, float, float] = (0.0, 0.0, 0.0)
        self._clip_angle: float | None = raw.default_clip_angle
        self._clip_extent: PixelExtent | None = None
        self._precision = DEFAULT_PRECISION
        self._rotation = _Rotation(self._rotate)
        self._transformer: Any = None
        self._raw_center: Point = (0.0, 0.0)
        self._rebuild_raw()

    def __repr__(self) -> str:
        return f"GeoProjection({self.name!r}, scale={self._scale:g}, translate={self._translate})"

    @property
    def family(self) -> ProjectionFamily:
        return self.raw.family

    # -- accessors -----------------------------------------------------

    def scale(self, value: float | None = None) -> Any:
        if value is None:
            return self._scale
        value = float(value)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"scale must be a positive number, got {value!r}")
        self._scale = value
        return self

    def translate(self, value: Sequence[float] | None = None) -> Any:
        if value is None:
            return self._translate
        self._translate = (float(value[0]), float(value[1]))
        return self

    def center(self, value: Sequence[float] | None = None) -> Any:
        if value is None:
            return self._center
        self._center = (float(value[0]), float(value[1]))
        self._recenter()
        return self

    def rotate(self, value: Sequence[float] | None = None) -> Any:
        if value is None:
            return self._rotate
        padded = [float(v) for v in value][:3]
        padded.extend([0.0] * (3 - len(padded)))
        self._rotate = (padded[0], padded[1], padded[2])
        self._rotation = _Rotation(self._rotate)
        return self

    def clip_angle(self, value: float | None = _UNSET) -> Any:
        if value is _UNSET:
            return self._clip_angle
        if value is None:
            self._clip_angle = None
        else:
            value = float(value)
            if not 0 < value <= 180:
                raise ValueError(f"clip_angle must be in (0, 180], got {value!r}")
            self._clip_angle = value
        return self

    def clip_extent(self, value: Sequence[Sequence[float]] | None = _UNSET) -> Any:
        if value is _UNSET:
            return self._clip_extent
        if value is None:
            self._clip_extent = None
        else:
            (x1, y1), (x2, y2) = value
            self._clip_extent = ((float(x1), float(y1)), (float(x2), float(y2)))
        return self

    def precision(self, value: float | None = None) -> Any:
        if value is None:
            return self._precision
        value = float(value)
        if value < 0:
            raise ValueError(f"precision must be >= 0, got {value!r}")
        self._precision = value
        return self

    def parallels(self, value: Sequence[float] | None = None) -> Any:
        if not self.raw.is_conic:
            raise AttributeError(f"{self.name} projection has no parallels")
        if value is None:
            return self._parallels
        previous = self._parallels
        self._parallels = (float(value[0]), float(value[1]))
        try:
            self._rebuild_raw()
        except Exception:
            self._parallels = previous
            self._rebuild_raw()
            raise
        return self

    def supports(self, accessor: str) -> bool:
        """Feature test for optional accessors (`parallels` on conics only)."""
        if accessor == "parallels":
            return self.raw.is_conic
        return callable(getattr(self, accessor, None))

    # -- point projection ------------------------------------------------

    def __call__(self, coordinates: Sequence[float]) -> Point | None:
        lon, lat = float(coordinates[0]), float(coordinates[1])
        rlon, rlat = self._rotation.forward(lon, lat)
        return self._project_rotated(rlon, rlat)

    def invert(self, point: Sequence[float]) -> Point | None:
        x, y = float(point[0]), float(point[1])
        k = self._scale
        tx, ty = self._translate
        rx = (x - tx) / k + self._raw_center[0]
        ry = self._raw_center[1] - (y - ty) / k
        _, direction = _require_pyproj()
        rlon, rlat = self._transformer.transform(rx, ry, direction=direction.INVERSE)
        if not (math.isfinite(rlon) and math.isfinite(rlat)) or abs(rlat) > 90.0:
            return None
        return self._rotation.invert(rlon, rlat)

    def stream(self, output: GeoStream) -> GeoStream:
        return _ProjectionStream(self, output)

    # -- internals -----------------------------------------------------

    def _rebuild_raw(self) -> None:
        self._transformer = _raw_transformer(self.raw.definition(self._parallels))
        self._recenter()

    def _recenter(self) -> None:
        rx, ry = self._transformer.transform(self._center[0], self._center[1])
        if not (math.isfinite(rx) and math.isfinite(ry)):
            raise ValueError(f"center {self._center} is outside the {self.name} domain")
        self._raw_center = (rx, ry)

    def _project_rotated(self, lon: float, lat: float) -> Point | None:
        rx, ry = self._transformer.transform(lon, lat)
        if not (math.isfinite(rx) and math.isfinite(ry)):
            return None
        k = self._scale
        tx, ty = self._translate
        return (tx + k * (rx - self._raw_center[0]), ty - k * (ry - self._raw_center[1]))

    def _visible(self, lon: float, lat: float) -> bool:
        if self._clip_angle is None:
            return True
        cos_distance = math.cos(math.radians(lon)) * math.cos(math.radians(lat))
        return cos_distance > math.cos(math.radians(self._clip_angle))


class _ProjectionStream:
    """Rotates, cuts, resamples, projects and clips one stream into `output`."""

    def __init__(self, projection: GeoProjection, output: GeoStream) -> None:
        self._projection = projection
        self._output = output
        self._line: list[Point] | None = None
        self._rings: list[list[Point]] | None = None

    def point(self, x: float, y: float, z: float | None = None) -> None:
        rotated = self._projection._rotation.forward(x, y)
        if self._line is not None:
            self._line.append(rotated)
            return
        if not self._projection._visible(*rotated):
            return
        projected = self._projection._project_rotated(*rotated)
        if projected is None:
            return
        if extent_contains(self._projection.clip_extent(), projected):
            self._output.point(*projected)

    def line_start(self) -> None:
        self._line = []

    def line_end(self) -> None:
        points = self._line or []
        self._line = None
        if self._rings is not None:
            if len(points) > 1 and points[0] == points[-1]:
                points.pop()
            if len(points) >= 3:
                self._rings.append(points)
            return
        for run in self._project_line(points):
            self._emit_line(run)

    def polygon_start(self) -> None:
        self._rings = []

    def polygon_end(self) -> None:
        rings = self._rings or []
        self._rings = None
        if not rings:
            return
        polygons: list[list[list[Point]]] = []
        for part in self._cut_polygon(rings):
            projected = [self._project_ring(ring) for ring in part]
            if len(projected[0]) < 3:
                continue
            polygons.append([projected[0], *(ring for ring in projected[1:] if len(ring) >= 3)])
        if polygons:
            self._emit_polygon(polygons)

    def sphere(self) -> None:
        extent = self._projection.clip_extent()
        if extent is None:
            sphere = getattr(self._output, "sphere", None)
            if sphere is not None:
                sphere()
            return
        (x1, y1), (x2, y2) = extent
        self._emit_rings([[(x1, y1), (x2, y1), (x2, y2), (x1, y2)]])

    # -- geometry helpers ------------------------------------------------

    def _project_line(self, points: list[Point]) -> list[list[Point]]:
        runs: list[list[Point]] = []
        for run in _cut_antimeridian(points):
            visible: list[Point] = []
            for point in run:
                if self._projection._visible(*point):
                    visible.append(point)
                    continue
                if visible:
                    runs.extend(self._densify(visible, closed=False))
                visible = []
            if visible:
                runs.extend(self._densify(visible, closed=False))
        return [run for run in runs if run]

    def _cut_polygon(self, rings: list[list[Point]]) -> list[list[list[Point]]]:
        """Split rotated rings at the antimeridian and trim them to the clip angle.

        Works on the rotated sphere in lon/lat: each ring is unwrapped, folded
        back into [-180, 180] so cut edges run along the back meridian, and the
        result is intersected with the visible cap. Returns polygons as ring
        lists (exterior first).
        """
        clip_angle = self._projection.clip_angle()
        if clip_angle is None and not any(_crosses_antimeridian(ring) for ring in rings):
            return [rings]
        shapes = [_folded_ring(ring) for ring in rings]
        if shapes[0] is None:
            return []
        shape = shapes[0]
        holes = [hole for hole in shapes[1:] if hole is not None]
        if holes:
            _, _, _, unary_union = _require_shapely_geometry_ops()
            shape = shape.difference(unary_union(holes))
        visible = _visible_region(clip_angle)
        if visible is not None:
            shape = shape.intersection(visible)
        return [
            [list(part.exterior.coords)[:-1], *(list(interior.coords)[:-1] for interior in part.interiors)]
            for part in _iter_parts(shape, "Polygon")
        ]

    def _project_ring(self, points: list[Point]) -> list[Point]:
        ring: list[Point] = []
        for run in self._densify(points, closed=True):
            ring.extend(run)
        return ring

    def _densify(self, points: list[Point], *, closed: bool) -> list[list[Point]]:
        """Project `points`, resampling long segments; split at unprojectable points."""
        if not points:
            return []
        sequence = points + [points[0]] if closed and len(points) > 2 else points
        precision = self._projection.precision()
        delta2 = precision * precision
        runs: list[list[Point]] = [[]]
        previous_geo: Point | None = None
        previous_px: Point | None = None
        for geo in sequence:
            projected = self._projection._project_rotated(*geo)
            if projected is None:
                if runs[-1]:
                    runs.append([])
                previous_geo = previous_px = None
                continue
            if previous_geo is not None and previous_px is not None and delta2 > 0:
                self._subdivide(previous_geo, previous_px, geo, projected, delta2, _MAX_RESAMPLE_DEPTH, runs[-1])
            runs[-1].append(projected)
            previous_geo, previous_px = geo, projected
        if closed and runs and len(runs[-1]) > 1:
            runs[-1].pop()
        return [run for run in runs if run]

    def _subdivide(
        self,
        a: Point,
        pa: Point,
        b: Point,
        pb: Point,
        delta2: float,
        depth: int,
        out: list[Point],
    ) -> None:
        if depth <= 0:
            return
        middle = _spherical_midpoint(a, b)
        if middle is None:
            return
        pm = self._projection._project_rotated(*middle)
        if pm is None:
            return
        dx = pm[0] - (pa[0] + pb[0]) / 2.0
        dy = pm[1] - (pa[1] + pb[1]) / 2.0
        if dx * dx + dy * dy <= delta2:
            return
        self._subdivide(a, pa, middle, pm, delta2, depth - 1, out)
        out.append(pm)
        self._subdivide(middle, pm, b, pb, delta2, depth - 1, out)

    def _emit_line(self, run: list[Point]) -> None:
        extent = self._projection.clip_extent()
        if extent is None:
            self._emit_path(run)
            return
        if len(run) < 2:
            return
        line_string, box = _require_shapely_line_and_box()
        clipped = line_string(run).intersection(box(extent[0][0], extent[0][1], extent[1][0], extent[1][1]))
        for part in _iter_parts(clipped, "LineString"):
            self._emit_path(list(part.coords))

    def _emit_polygon(self, polygons: list[list[list[Point]]]) -> None:
        extent = self._projection.clip_extent()
        if extent is None:
            self._emit_rings([ring for rings in polygons for ring in rings])
            return
        polygon_cls, box, make_valid = _require_shapely_polygon_tools()
        shapes = []
        for rings in polygons:
            try:
                polygon = polygon_cls(rings[0], rings[1:])
            except ValueError:
                _LOGGER.debug("Dropping unbuildable polygon with %d rings", len(rings))
                continue
            shapes.append(polygon if polygon.is_valid else make_valid(polygon))
        if not shapes:
            return
        _, _, _, unary_union = _require_shapely_geometry_ops()
        merged = shapes[0] if len(shapes) == 1 else unary_union(shapes)
        clipped = merged.intersection(box(extent[0][0], extent[0][1], extent[1][0], extent[1][1]))
        out_rings: list[list[Point]] = []
        for part in _iter_parts(clipped, "Polygon"):
            out_rings.append(list(part.exterior.coords)[:-1])
            out_rings.extend(list(interior.coords)[:-1] for interior in part.interiors)
        if out_rings:
            self._emit_rings(out_rings)

    def _emit_rings(self, rings: list[list[Point]]) -> None:
        self._output.polygon_start()
        for ring in rings:
            self._emit_path(ring)
        self._output.polygon_end()

    def _emit_path(self, path: list[Point]) -> None:
        self._output.line_start()
        for x, y in path:
            self._output.point(x, y)
        self._output.line_end()


def _cut_antimeridian(points: list[Point]) -> list[list[Point]]:
    """Split a line of rotated points where it jumps across +/-180 degrees."""
    runs: list[list[Point]] = [[]]
    previous: Point | None = None
    for lon, lat in points:
        if previous is not None and abs(lon - previous[0]) > 180.0:
            sign = 1.0 if previous[0] > 0 else -1.0
            unwrapped = lon + 360.0 * sign
            span = unwrapped - previous[0]
            t = (180.0 * sign - previous[0]) / span if span else 0.0
            crossing_lat = previous[1] + t * (lat - previous[1])
            runs[-1].append((180.0 * sign, crossing_lat))
            runs.append([(-180.0 * sign, crossing_lat)])
        runs[-1].append((lon, lat))
        previous = (lon, lat)
    return [run for run in runs if run]


def _crosses_antimeridian(ring: list[Point]) -> bool:
    return any(abs(b[0] - a[0]) > 180.0 for a, b in zip(ring, ring[1:] + ring[:1]))


def _folded_ring(ring: list[Point]) -> Any:
    """Shapely geometry of a rotated ring, folded into [-180, 180] longitude.

    A ring that winds once around the globe encloses a pole; it is closed
    over the pole on the side its vertices lean towards.
    """
    polygon_cls, box, translate, unary_union = _require_shapely_geometry_ops()
    _, _, make_valid = _require_shapely_polygon_tools()
    unwrapped: list[Point] = []
    offset = 0.0
    previous: float | None = None
    for lon, lat in [*ring, ring[0]]:
        if previous is not None:
            if lon - previous > 180.0:
                offset -= 360.0
            elif lon - previous < -180.0:
                offset += 360.0
        unwrapped.append((lon + offset, lat))
        previous = lon
    winding = offset
    unwrapped.pop()
    if winding:
        first_lon, first_lat = ring[0]
        pole = 90.0 if sum(lat for _, lat in ring) >= 0 else -90.0
        unwrapped.extend(
            [(first_lon + winding, first_lat), (first_lon + winding, pole), (first_lon, pole)]
        )
    if len(unwrapped) < 3:
        return None
    try:
        shape = polygon_cls(unwrapped)
    except ValueError:
        _LOGGER.debug("Dropping unbuildable ring with %d points", len(unwrapped))
        return None
    if not shape.is_valid:
        shape = make_valid(shape)
    world = box(-_BACK_MERIDIAN, -90.0, _BACK_MERIDIAN, 90.0)
    folded = unary_union([translate(shape, xoff=shift).intersection(world) for shift in (-360.0, 0.0, 360.0)])
    return None if folded.is_empty else folded


def _visible_region(clip_angle: float | None) -> Any:
    """Rotated lon/lat area within `clip_angle` degrees of the projection centre."""
    if clip_angle is None or clip_angle >= 180.0:
        return None
    polygon_cls, box, _, _ = _require_shapely_geometry_ops()
    if clip_angle < 90.0:
        return polygon_cls(_small_circle(clip_angle))
    if clip_angle == 90.0:
        return box(-90.0, -90.0, 90.0, 90.0)
    antipodal = [(lon + 180.0 if lon < 0 else lon - 180.0, lat) for lon, lat in _small_circle(180.0 - clip_angle)]
    hidden = _folded_ring(antipodal)
    world = box(-180.0, -90.0, 180.0, 90.0)
    return world if hidden is None else world.difference(hidden)


def _small_circle(radius: float, step: float = 2.0) -> list[Point]:
    """Points `radius` degrees (< 90) from (0, 0), one every `step` degrees of bearing."""
    r = math.radians(radius)
    points: list[Point] = []
    for i in range(int(360.0 / step)):
        bearing = math.radians(i * step)
        lat = _asin(math.sin(r) * math.cos(bearing))
        lon = math.atan2(math.sin(bearing) * math.sin(r), math.cos(r))
        points.append((math.degrees(lon), math.degrees(lat)))
    return points


def _spherical_midpoint(a: Point, b: Point) -> Point | None:
    lam_a, phi_a = math.radians(a[0]), math.radians(a[1])
    lam_b, phi_b = math.radians(b[0]), math.radians(b[1])
    x = math.cos(phi_a) * math.cos(lam_a) + math.cos(phi_b) * math.cos(lam_b)
    y = math.cos(phi_a) * math.sin(lam_a) + math.cos(phi_b) * math.sin(lam_b)
    z = math.sin(phi_a) + math.sin(phi_b)
    norm = math.sqrt(x * x + y * y + z * z)
    if norm < 1e-9:
        return None
    return (math.degrees(math.atan2(y, x)), math.degrees(_asin(z / norm)))


def _iter_parts(geometry: Any, geom_type: str) -> list[Any]:
    if geometry is None or geometry.is_empty:
        return []
    if geometry.geom_type == geom_type:
        return [geometry]
    parts: list[Any] = []
    for sub in getattr(geometry, "geoms", ()):
        parts.extend(_iter_parts(sub, geom_type))
    return parts


def _wrap_pi(angle: float) -> float:
    if angle > math.pi:
        return angle - 2.0 * math.pi
    if angle < -math.pi:
        return angle + 2.0 * math.pi
    return angle


def _asin(value: float) -> float:
    return math.asin(max(-1.0, min(1.0, value)))


def _require_pyproj() -> tuple[Any, Any]:
    try:
        from pyproj import Transformer
        from pyproj.enums import TransformDirection
    except ImportError as exc:
        raise RuntimeError("pyproj is required for projection math") from exc
    return Transformer, TransformDirection


def _require_shapely_line_and_box() -> tuple[Any, Any]:
    try:
        from shapely.geometry import LineString, box
    except ImportError as exc:
        raise RuntimeError("shapely is required for clip extent line clipping") from exc
    return LineString, box


def _require_shapely_polygon_tools() -> tuple[Any, Any, Any]:
    try:
        from shapely.geometry import Polygon, box
        from shapely.validation import make_valid
    except ImportError as exc:
        raise RuntimeError("shapely is required for clip extent polygon clipping") from exc
    return Polygon, box, make_valid


def _require_shapely_geometry_ops() -> tuple[Any, Any, Any, Any]:
    try:
        from shapely.affinity import translate
        from shapely.geometry import Polygon, box
        from shapely.ops import unary_union
    except ImportError as exc:
        raise RuntimeError("shapely is required for polygon cutting") from exc
    return Polygon, box, translate, unary_union
