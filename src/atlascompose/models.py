"""Domain models shared across the composite projection modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Mapping, Sequence

Point = tuple[float, float]
PixelExtent = tuple[tuple[float, float], tuple[float, float]]


class ProjectionFamily(str, Enum):
    """Classification deciding which positioning primitives a projection accepts."""

    CYLINDRICAL = "CYLINDRICAL"
    CONIC = "CONIC"
    AZIMUTHAL = "AZIMUTHAL"
    PSEUDOCYLINDRICAL = "PSEUDOCYLINDRICAL"
    POLYHEDRAL = "POLYHEDRAL"
    COMPOSITE = "COMPOSITE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> ProjectionFamily:
        if isinstance(value, ProjectionFamily):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Invalid projection family: {value!r}")
        normalized = value.strip().upper().replace("-", "").replace("_", "")
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown projection family: {value!r}")

    @property
    def uses_center(self) -> bool:
        """Cylindrical-like families position with `center`, the others with `rotate`."""
        return self in (ProjectionFamily.CYLINDRICAL, ProjectionFamily.PSEUDOCYLINDRICAL)


class CompositePattern(str, Enum):
    SINGLE_FOCUS = "single-focus"
    EQUAL_MEMBERS = "equal-members"

    @classmethod
    def parse(cls, value: Any) -> CompositePattern:
        if isinstance(value, CompositePattern):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().casefold():
                    return member
        allowed = ", ".join(member.value for member in cls)
        raise ValueError(f"pattern must be one of: {allowed}")


class TerritoryRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    MEMBER = "member"

    @classmethod
    def parse(cls, value: Any) -> TerritoryRole:
        if isinstance(value, TerritoryRole):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().casefold():
                    return member
        allowed = ", ".join(member.value for member in cls)
        raise ValueError(f"role must be one of: {allowed}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_float(value: Any, field_name: str) -> float:
    if not _is_number(value) or not math.isfinite(value):
        raise ValueError(f"Expected finite number for '{field_name}'")
    return float(value)


def _float_tuple(value: Any, field_name: str, lengths: Sequence[int] | None) -> tuple[float, ...]:
    """Tuple of finite floats; `lengths=None` accepts any non-empty list."""
    if not isinstance(value, (list, tuple)) or not value or (lengths is not None and len(value) not in lengths):
        expected = " or ".join(str(n) for n in lengths) if lengths is not None else "one or more"
        raise ValueError(f"Expected list of {expected} numbers for '{field_name}'")
    return tuple(_finite_float(item, f"{field_name}[{idx}]") for idx, item in enumerate(value))


@dataclass(frozen=True, slots=True)
class GeoBounds:
    """Geographic bounding box in degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_array(cls, value: Any, field_name: str = "bounds") -> GeoBounds:
        if isinstance(value, GeoBounds):
            return value
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ValueError(f"Expected [[minLon, minLat], [maxLon, maxLat]] for '{field_name}'")
        min_lon, min_lat = _float_tuple(value[0], f"{field_name}[0]", (2,))
        max_lon, max_lat = _float_tuple(value[1], f"{field_name}[1]", (2,))
        return cls(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def to_array(self) -> list[list[float]]:
        return [[self.min_lon, self.min_lat], [self.max_lon, self.max_lat]]

    def contains(self, lon: float, lat: float, tolerance: float = 0.0) -> bool:
        return (
            self.min_lon - tolerance <= lon <= self.max_lon + tolerance
            and self.min_lat - tolerance <= lat <= self.max_lat + tolerance
        )

    @property
    def center(self) -> Point:
        return ((self.min_lon + self.max_lon) / 2.0, (self.min_lat + self.max_lat) / 2.0)

    def problems(self) -> list[str]:
        """Soft consistency problems worth a warning; never fatal."""
        out: list[str] = []
        if self.min_lon >= self.max_lon or self.min_lat >= self.max_lat:
            out.append("invalid bounds order (min >= max)")
        if self.min_lon < -180.0 or self.max_lon > 180.0:
            out.append("longitude out of range [-180, 180]")
        if self.min_lat < -90.0 or self.max_lat > 90.0:
            out.append("latitude out of range [-90, 90]")
        return out


@dataclass(frozen=True, slots=True)
class TerritoryConfig:
    """Immutable reference data for one territory of an atlas."""

    code: str
    name: str
    bounds: GeoBounds
    center: Point | None = None
    role: TerritoryRole = TerritoryRole.MEMBER


# Field name -> persisted (camelCase) key.
_WIRE_KEYS: dict[str, str] = {
    "center": "center",
    "rotate": "rotate",
    "parallels": "parallels",
    "scale": "scale",
    "base_scale": "baseScale",
    "scale_multiplier": "scaleMultiplier",
    "translate": "translate",
    "translate_offset": "translateOffset",
    "clip_angle": "clipAngle",
    "precision": "precision",
    "focus_longitude": "focusLongitude",
    "focus_latitude": "focusLatitude",
    "rotate_gamma": "rotateGamma",
}
_FIELD_KEYS: dict[str, str] = {wire: name for name, wire in _WIRE_KEYS.items()}

PARAMETER_KEYS: tuple[str, ...] = tuple(_WIRE_KEYS)

_PAIR_KEYS = frozenset({"center", "parallels", "translate", "translate_offset"})
_NUMBER_KEYS = frozenset(
    {
        "scale",
        "base_scale",
        "scale_multiplier",
        "clip_angle",
        "precision",
        "focus_longitude",
        "focus_latitude",
        "rotate_gamma",
    }
)


def normalize_parameter_key(key: str) -> str:
    """Map a camelCase persisted key to its field name; unknown keys pass through."""
    if key in _WIRE_KEYS:
        return key
    return _FIELD_KEYS.get(key, key)


def wire_parameter_key(key: str) -> str:
    return _WIRE_KEYS.get(key, key)


def coerce_parameter_value(key: str, value: Any) -> Any:
    """Convert a raw parameter value to its canonical Python shape."""
    if value is None:
        return None
    if key in _PAIR_KEYS:
        return _float_tuple(value, key, (2,))
    if key == "rotate":
        # The factory pads or truncates to three angles.
        return _float_tuple(value, key, None)
    if key in _NUMBER_KEYS:
        return _finite_float(value, key)
    return value


def merge_parameter_layers(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Key-wise merge; later layers win and `None` never overrides."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is not None:
                merged[key] = value
    return merged


@dataclass(frozen=True, slots=True)
class ProjectionParameters:
    """Resolved projection parameters for one territory.

    Fields irrelevant to a projection's family are kept but ignored by the
    factory. Unknown keys survive in `extras` so newer presets load intact.
    """

    center: tuple[float, ...] | None = None
    rotate: tuple[float, ...] | None = None
    parallels: tuple[float, ...] | None = None
    scale: float | None = None
    base_scale: float | None = None
    scale_multiplier: float | None = None
    translate: tuple[float, ...] | None = None
    translate_offset: tuple[float, ...] | None = None
    clip_angle: float | None = None
    precision: float | None = None
    focus_longitude: float | None = None
    focus_latitude: float | None = None
    rotate_gamma: float | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProjectionParameters:
        known: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for raw_key, value in data.items():
            key = normalize_parameter_key(str(raw_key))
            if key in _WIRE_KEYS:
                known[key] = coerce_parameter_value(key, value)
            elif key != "extras":
                extras[key] = value
        return cls(**known, extras=extras)

    @classmethod
    def merge(cls, *layers: ProjectionParameters | Mapping[str, Any] | None) -> ProjectionParameters:
        dicts = [
            layer.to_dict() if isinstance(layer, ProjectionParameters) else layer
            for layer in layers
        ]
        return cls.from_mapping(merge_parameter_layers(*dicts))

    def get(self, key: str, default: Any = None) -> Any:
        name = normalize_parameter_key(key)
        if name in _WIRE_KEYS:
            value = getattr(self, name)
        else:
            value = self.extras.get(name)
        return default if value is None else value

    def to_dict(self, *, wire: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for item in fields(self):
            if item.name == "extras":
                continue
            value = getattr(self, item.name)
            if value is None:
                continue
            if wire:
                out[wire_parameter_key(item.name)] = list(value) if isinstance(value, tuple) else value
            else:
                out[item.name] = value
        out.update(self.extras)
        return out

    @property
    def focus_point(self) -> Point | None:
        if self.focus_longitude is None and self.focus_latitude is None:
            return None
        return (self.focus_longitude or 0.0, self.focus_latitude or 0.0)
