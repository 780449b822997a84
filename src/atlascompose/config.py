"""Typed loader for persisted composite projection configurations."""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .clip_extent import LayoutClip, NormalizedClipExtent, PixelOffsetClipExtent, PixelSize
from .errors import ConfigParseError, ConfigSchemaError, ConfigVersionError
from .models import (
    CompositePattern,
    GeoBounds,
    Point,
    ProjectionFamily,
    ProjectionParameters,
    TerritoryConfig,
    TerritoryRole,
    coerce_parameter_value,
    normalize_parameter_key,
)

_LOGGER = logging.getLogger("atlascompose.config")

SUPPORTED_VERSIONS: tuple[str, ...] = ("1.0",)
CURRENT_VERSION = SUPPORTED_VERSIONS[-1]


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigSchemaError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigSchemaError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    return _str(value, field_name)


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    raise ConfigSchemaError(f"Expected number for '{field_name}'")


def _positive_float(value: Any, field_name: str) -> float:
    number = _float(value, field_name)
    if number <= 0:
        raise ConfigSchemaError(f"'{field_name}' must be > 0")
    return number


def _pair(value: Any, field_name: str) -> Point:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigSchemaError(f"Expected [number, number] for '{field_name}'")
    return (_float(value[0], f"{field_name}[0]"), _float(value[1], f"{field_name}[1]"))


def _round(value: float, digits: int = 6) -> float:
    rounded = round(value, digits)
    return 0.0 if rounded == 0 else rounded


@dataclass(frozen=True, slots=True)
class ConfigMetadata:
    atlas_id: str
    atlas_name: str | None = None
    export_date: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ConfigMetadata:
        known = {"atlasId", "atlasName", "exportDate"}
        return cls(
            atlas_id=_str(raw.get("atlasId"), "metadata.atlasId"),
            atlas_name=_optional_str(raw.get("atlasName"), "metadata.atlasName"),
            export_date=_optional_str(raw.get("exportDate"), "metadata.exportDate"),
            extras={key: value for key, value in raw.items() if key not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"atlasId": self.atlas_id}
        if self.atlas_name is not None:
            out["atlasName"] = self.atlas_name
        if self.export_date is not None:
            out["exportDate"] = self.export_date
        out.update(self.extras)
        return out


def _parse_parameters(raw: Mapping[str, Any], field_name: str) -> ProjectionParameters:
    """Parse persisted parameters, dropping values that cannot be coerced."""
    usable: dict[str, Any] = {}
    for key, value in raw.items():
        try:
            coerce_parameter_value(normalize_parameter_key(str(key)), value)
        except ValueError as exc:
            _LOGGER.debug("Ignoring malformed %s.%s (%s); default applies", field_name, key, exc)
            continue
        usable[key] = value
    return ProjectionParameters.from_mapping(usable)


@dataclass(frozen=True, slots=True)
class ProjectionSpec:
    id: str
    family: ProjectionFamily = ProjectionFamily.OTHER
    parameters: ProjectionParameters | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> ProjectionSpec:
        family_raw = raw.get("family")
        try:
            family = ProjectionFamily.parse(family_raw) if family_raw is not None else ProjectionFamily.OTHER
        except ValueError as exc:
            raise ConfigSchemaError(f"{field_name}.family: {exc}") from exc
        params_raw = _mapping(raw.get("parameters"), f"{field_name}.parameters")
        parameters = _parse_parameters(params_raw, f"{field_name}.parameters")
        return cls(id=_str(raw.get("id"), f"{field_name}.id"), family=family, parameters=parameters)

    def to_dict(self) -> dict[str, Any]:
        parameters = self.parameters.to_dict(wire=True) if self.parameters is not None else {}
        return {
            "id": self.id,
            "family": self.family.value,
            "parameters": _round_nested(parameters),
        }


@dataclass(frozen=True, slots=True)
class TerritoryLayout:
    """Screen placement of a territory: offset from the composite centre and clip."""

    translate_offset: Point | None = None
    clip: LayoutClip | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> TerritoryLayout:
        offset_raw = raw.get("translateOffset")
        offset = _pair(offset_raw, f"{field_name}.translateOffset") if offset_raw is not None else None
        clip = _parse_layout_clip(raw, field_name)
        return cls(translate_offset=offset, clip=clip)

    def to_dict(self) -> dict[str, Any]:
        offset = self.translate_offset or (0.0, 0.0)
        out: dict[str, Any] = {"translateOffset": [_round(offset[0]), _round(offset[1])]}
        clip = self.clip
        if isinstance(clip, PixelOffsetClipExtent):
            out["clipExtent"] = [[_round(v) for v in corner] for corner in clip.to_array()]
        elif isinstance(clip, NormalizedClipExtent):
            out["clipExtent"] = {key: _round(v) for key, v in clip.to_dict().items()}
        elif isinstance(clip, PixelSize):
            out["clipExtent"] = {"width": _round(clip.width), "height": _round(clip.height)}
        else:
            out["clipExtent"] = None
        return out


def _parse_layout_clip(raw: Mapping[str, Any], field_name: str) -> LayoutClip | None:
    value = raw.get("clipExtent")
    key = "clipExtent"
    if value is None and raw.get("pixelClipExtent") is not None:
        value = raw.get("pixelClipExtent")
        key = "pixelClipExtent"
    if value is None:
        return None
    try:
        if isinstance(value, Mapping):
            if "width" in value or "height" in value:
                return PixelSize(
                    width=_positive_float(value.get("width"), f"{field_name}.{key}.width"),
                    height=_positive_float(value.get("height"), f"{field_name}.{key}.height"),
                )
            return NormalizedClipExtent.from_mapping(value)
        return PixelOffsetClipExtent.from_value(value)
    except ValueError as exc:
        _LOGGER.debug("Ignoring malformed %s.%s (%s); default clip applies", field_name, key, exc)
        return None


@dataclass(frozen=True, slots=True)
class TerritoryProjectionEntry:
    code: str
    name: str
    projection: ProjectionSpec
    bounds: GeoBounds
    role: TerritoryRole = TerritoryRole.MEMBER
    layout: TerritoryLayout = field(default_factory=TerritoryLayout)
    center: Point | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> TerritoryProjectionEntry:
        code = _str(raw.get("code"), f"{field_name}.code")
        projection = ProjectionSpec.from_mapping(
            _mapping(raw.get("projection"), f"{field_name}.projection"),
            f"{field_name}.projection",
        )
        layout_raw = raw.get("layout")
        layout = (
            TerritoryLayout.from_mapping(_mapping(layout_raw, f"{field_name}.layout"), f"{field_name}.layout")
            if layout_raw is not None
            else TerritoryLayout()
        )

        # translateOffset used to be written under parameters; layout wins.
        parameters = projection.parameters
        if parameters is not None and parameters.translate_offset is not None:
            legacy = (parameters.translate_offset[0], parameters.translate_offset[1])
            if layout.translate_offset is None:
                _LOGGER.info("%s: reading legacy parameters.translateOffset %s", code, legacy)
                layout = dataclasses.replace(layout, translate_offset=legacy)
            projection = dataclasses.replace(
                projection,
                parameters=dataclasses.replace(parameters, translate_offset=None),
            )

        try:
            bounds = GeoBounds.from_array(raw.get("bounds"), f"{field_name}.bounds")
            role = TerritoryRole.parse(raw.get("role", TerritoryRole.MEMBER.value))
        except ValueError as exc:
            raise ConfigSchemaError(f"{field_name}: {exc}") from exc

        center_raw = raw.get("center")
        return cls(
            code=code,
            name=_optional_str(raw.get("name"), f"{field_name}.name") or code,
            projection=projection,
            bounds=bounds,
            role=role,
            layout=layout,
            center=_pair(center_raw, f"{field_name}.center") if center_raw is not None else None,
        )

    def territory_config(self) -> TerritoryConfig:
        return TerritoryConfig(
            code=self.code,
            name=self.name,
            bounds=self.bounds,
            center=self.center if self.center is not None else self.bounds.center,
            role=self.role,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "code": self.code,
            "name": self.name,
            "role": self.role.value,
            "projection": self.projection.to_dict(),
            "layout": self.layout.to_dict(),
            "bounds": self.bounds.to_array(),
        }
        if self.center is not None:
            out["center"] = [self.center[0], self.center[1]]
        return out


@dataclass(frozen=True, slots=True)
class CanvasDimensions:
    width: float
    height: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CanvasDimensions:
        return cls(
            width=_positive_float(raw.get("width"), "canvasDimensions.width"),
            height=_positive_float(raw.get("height"), "canvasDimensions.height"),
        )

    def to_dict(self) -> dict[str, float]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True, slots=True)
class CompositeProjectionConfig:
    version: str
    metadata: ConfigMetadata
    territories: tuple[TerritoryProjectionEntry, ...]
    pattern: CompositePattern = CompositePattern.SINGLE_FOCUS
    reference_scale: float | None = None
    canvas_dimensions: CanvasDimensions | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CompositeProjectionConfig:
        validate_config(raw)
        try:
            pattern = CompositePattern.parse(raw.get("pattern", CompositePattern.SINGLE_FOCUS.value))
        except ValueError as exc:
            raise ConfigSchemaError(str(exc)) from exc
        reference_raw = raw.get("referenceScale")
        canvas_raw = raw.get("canvasDimensions")
        territories = tuple(
            TerritoryProjectionEntry.from_mapping(_mapping(item, f"territories[{idx}]"), f"territories[{idx}]")
            for idx, item in enumerate(raw["territories"])
        )
        for territory in territories:
            for problem in territory.bounds.problems():
                _LOGGER.warning("Territory %s bounds: %s", territory.code, problem)
        return cls(
            version=str(raw["version"]),
            metadata=ConfigMetadata.from_mapping(_mapping(raw.get("metadata"), "metadata")),
            territories=territories,
            pattern=pattern,
            reference_scale=(
                _positive_float(reference_raw, "referenceScale") if reference_raw is not None else None
            ),
            canvas_dimensions=(
                CanvasDimensions.from_mapping(_mapping(canvas_raw, "canvasDimensions"))
                if canvas_raw is not None
                else None
            ),
        )

    def territory(self, code: str) -> TerritoryProjectionEntry | None:
        for territory in self.territories:
            if territory.code == code:
                return territory
        return None

    @property
    def territory_codes(self) -> tuple[str, ...]:
        return tuple(territory.code for territory in self.territories)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "version": self.version,
            "metadata": self.metadata.to_dict(),
            "pattern": self.pattern.value,
        }
        if self.reference_scale is not None:
            out["referenceScale"] = _round(self.reference_scale)
        if self.canvas_dimensions is not None:
            out["canvasDimensions"] = self.canvas_dimensions.to_dict()
        out["territories"] = [territory.to_dict() for territory in self.territories]
        return out


def _round_nested(value: Any) -> Any:
    if isinstance(value, float):
        return _round(value)
    if isinstance(value, list):
        return [_round_nested(item) for item in value]
    if isinstance(value, dict):
        return {key: _round_nested(item) for key, item in value.items()}
    return value


def validate_config(raw: Any) -> None:
    """Raise `ConfigSchemaError` when `raw` is not a loadable configuration."""
    if not isinstance(raw, Mapping):
        raise ConfigSchemaError("Configuration must be a mapping")
    version = raw.get("version")
    if version is None:
        raise ConfigSchemaError("Missing 'version'")
    if str(version) not in SUPPORTED_VERSIONS:
        raise ConfigVersionError(version, SUPPORTED_VERSIONS)

    metadata = raw.get("metadata")
    if not isinstance(metadata, Mapping) or not metadata.get("atlasId"):
        raise ConfigSchemaError("Missing 'metadata.atlasId'")

    territories = raw.get("territories")
    if not isinstance(territories, list) or not territories:
        raise ConfigSchemaError("'territories' must be a non-empty list")

    seen: set[str] = set()
    for idx, territory in enumerate(territories):
        label = f"territories[{idx}]"
        if not isinstance(territory, Mapping):
            raise ConfigSchemaError(f"Expected mapping for '{label}'")
        code = territory.get("code")
        if not isinstance(code, str) or not code.strip():
            raise ConfigSchemaError(f"Missing '{label}.code'")
        if code in seen:
            raise ConfigSchemaError(f"Duplicate territory code '{code}'")
        seen.add(code)
        projection = territory.get("projection")
        if not isinstance(projection, Mapping) or not projection.get("id"):
            raise ConfigSchemaError(f"Territory {code}: missing 'projection.id'")
        if not isinstance(projection.get("parameters"), Mapping):
            raise ConfigSchemaError(f"Territory {code}: missing 'projection.parameters'")
        if territory.get("bounds") is None:
            raise ConfigSchemaError(f"Territory {code}: missing 'bounds'")

    reference_scale = raw.get("referenceScale")
    if reference_scale is not None:
        _positive_float(reference_scale, "referenceScale")
    canvas = raw.get("canvasDimensions")
    if canvas is not None:
        CanvasDimensions.from_mapping(_mapping(canvas, "canvasDimensions"))


def parse_config_text(text: str, *, fmt: str = "json") -> Mapping[str, Any]:
    """Decode configuration text; undecodable input raises `ConfigParseError`."""
    try:
        raw = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigParseError(f"Invalid JSON: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigParseError(f"Invalid YAML: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigSchemaError("Top-level configuration must be a mapping")
    return cast(Mapping[str, Any], raw)


def read_config_mapping(path: str | Path) -> Mapping[str, Any]:
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    fmt = "yaml" if cfg_path.suffix.lower() in (".yaml", ".yml") else "json"
    return parse_config_text(cfg_path.read_text(encoding="utf-8"), fmt=fmt)


def load_preset(path: str | Path) -> CompositeProjectionConfig:
    """Load a preset file (`.json`, `.yaml` or `.yml`) into a typed config."""
    return CompositeProjectionConfig.from_mapping(read_config_mapping(path))
