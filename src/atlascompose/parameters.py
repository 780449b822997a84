"""Layered projection parameter store with inheritance and change events.

Effective parameters for a territory merge, lowest precedence first: the
defaults layer, atlas parameters, global overrides and the territory's own
overrides. Listeners run synchronously and must not call back into the
manager.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from .models import (
    PARAMETER_KEYS,
    ProjectionFamily,
    ProjectionParameters,
    coerce_parameter_value,
    merge_parameter_layers,
    normalize_parameter_key,
)

_LOGGER = logging.getLogger("atlascompose.parameters")


class ParameterSource(str, Enum):
    TERRITORY = "territory"
    GLOBAL = "global"
    ATLAS = "atlas"
    DEFAULT = "default"


@dataclass(frozen=True, slots=True)
class ParameterChangeEvent:
    key: str
    value: Any
    previous_value: Any
    source: ParameterSource
    territory_code: str | None = None


@dataclass(frozen=True, slots=True)
class ParameterInheritance:
    key: str
    value: Any
    source: ParameterSource
    is_overridden: bool
    atlas_value: Any = None
    global_value: Any = None
    default_value: Any = None


@dataclass(frozen=True, slots=True)
class ParameterValidationResult:
    is_valid: bool
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.is_valid


@dataclass(frozen=True, slots=True)
class ParameterConstraints:
    parameter: str
    relevant: bool
    required: bool = False
    default_value: Any = None
    min: float | None = None
    max: float | None = None
    step: float | None = None


ParameterChangeListener = Callable[[ParameterChangeEvent], None]

_UNIVERSAL = frozenset(
    {
        "scale",
        "base_scale",
        "scale_multiplier",
        "translate",
        "translate_offset",
        "precision",
        "focus_longitude",
        "focus_latitude",
    }
)
_ROTATE_FAMILIES = frozenset(
    {
        ProjectionFamily.CONIC,
        ProjectionFamily.AZIMUTHAL,
        ProjectionFamily.POLYHEDRAL,
        ProjectionFamily.OTHER,
    }
)

# Reported through constraints only; the effective defaults layer is empty.
DEFAULT_VALUES: dict[str, Any] = {
    "center": (0.0, 0.0),
    "rotate": (0.0, 0.0, 0.0),
    "parallels": (30.0, 60.0),
    "scale": 1000.0,
    "translate": (0.0, 0.0),
    "clip_angle": 90.0,
    "precision": 0.1,
}

_RANGES: dict[str, tuple[float, float, float]] = {
    "scale": (1.0, 100000.0, 1.0),
    "clip_angle": (0.0, 180.0, 1.0),
    "precision": (0.001, 10.0, 0.001),
}

_CONSTRAINED_KEYS = ("center", "rotate", "parallels", "scale", "translate", "clip_angle", "precision")


def relevant_parameters(family: ProjectionFamily | str) -> frozenset[str]:
    """Parameter names a projection of `family` actually uses."""
    family = ProjectionFamily.parse(family)
    if family is ProjectionFamily.COMPOSITE:
        return frozenset({"scale", "translate", "precision"})
    keys = set(_UNIVERSAL)
    if family.uses_center:
        keys.add("center")
    if family in _ROTATE_FAMILIES:
        keys.update({"rotate", "rotate_gamma"})
    if family is ProjectionFamily.CONIC:
        keys.add("parallels")
    if family is ProjectionFamily.AZIMUTHAL:
        keys.add("clip_angle")
    return frozenset(keys)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _number_list(value: Any, lengths: tuple[int, ...]) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) in lengths
        and all(_is_number(item) for item in value)
    )


def _check_value(key: str, value: Any) -> str | None:
    if key in ("center", "parallels", "translate", "translate_offset"):
        if not _number_list(value, (2,)):
            return f"{key} must be an array of two numbers"
    elif key == "rotate":
        if not _number_list(value, (2, 3)):
            return "rotate must be an array of 2 or 3 numbers"
    elif key in ("scale", "clip_angle", "precision", "scale_multiplier", "base_scale"):
        if not _is_number(value) or value <= 0:
            return f"{key} must be a positive number"
        if key == "clip_angle" and value > 180:
            return "clip_angle must be at most 180"
    elif key == "focus_longitude":
        if not _is_number(value) or not -180 <= value <= 180:
            return "focus_longitude must be a number in [-180, 180]"
    elif key == "focus_latitude":
        if not _is_number(value) or not -90 <= value <= 90:
            return "focus_latitude must be a number in [-90, 90]"
    elif key == "rotate_gamma":
        if not _is_number(value):
            return "rotate_gamma must be a number"
    return None


def _layer_dict(parameters: ProjectionParameters | Mapping[str, Any] | None) -> dict[str, Any]:
    if parameters is None:
        return {}
    if isinstance(parameters, ProjectionParameters):
        return parameters.to_dict()
    return ProjectionParameters.from_mapping(parameters).to_dict()


class ParameterManager:
    def __init__(self, *, enable_validation: bool = True, enable_events: bool = True) -> None:
        self.enable_validation = enable_validation
        self.enable_events = enable_events
        self._defaults: dict[str, Any] = {}
        self._atlas: dict[str, Any] = {}
        self._global: dict[str, Any] = {}
        self._territory: dict[str, dict[str, Any]] = {}
        self._listeners: list[ParameterChangeListener] = []

    # -- layers --------------------------------------------------------

    def set_atlas_parameters(self, parameters: ProjectionParameters | Mapping[str, Any] | None) -> None:
        previous = self._atlas
        self._atlas = _layer_dict(parameters)
        for key in sorted(set(previous) | set(self._atlas)):
            if previous.get(key) != self._atlas.get(key):
                self._emit(key, self._atlas.get(key), previous.get(key), None, ParameterSource.ATLAS)

    def get_atlas_parameters(self) -> dict[str, Any]:
        return dict(self._atlas)

    def get_global_parameters(self) -> dict[str, Any]:
        return dict(self._global)

    def set_global_parameter(self, key: str, value: Any) -> None:
        name = normalize_parameter_key(key)
        previous = self._global.get(name)
        _store(self._global, name, value)
        self._emit(name, self._global.get(name), previous, None, ParameterSource.GLOBAL)

    def set_global_parameters(self, parameters: Mapping[str, Any]) -> None:
        for key, value in parameters.items():
            self.set_global_parameter(key, value)

    def get_territory_parameters(self, code: str) -> dict[str, Any]:
        return dict(self._territory.get(code, {}))

    def set_territory_parameter(self, code: str, key: str, value: Any) -> None:
        name = normalize_parameter_key(key)
        layer = self._territory.setdefault(code, {})
        previous = layer.get(name)
        _store(layer, name, value)
        if not layer:
            del self._territory[code]
        self._emit(name, layer.get(name), previous, code, ParameterSource.TERRITORY)

    def set_territory_parameters(self, code: str, parameters: Mapping[str, Any]) -> None:
        for key, value in parameters.items():
            self.set_territory_parameter(code, key, value)

    def has_territory_overrides(self, code: str) -> bool:
        return bool(self._territory.get(code))

    @property
    def territory_codes(self) -> tuple[str, ...]:
        return tuple(self._territory)

    def get_effective_parameters(self, code: str | None = None) -> ProjectionParameters:
        territory = self._territory.get(code, {}) if code is not None else {}
        merged = merge_parameter_layers(self._defaults, self._atlas, self._global, territory)
        return ProjectionParameters.from_mapping(merged)

    def get_parameter_inheritance(self, code: str, key: str) -> ParameterInheritance:
        name = normalize_parameter_key(key)
        territory = self._territory.get(code, {})
        if territory.get(name) is not None:
            source = ParameterSource.TERRITORY
        elif self._global.get(name) is not None:
            source = ParameterSource.GLOBAL
        elif self._atlas.get(name) is not None:
            source = ParameterSource.ATLAS
        else:
            source = ParameterSource.DEFAULT
        return ParameterInheritance(
            key=name,
            value=self.get_effective_parameters(code).get(name),
            source=source,
            is_overridden=source is ParameterSource.TERRITORY,
            atlas_value=self._atlas.get(name),
            global_value=self._global.get(name),
            default_value=DEFAULT_VALUES.get(name),
        )

    def get_parameter_source(self, code: str, key: str) -> ParameterSource:
        return self.get_parameter_inheritance(code, key).source

    def clear_territory_override(self, code: str, key: str) -> None:
        name = normalize_parameter_key(key)
        layer = self._territory.get(code)
        if not layer or name not in layer:
            return
        previous = layer.pop(name)
        if not layer:
            del self._territory[code]
        value = self.get_effective_parameters(code).get(name)
        self._emit(name, value, previous, code, ParameterSource.GLOBAL)

    def clear_all_territory_overrides(self, code: str) -> None:
        layer = self._territory.pop(code, {})
        effective = self.get_effective_parameters(code)
        for name, previous in layer.items():
            self._emit(name, effective.get(name), previous, code, ParameterSource.GLOBAL)

    # -- validation ----------------------------------------------------

    def validate_parameter(
        self, family: ProjectionFamily | str, key: str, value: Any
    ) -> ParameterValidationResult:
        """Check `value` for `key` on a `family` projection; never raises."""
        if not self.enable_validation:
            return ParameterValidationResult(True)
        try:
            family = ProjectionFamily.parse(family)
        except ValueError as exc:
            return ParameterValidationResult(False, str(exc))
        name = normalize_parameter_key(key)
        if name not in PARAMETER_KEYS:
            return ParameterValidationResult(False, f"Unknown parameter {key}")
        if name not in relevant_parameters(family):
            return ParameterValidationResult(
                False, f"Parameter {key} is not relevant for {family.value} projections"
            )
        if value is None:
            return ParameterValidationResult(True)
        error = _check_value(name, value)
        return ParameterValidationResult(error is None, error)

    def get_parameter_constraints(self, family: ProjectionFamily | str) -> dict[str, ParameterConstraints]:
        relevant = relevant_parameters(family)
        out: dict[str, ParameterConstraints] = {}
        for key in _CONSTRAINED_KEYS:
            low, high, step = _RANGES.get(key, (None, None, None))
            out[key] = ParameterConstraints(
                parameter=key,
                relevant=key in relevant,
                default_value=DEFAULT_VALUES.get(key),
                min=low,
                max=high,
                step=step,
            )
        return out

    # -- events --------------------------------------------------------

    def add_change_listener(self, listener: ParameterChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_change_listener(self, listener: ParameterChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(
        self,
        key: str,
        value: Any,
        previous: Any,
        code: str | None,
        source: ParameterSource,
    ) -> None:
        if not self.enable_events:
            return
        event = ParameterChangeEvent(
            key=key,
            value=value,
            previous_value=previous,
            source=source,
            territory_code=code,
        )
        for listener in list(self._listeners):
            listener(event)

    # -- export --------------------------------------------------------

    def export_parameters(self, code: str | None = None) -> dict[str, Any]:
        """Effective parameters in persisted (camelCase) form, with scale metadata."""
        params = self.get_effective_parameters(code)
        scale = params.scale or DEFAULT_VALUES["scale"]
        out = params.to_dict(wire=True)
        out["scale"] = scale
        out["baseScale"] = params.base_scale or scale
        out["scaleMultiplier"] = params.scale_multiplier or 1.0
        return out

    def reset(self) -> None:
        self._atlas = {}
        self._global = {}
        self._territory.clear()
        _LOGGER.debug("Parameter manager reset")


def _store(layer: dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        layer.pop(key, None)
        return
    layer[key] = coerce_parameter_value(key, value) if key in PARAMETER_KEYS else value
