"""Typed loader for the optional `atlascompose.yaml` CLI settings file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

_LOGGER = logging.getLogger("atlascompose.settings")

DEFAULT_SETTINGS_FILE = "atlascompose.yaml"


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _int(value: Any, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


@dataclass(frozen=True, slots=True)
class CanvasSettings:
    width: int = 960
    height: int = 500

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CanvasSettings:
        width = _int(raw.get("width", 960), "canvas.width")
        height = _int(raw.get("height", 500), "canvas.height")
        if width <= 0 or height <= 0:
            raise ValueError("canvas.width and canvas.height must be > 0")
        return cls(width=width, height=height)


@dataclass(frozen=True, slots=True)
class Settings:
    canvas: CanvasSettings = field(default_factory=CanvasSettings)
    reference_scale: float = 2700.0
    log_file: Path | None = None
    debug: bool = False
    source_path: Path | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], cfg_path: Path) -> Settings:
        reference_scale = _float(raw.get("reference_scale", 2700.0), "reference_scale")
        if reference_scale <= 0:
            raise ValueError("reference_scale must be > 0")
        log_file: Path | None = None
        if raw.get("log_file") is not None:
            log_file = Path(_str(raw.get("log_file"), "log_file"))
            if not log_file.is_absolute():
                log_file = cfg_path.parent / log_file
        canvas = CanvasSettings()
        if raw.get("canvas") is not None:
            canvas = CanvasSettings.from_mapping(_mapping(raw.get("canvas"), "canvas"))
        return cls(
            canvas=canvas,
            reference_scale=reference_scale,
            log_file=log_file,
            debug=_bool(raw.get("debug", False), "debug"),
            source_path=cfg_path,
        )


def load_settings(path: str | Path | None = None) -> Settings:
    """Load CLI settings; a missing file yields the defaults."""
    cfg_path = Path(path or DEFAULT_SETTINGS_FILE).resolve()
    if not cfg_path.exists():
        if path is not None:
            _LOGGER.debug("Settings file %s not found; using defaults", cfg_path)
        return Settings()
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        return Settings(source_path=cfg_path)
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level settings must be a YAML mapping")
    return Settings.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
