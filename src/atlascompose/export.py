"""Export a live composite projection back to its persisted configuration."""

from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timezone
from typing import Any, Mapping

from .composite import CompositeProjection, SubProjectionEntry
from .config import (
    CURRENT_VERSION,
    CanvasDimensions,
    CompositeProjectionConfig,
    ConfigMetadata,
    ProjectionSpec,
    TerritoryLayout,
    TerritoryProjectionEntry,
)
from .models import CompositePattern


def _territory_entry(entry: SubProjectionEntry, reference_scale: float) -> TerritoryProjectionEntry:
    parameters = dataclasses.replace(
        entry.parameters,
        scale=reference_scale * entry.scale_multiplier,
        base_scale=reference_scale,
        scale_multiplier=entry.scale_multiplier,
        translate_offset=None,
    )
    return TerritoryProjectionEntry(
        code=entry.id,
        name=entry.name or entry.id,
        projection=ProjectionSpec(id=entry.projection_id, family=entry.family, parameters=parameters),
        bounds=entry.bounds,
        role=entry.role,
        layout=TerritoryLayout(translate_offset=entry.translate_offset, clip=entry.clip),
    )


def export_config(
    composite: CompositeProjection,
    *,
    metadata: ConfigMetadata | Mapping[str, Any],
    pattern: CompositePattern | str | None = None,
    include_canvas: bool = True,
) -> CompositeProjectionConfig:
    """Snapshot `composite` as a config that `ProjectionLoader.load` reproduces."""
    if not isinstance(metadata, ConfigMetadata):
        raw = dict(metadata)
        raw.setdefault("exportDate", datetime.now(timezone.utc).isoformat(timespec="seconds"))
        metadata = ConfigMetadata.from_mapping(raw)
    reference_scale = composite.scale()
    tx, ty = composite.translate()
    include_canvas = include_canvas and tx > 0 and ty > 0
    return CompositeProjectionConfig(
        version=CURRENT_VERSION,
        metadata=metadata,
        territories=tuple(_territory_entry(entry, reference_scale) for entry in composite.entries),
        pattern=CompositePattern.parse(pattern) if pattern is not None else composite.pattern,
        reference_scale=reference_scale,
        canvas_dimensions=CanvasDimensions(width=tx * 2.0, height=ty * 2.0) if include_canvas else None,
    )


def export_to_json(composite: CompositeProjection, **kwargs: Any) -> str:
    config = export_config(composite, **kwargs)
    return json.dumps(config.to_dict(), indent=2, ensure_ascii=False) + "\n"
