"""Loads persisted configurations into live composite projections."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from .composite import CompositeProjection, SubProjectionEntry, build_composite_projection
from .config import (
    CompositeProjectionConfig,
    TerritoryProjectionEntry,
    parse_config_text,
    read_config_mapping,
)
from .factory import create_sub_projection
from .models import ProjectionFamily, ProjectionParameters
from .parameters import ParameterManager
from .projections import ProjectionFactory, ProjectionRegistry, default_registry

_LOGGER = logging.getLogger("atlascompose.loader")

DEFAULT_CANVAS = (960.0, 500.0)


class ProjectionLoader:
    """Owns a projection registry and turns configs into composites.

    Without an explicit registry the loader starts with the built-in
    projections. Registries are never shared between loaders.
    """

    def __init__(self, registry: ProjectionRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_registry()

    # -- registry ------------------------------------------------------

    def register_projection(
        self,
        projection_id: str,
        factory: ProjectionFactory,
        family: ProjectionFamily | str = ProjectionFamily.OTHER,
    ) -> None:
        self.registry.register(projection_id, factory, family)

    def register_projections(self, factories: Mapping[str, ProjectionFactory]) -> None:
        self.registry.register_many(factories)

    def get_registered(self) -> list[str]:
        return self.registry.get_registered()

    def is_registered(self, projection_id: str) -> bool:
        return self.registry.is_registered(projection_id)

    def unregister(self, projection_id: str) -> bool:
        return self.registry.unregister(projection_id)

    def clear(self) -> None:
        self.registry.clear()

    # -- loading -------------------------------------------------------

    def load(
        self,
        config: CompositeProjectionConfig | Mapping[str, Any],
        width: float | None = None,
        height: float | None = None,
        *,
        debug: bool = False,
        parameters: ParameterManager | None = None,
    ) -> CompositeProjection:
        if not isinstance(config, CompositeProjectionConfig):
            config = CompositeProjectionConfig.from_mapping(config)
        width, height = _canvas_size(config, width, height)

        def _factory(territory: TerritoryProjectionEntry) -> SubProjectionEntry:
            return create_sub_projection(
                territory,
                _effective_parameters(territory, parameters),
                width,
                height,
                config.reference_scale,
                self.registry,
            )

        _LOGGER.debug(
            "Loading %s: %d territories on %gx%g canvas",
            config.metadata.atlas_id,
            len(config.territories),
            width,
            height,
        )
        return build_composite_projection(
            config.territories,
            _factory,
            pattern=config.pattern,
            reference_scale=config.reference_scale,
            translate=(width / 2.0, height / 2.0),
            debug=debug,
        )

    def load_from_json(
        self,
        text: str,
        width: float | None = None,
        height: float | None = None,
        *,
        debug: bool = False,
        parameters: ParameterManager | None = None,
    ) -> CompositeProjection:
        raw = parse_config_text(text, fmt="json")
        return self.load(raw, width, height, debug=debug, parameters=parameters)

    def load_from_path(
        self,
        path: str | Path,
        width: float | None = None,
        height: float | None = None,
        *,
        debug: bool = False,
        parameters: ParameterManager | None = None,
    ) -> CompositeProjection:
        raw = read_config_mapping(path)
        return self.load(raw, width, height, debug=debug, parameters=parameters)

    def parameter_manager_for(self, config: CompositeProjectionConfig) -> ParameterManager:
        """Parameter manager seeded with each territory's configured parameters."""
        manager = ParameterManager()
        for territory in config.territories:
            if territory.projection.parameters is not None:
                manager.set_territory_parameters(territory.code, territory.projection.parameters.to_dict())
        return manager

    def rebuild_territory(
        self,
        composite: CompositeProjection,
        territory: TerritoryProjectionEntry,
        parameters: ProjectionParameters | ParameterManager | None = None,
    ) -> SubProjectionEntry:
        """Rebuild one territory (e.g. after a projection change) inside `composite`."""
        if isinstance(parameters, ParameterManager):
            parameters = _effective_parameters(territory, parameters)
        tx, ty = composite.translate()
        entry = create_sub_projection(
            territory,
            parameters,
            tx * 2.0,
            ty * 2.0,
            composite.scale(),
            self.registry,
        )
        composite.update_territory(entry)
        return entry


def _canvas_size(
    config: CompositeProjectionConfig,
    width: float | None,
    height: float | None,
) -> tuple[float, float]:
    canvas = config.canvas_dimensions
    if width is None:
        width = canvas.width if canvas is not None else DEFAULT_CANVAS[0]
    if height is None:
        height = canvas.height if canvas is not None else DEFAULT_CANVAS[1]
    if width <= 0 or height <= 0:
        raise ValueError(f"Canvas dimensions must be positive, got {width}x{height}")
    return float(width), float(height)


def _effective_parameters(
    territory: TerritoryProjectionEntry,
    manager: ParameterManager | None,
) -> ProjectionParameters | None:
    if manager is None:
        return None
    return ProjectionParameters.merge(
        territory.projection.parameters,
        manager.get_effective_parameters(territory.code),
    )
