"""Projection registry and the built-in projection catalogue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .errors import ProjectionNotRegisteredError
from .geo import GeoProjection, RawProjection
from .models import ProjectionFamily

_LOGGER = logging.getLogger("atlascompose.projections")

ProjectionFactory = Callable[[], Any]

_CYL = ProjectionFamily.CYLINDRICAL
_CONIC = ProjectionFamily.CONIC
_AZI = ProjectionFamily.AZIMUTHAL
_PSEUDO = ProjectionFamily.PSEUDOCYLINDRICAL

BUILTIN_PROJECTIONS: dict[str, RawProjection] = {
    "mercator": RawProjection("merc", _CYL),
    "transverse-mercator": RawProjection("tmerc", _CYL),
    "equirectangular": RawProjection("eqc", _CYL),
    "miller": RawProjection("mill", _CYL),
    "conic-conformal": RawProjection("lcc", _CONIC, default_parallels=(30.0, 30.0)),
    "conic-equal-area": RawProjection("aea", _CONIC, default_parallels=(0.0, 60.0)),
    "albers": RawProjection("aea", _CONIC, default_parallels=(29.5, 45.5)),
    "conic-equidistant": RawProjection("eqdc", _CONIC, default_parallels=(0.0, 60.0)),
    "azimuthal-equal-area": RawProjection("laea", _AZI, default_clip_angle=180.0 - 1e-3),
    "azimuthal-equidistant": RawProjection("aeqd", _AZI, default_clip_angle=180.0 - 1e-3),
    "orthographic": RawProjection("ortho", _AZI, default_clip_angle=90.0),
    "stereographic": RawProjection("stere", _AZI, default_clip_angle=142.0),
    "gnomonic": RawProjection("gnom", _AZI, default_clip_angle=60.0),
    "natural-earth": RawProjection("natearth", _PSEUDO),
    "equal-earth": RawProjection("eqearth", _PSEUDO),
    "robinson": RawProjection("robin", _PSEUDO),
    "mollweide": RawProjection("moll", _PSEUDO),
    "sinusoidal": RawProjection("sinu", _PSEUDO),
}


@dataclass(frozen=True, slots=True)
class RegisteredProjection:
    projection_id: str
    factory: ProjectionFactory
    family: ProjectionFamily = ProjectionFamily.OTHER


def builtin_factory(projection_id: str) -> ProjectionFactory:
    raw = BUILTIN_PROJECTIONS[projection_id]

    def _factory() -> GeoProjection:
        return GeoProjection(raw, name=projection_id)

    return _factory


class ProjectionRegistry:
    """Maps projection ids to zero-argument factories.

    Each registry is owned by one loader; registering in one never leaks into
    another.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RegisteredProjection] = {}

    def __contains__(self, projection_id: object) -> bool:
        return projection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(
        self,
        projection_id: str,
        factory: ProjectionFactory,
        family: ProjectionFamily | str = ProjectionFamily.OTHER,
    ) -> None:
        if not isinstance(projection_id, str) or not projection_id.strip():
            raise ValueError("Projection id must be a non-empty string")
        if not callable(factory):
            raise TypeError(f"Factory for projection '{projection_id}' is not callable")
        if projection_id in self._entries:
            _LOGGER.debug("Replacing registered projection %s", projection_id)
        self._entries[projection_id] = RegisteredProjection(
            projection_id=projection_id,
            factory=factory,
            family=ProjectionFamily.parse(family),
        )

    def register_many(self, factories: Mapping[str, ProjectionFactory]) -> None:
        for projection_id, factory in factories.items():
            self.register(projection_id, factory)

    def get_registered(self) -> list[str]:
        return list(self._entries)

    def is_registered(self, projection_id: str) -> bool:
        return projection_id in self._entries

    def unregister(self, projection_id: str) -> bool:
        return self._entries.pop(projection_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def lookup(self, projection_id: str) -> RegisteredProjection:
        try:
            return self._entries[projection_id]
        except KeyError:
            raise ProjectionNotRegisteredError(projection_id, self.get_registered()) from None

    def create(self, projection_id: str) -> Any:
        return self.lookup(projection_id).factory()

    def family_of(self, projection_id: str) -> ProjectionFamily:
        entry = self._entries.get(projection_id)
        return entry.family if entry is not None else ProjectionFamily.OTHER


def default_registry(ids: Iterable[str] | None = None) -> ProjectionRegistry:
    """Registry pre-filled with the built-in projections (or a subset of them)."""
    registry = ProjectionRegistry()
    for projection_id in ids if ids is not None else BUILTIN_PROJECTIONS:
        raw = BUILTIN_PROJECTIONS[projection_id]
        registry.register(projection_id, builtin_factory(projection_id), raw.family)
    return registry
