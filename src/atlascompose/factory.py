"""Builds the concrete projection of one territory."""

from __future__ import annotations

import logging
from typing import Any

from .clip_extent import resolve_clip_extent
from .composite import DEFAULT_REFERENCE_SCALE, SubProjectionEntry
from .config import TerritoryProjectionEntry
from .errors import SubProjectionError
from .models import ProjectionFamily, ProjectionParameters
from .projections import ProjectionRegistry

_LOGGER = logging.getLogger("atlascompose.factory")

DEFAULT_PARALLELS = (0.0, 60.0)


def _supports(projection: Any, accessor: str) -> bool:
    if not callable(getattr(projection, accessor, None)):
        return False
    supports = getattr(projection, "supports", None)
    return supports(accessor) if callable(supports) else True


def _position(projection: Any, family: ProjectionFamily, params: ProjectionParameters, code: str) -> None:
    focus = params.focus_point
    if focus is not None:
        lon, lat = focus
        if family.uses_center and _supports(projection, "center"):
            projection.center((lon, lat))
        elif _supports(projection, "rotate"):
            projection.rotate((-lon, -lat, params.rotate_gamma or 0.0))
        elif _supports(projection, "center"):
            projection.center((lon, lat))
        else:
            _LOGGER.debug("%s: projection accepts neither center nor rotate; focus ignored", code)
        return

    if params.center is not None and _supports(projection, "center"):
        projection.center(params.center[:2])
    if params.rotate is not None and _supports(projection, "rotate"):
        rotate = list(params.rotate[:3])
        rotate.extend([0.0] * (3 - len(rotate)))
        projection.rotate(rotate)


def create_sub_projection(
    territory: TerritoryProjectionEntry,
    parameters: ProjectionParameters | None,
    canvas_width: float,
    canvas_height: float,
    reference_scale: float | None,
    registry: ProjectionRegistry,
) -> SubProjectionEntry:
    """Build the sub-projection entry for `territory`.

    `parameters` are the effective parameters (e.g. from a parameter manager);
    when omitted the territory's own parameters are used. An unknown projection
    id raises `ProjectionNotRegisteredError`; anything else that goes wrong is
    raised as `SubProjectionError` so the caller can skip the territory.
    """
    code = territory.code
    projection_id = territory.projection.id
    if not projection_id:
        raise SubProjectionError(code, "missing projection id")
    params = parameters if parameters is not None else territory.projection.parameters
    if params is None:
        raise SubProjectionError(code, "missing projection parameters")

    registered = registry.lookup(projection_id)
    family = registered.family if registered.family is not ProjectionFamily.OTHER else territory.projection.family

    # A live override passed in wins; otherwise the layout offset is canonical.
    override = parameters.translate_offset if parameters is not None else None
    offset = override or territory.layout.translate_offset or params.translate_offset or (0.0, 0.0)
    multiplier = params.scale_multiplier or 1.0
    scale = (reference_scale or DEFAULT_REFERENCE_SCALE) * multiplier
    translate = (canvas_width / 2.0 + offset[0], canvas_height / 2.0 + offset[1])

    try:
        projection = registered.factory()
        _position(projection, family, params, code)
        if family is ProjectionFamily.CONIC and _supports(projection, "parallels"):
            projection.parallels(params.parallels[:2] if params.parallels is not None else DEFAULT_PARALLELS)
        if _supports(projection, "scale"):
            projection.scale(scale)
        if family is ProjectionFamily.AZIMUTHAL and params.clip_angle is not None:
            if _supports(projection, "clip_angle"):
                projection.clip_angle(params.clip_angle)
        if params.precision is not None and _supports(projection, "precision"):
            projection.precision(params.precision)
        if _supports(projection, "translate"):
            projection.translate(translate)
        if _supports(projection, "clip_extent"):
            projection.clip_extent(resolve_clip_extent(territory.layout.clip, scale, translate, label=code))
    except (ValueError, TypeError, RuntimeError) as exc:
        raise SubProjectionError(code, f"could not build '{projection_id}' projection: {exc}") from exc

    _LOGGER.debug("%s: %s scale=%g translate=%s", code, projection_id, scale, translate)
    return SubProjectionEntry(
        id=code,
        projection=projection,
        bounds=territory.bounds,
        name=territory.name,
        role=territory.role,
        projection_id=projection_id,
        family=family,
        parameters=params,
        scale_multiplier=multiplier,
        translate_offset=(float(offset[0]), float(offset[1])),
        clip=territory.layout.clip,
    )
