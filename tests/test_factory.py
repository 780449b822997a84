from __future__ import annotations

import dataclasses

import pytest

from atlascompose.clip_extent import default_clip_extent
from atlascompose.config import (
    ProjectionSpec,
    TerritoryLayout,
    TerritoryProjectionEntry,
)
from atlascompose.errors import ProjectionNotRegisteredError, SubProjectionError
from atlascompose.factory import create_sub_projection
from atlascompose.models import GeoBounds, ProjectionFamily, ProjectionParameters
from atlascompose.projections import default_registry


def _territory(projection_id="mercator", family=ProjectionFamily.CYLINDRICAL, layout=None, **params):
    return TerritoryProjectionEntry(
        code="XX",
        name="Test",
        projection=ProjectionSpec(
            id=projection_id,
            family=family,
            parameters=ProjectionParameters(**params),
        ),
        bounds=GeoBounds(-10, -10, 10, 10),
        layout=layout or TerritoryLayout(),
    )


def test_defaults_center_on_canvas_with_default_scale():
    entry = create_sub_projection(_territory(), None, 960, 500, None, default_registry())
    assert entry.projection.scale() == 2700
    assert entry.projection.translate() == (480, 250)
    assert entry.translate_offset == (0.0, 0.0)
    assert entry.projection.clip_extent() == default_clip_extent(2700, (480, 250))


def test_scale_and_offset_from_multiplier_and_layout():
    territory = _territory(
        scale_multiplier=1.4,
        layout=TerritoryLayout(translate_offset=(-336, -39)),
    )
    entry = create_sub_projection(territory, None, 960, 500, 2700, default_registry())
    assert entry.projection.scale() == pytest.approx(3780)
    assert entry.projection.translate() == (144, 211)
    assert entry.scale_multiplier == 1.4


def test_cylindrical_focus_uses_center():
    territory = _territory(focus_longitude=-61.5, focus_latitude=16.2)
    entry = create_sub_projection(territory, None, 960, 500, 2700, default_registry())
    assert entry.projection.center() == (-61.5, 16.2)
    assert entry.projection.rotate() == (0.0, 0.0, 0.0)
    assert entry.projection((-61.5, 16.2)) == pytest.approx((480, 250))


def test_azimuthal_focus_uses_rotate_and_clip_angle():
    territory = _territory(
        "azimuthal-equal-area",
        ProjectionFamily.AZIMUTHAL,
        focus_longitude=55.5,
        focus_latitude=-21.1,
        rotate_gamma=5,
        clip_angle=60,
    )
    entry = create_sub_projection(territory, None, 960, 500, 2700, default_registry())
    assert entry.projection.rotate() == (-55.5, 21.1, 5.0)
    assert entry.projection.center() == (0.0, 0.0)
    assert entry.projection.clip_angle() == 60
    assert entry.projection((55.5, -21.1)) == pytest.approx((480, 250), abs=1e-6)


def test_conic_gets_default_or_explicit_parallels():
    registry = default_registry()
    plain = create_sub_projection(
        _territory("conic-conformal", ProjectionFamily.CONIC), None, 960, 500, 2700, registry
    )
    assert plain.projection.parallels() == (0.0, 60.0)
    explicit = create_sub_projection(
        _territory("conic-conformal", ProjectionFamily.CONIC, parallels=(44, 49)),
        None,
        960,
        500,
        2700,
        registry,
    )
    assert explicit.projection.parallels() == (44.0, 49.0)


def test_explicit_rotate_is_padded_and_center_applied():
    territory = _territory(
        "orthographic",
        ProjectionFamily.AZIMUTHAL,
        rotate=(-10, -20),
        precision=0.2,
    )
    entry = create_sub_projection(territory, None, 960, 500, 2700, default_registry())
    assert entry.projection.rotate() == (-10.0, -20.0, 0.0)
    assert entry.projection.precision() == 0.2


def test_registry_family_wins_over_config_family():
    territory = _territory("conic-equal-area", ProjectionFamily.CYLINDRICAL, focus_longitude=10, focus_latitude=45)
    entry = create_sub_projection(territory, None, 960, 500, 2700, default_registry())
    assert entry.family is ProjectionFamily.CONIC
    assert entry.projection.rotate() == (-10.0, -45.0, 0.0)


def test_live_offset_override_beats_layout():
    territory = _territory(layout=TerritoryLayout(translate_offset=(10, 10)))
    override = ProjectionParameters(translate_offset=(-100, 50))
    entry = create_sub_projection(territory, override, 960, 500, 2700, default_registry())
    assert entry.projection.translate() == (380, 300)


def test_unknown_projection_raises_registry_error():
    with pytest.raises(ProjectionNotRegisteredError, match="nonexistent"):
        create_sub_projection(_territory("nonexistent"), None, 960, 500, 2700, default_registry())


def test_missing_parameters_raise_sub_projection_error():
    territory = dataclasses.replace(
        _territory(),
        projection=ProjectionSpec(id="mercator", family=ProjectionFamily.CYLINDRICAL, parameters=None),
    )
    with pytest.raises(SubProjectionError, match="XX"):
        create_sub_projection(territory, None, 960, 500, 2700, default_registry())


def test_factory_failure_is_wrapped():
    registry = default_registry(["mercator"])

    def _broken():
        raise RuntimeError("boom")

    registry.register("broken", _broken)
    with pytest.raises(SubProjectionError) as excinfo:
        create_sub_projection(_territory("broken", ProjectionFamily.OTHER), None, 960, 500, 2700, registry)
    assert excinfo.value.territory_code == "XX"
    assert "boom" in str(excinfo.value)


def test_custom_projection_without_optional_accessors():
    class Minimal:
        def __init__(self):
            self.k = 1.0

        def __call__(self, coordinates):
            return (coordinates[0] * self.k, coordinates[1] * self.k)

        def scale(self, value=None):
            if value is None:
                return self.k
            self.k = value
            return self

    registry = default_registry([])
    registry.register("minimal", Minimal)
    entry = create_sub_projection(
        _territory("minimal", ProjectionFamily.OTHER, focus_longitude=1, focus_latitude=2),
        None,
        960,
        500,
        100,
        registry,
    )
    assert entry.projection.scale() == 100
    assert entry.clip_extent() is None
