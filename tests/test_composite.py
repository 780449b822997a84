from __future__ import annotations

import logging

import pytest
from hypothesis import given, settings, strategies as st

from atlascompose.clip_extent import PixelSize, extent_contains
from atlascompose.composite import CompositeProjection, SubProjectionEntry, build_composite_projection
from atlascompose.errors import CompositeBuildError, ProjectionNotRegisteredError, SubProjectionError
from atlascompose.loader import ProjectionLoader
from atlascompose.models import GeoBounds
from conftest import RecordingStream, france_config

# --- Local helpers (avoid function-scoped fixtures in @given tests) ---

_LOADER = ProjectionLoader()


def _france() -> CompositeProjection:
    return _LOADER.load(france_config(), 960, 500)


# --- Concrete layout ---


def test_france_layout_on_960_by_500(composite):
    met = composite.territory("FR-MET")
    gp = composite.territory("FR-GP")
    assert met.projection.translate() == (480, 250)
    assert met.projection.scale() == 2700
    assert gp.projection.translate() == (144, 211)
    assert gp.projection.scale() == pytest.approx(3780)
    assert composite.territory_codes == ("FR-MET", "FR-GP")
    assert composite.primary is met


def test_forward_routes_to_owning_territory(composite):
    assert composite((2.5, 46.5)) == pytest.approx((480, 250))
    assert composite((-61.5, 16.2)) == pytest.approx((144, 211))


def test_forward_outside_every_territory_is_none(composite):
    assert composite((0.0, 0.0)) is None
    assert composite((140.0, -30.0)) is None


def test_invert_routes_by_clip_extent(composite):
    assert composite.invert((144, 211)) == pytest.approx((-61.5, 16.2), abs=1e-6)
    assert composite.invert((480, 250)) == pytest.approx((2.5, 46.5), abs=1e-6)
    assert composite.invert((10, 10)) is None
    assert composite.territory_at((150, 200)).id == "FR-GP"
    assert composite.territory_at((10, 10)) is None


def test_overlapping_clips_resolve_to_first_in_order():
    raw = france_config()
    # Move Guadeloupe right over the mainland clip.
    raw["territories"][1]["layout"]["translateOffset"] = [0, 0]
    composite = _LOADER.load(raw, 960, 500)
    assert composite.territory_at((480, 250)).id == "FR-MET"
    assert composite.invert((480, 250)) == pytest.approx((2.5, 46.5), abs=1e-6)


def test_debug_logs_routing(loader, config_raw, caplog):
    composite = loader.load(config_raw, 960, 500, debug=True)
    with caplog.at_level(logging.INFO, logger="atlascompose.composite"):
        composite((-61.5, 16.2))
    assert any("[composite-debug]" in rec.getMessage() and "FR-GP" in rec.getMessage() for rec in caplog.records)


# --- Mutators ---


def test_translate_consistency(composite):
    composite.translate([500, 300])
    assert composite.translate() == (500, 300)
    assert composite.territory("FR-MET").projection.translate() == (500, 300)
    assert composite.territory("FR-GP").projection.translate() == (164, 261)
    (x1, y1), (x2, y2) = composite.territory("FR-GP").clip_extent()
    assert (x1 + x2) / 2 == pytest.approx(164)
    assert (y1 + y2) / 2 == pytest.approx(261)


def test_mutators_are_idempotent(composite):
    composite.scale(3000).translate([400, 200])
    first = [(e.projection.scale(), e.projection.translate(), e.clip_extent()) for e in composite.entries]
    composite.scale(3000).translate([400, 200])
    second = [(e.projection.scale(), e.projection.translate(), e.clip_extent()) for e in composite.entries]
    assert first == second


def test_scale_rejects_non_positive(composite):
    with pytest.raises(ValueError):
        composite.scale(0)


@settings(deadline=None, max_examples=40)
@given(scale=st.floats(min_value=10.0, max_value=1e5))
def test_scale_linearity(scale):
    composite = _france()
    gp = composite.territory("FR-GP")
    tx, ty = gp.projection.translate()
    before = gp.projection((-61.0, 16.0))
    composite.scale(scale)
    after = gp.projection((-61.0, 16.0))
    assert gp.projection.scale() == pytest.approx(1.4 * scale)
    ratio = scale / 2700.0
    assert after[0] - tx == pytest.approx((before[0] - tx) * ratio, rel=1e-9, abs=1e-9)
    assert after[1] - ty == pytest.approx((before[1] - ty) * ratio, rel=1e-9, abs=1e-9)


@settings(deadline=None, max_examples=60)
@given(
    lon=st.floats(min_value=0.0, max_value=5.0),
    lat=st.floats(min_value=44.0, max_value=49.0),
)
def test_mainland_points_never_land_in_other_clips(lon, lat):
    composite = _france()
    point = composite((lon, lat))
    assert point is not None
    assert extent_contains(composite.territory("FR-MET").clip_extent(), point)
    assert not extent_contains(composite.territory("FR-GP").clip_extent(), point)


def test_viewport_clip_extent(composite):
    union = composite.clip_extent()
    assert union[0][0] == pytest.approx(104, abs=1e-5)
    assert union[1][0] == pytest.approx(680, abs=1e-5)
    composite.clip_extent([[0, 0], [300, 500]])
    assert composite.clip_extent() == ((0.0, 0.0), (300.0, 500.0))
    (x1, _), (x2, _) = composite.territory("FR-MET").clip_extent()
    assert x1 == pytest.approx(280, abs=1e-5)
    assert x2 == pytest.approx(300)
    composite.clip_extent(None)
    assert composite.territory("FR-MET").clip_extent()[1][0] == pytest.approx(680, abs=1e-5)


def test_passthroughs_target_primary(composite):
    assert composite.center() == (2.5, 46.5)
    composite.center((3.0, 46.0))
    assert composite.territory("FR-MET").projection.center() == (3.0, 46.0)
    assert composite.territory("FR-GP").projection.center() == (-61.5, 16.2)
    assert composite.parallels() is None
    with pytest.raises(AttributeError):
        composite.parallels((30, 60))
    composite.precision(0.1)
    assert all(entry.projection.precision() == 0.1 for entry in composite.entries)


# --- Live updates ---


def test_per_territory_updates(composite):
    composite.set_translate_offset("FR-GP", (-300, 0))
    assert composite.territory("FR-GP").projection.translate() == (180, 250)
    composite.set_scale_multiplier("FR-GP", 2)
    assert composite.territory("FR-GP").projection.scale() == 5400
    composite.set_territory_clip("FR-GP", PixelSize(100, 60))
    (x1, y1), (x2, y2) = composite.territory("FR-GP").clip_extent()
    assert (x1, y1) == pytest.approx((130, 220), abs=1e-5)
    assert (x2, y2) == pytest.approx((230, 280), abs=1e-5)
    assert composite.territory("FR-MET").projection.translate() == (480, 250)
    with pytest.raises(KeyError):
        composite.set_translate_offset("FR-XX", (0, 0))
    with pytest.raises(ValueError):
        composite.set_scale_multiplier("FR-GP", -1)


def test_remove_and_append_territory(composite):
    gp = composite.territory("FR-GP")
    assert composite.remove_territory("FR-GP") is True
    assert composite.remove_territory("FR-GP") is False
    assert composite((-61.5, 16.2)) is None
    composite.update_territory(gp)
    assert composite.territory_codes == ("FR-MET", "FR-GP")
    assert composite((-61.5, 16.2)) == pytest.approx((144, 211))
    composite.remove_territory("FR-GP")
    with pytest.raises(CompositeBuildError):
        composite.remove_territory("FR-MET")


# --- Streams ---


def test_stream_is_cached_per_output(composite):
    out = RecordingStream()
    first = composite.stream(out)
    assert composite.stream(out) is first
    assert composite.stream(RecordingStream()) is not first


@pytest.mark.parametrize(
    "mutate",
    [
        lambda c: c.scale(3000),
        lambda c: c.translate([100, 100]),
        lambda c: c.clip_extent([[0, 0], [960, 500]]),
        lambda c: c.precision(0.2),
        lambda c: c.set_translate_offset("FR-GP", (0, 0)),
    ],
)
def test_stream_cache_invalidated_by_mutators(composite, mutate):
    out = RecordingStream()
    first = composite.stream(out)
    mutate(composite)
    assert composite.stream(out) is not first


def test_stream_fans_out_and_each_territory_clips(composite):
    out = RecordingStream()
    stream = composite.stream(out)
    stream.line_start()
    stream.point(2.5, 46.5)
    stream.point(20.0, 46.5)
    stream.line_end()

    lines = out.lines()
    assert len(lines) == 1
    (x1, y1), (x2, y2) = composite.territory("FR-MET").clip_extent()
    for x, y in lines[0]:
        assert x1 - 1e-6 <= x <= x2 + 1e-6
        assert y1 - 1e-6 <= y <= y2 + 1e-6
    assert max(x for x, _ in lines[0]) == pytest.approx(x2, abs=1e-6)


def test_stream_polygon_lands_in_guadeloupe_only(composite):
    out = RecordingStream()
    stream = composite.stream(out)
    stream.polygon_start()
    stream.line_start()
    for lon, lat in [(-61.8, 15.9), (-61.2, 15.9), (-61.2, 16.5), (-61.8, 16.5), (-61.8, 15.9)]:
        stream.point(lon, lat)
    stream.line_end()
    stream.polygon_end()

    assert out.count("polygon_start") == 1
    (x1, y1), (x2, y2) = composite.territory("FR-GP").clip_extent()
    for x, y in out.points():
        assert x1 - 1e-6 <= x <= x2 + 1e-6
        assert y1 - 1e-6 <= y <= y2 + 1e-6


def test_sphere_outlines_every_clip(composite):
    out = RecordingStream()
    composite.stream(out).sphere()
    assert out.count("polygon_start") == 2


# --- Builder ---


def _entry(code: str, loader: ProjectionLoader) -> SubProjectionEntry:
    return SubProjectionEntry(
        id=code,
        projection=loader.registry.create("mercator"),
        bounds=GeoBounds(-1, -1, 1, 1),
        projection_id="mercator",
    )


def test_builder_skips_failed_territories(caplog):
    loader = ProjectionLoader()

    def factory(code):
        if code == "BAD":
            raise SubProjectionError("BAD", "cannot project")
        return _entry(code, loader)

    with caplog.at_level(logging.WARNING, logger="atlascompose.composite"):
        composite = build_composite_projection(["A", "BAD", "B"], factory, reference_scale=1000)
    assert composite.territory_codes == ("A", "B")
    assert any("BAD" in rec.getMessage() for rec in caplog.records)
    assert composite.territory("A").projection.scale() == 1000


def test_builder_with_no_survivors_fails():
    def factory(code):
        raise SubProjectionError(code, "nope")

    with pytest.raises(CompositeBuildError):
        build_composite_projection(["A", "B"], factory)


def test_builder_propagates_registry_errors():
    def factory(code):
        raise ProjectionNotRegisteredError("nonexistent", ["mercator"])

    with pytest.raises(ProjectionNotRegisteredError):
        build_composite_projection(["A"], factory)


def test_duplicate_codes_rejected():
    loader = ProjectionLoader()
    with pytest.raises(CompositeBuildError):
        CompositeProjection([_entry("A", loader), _entry("A", loader)])
