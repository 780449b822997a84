from __future__ import annotations

import logging

import pytest
from hypothesis import given, settings, strategies as st

from atlascompose.clip_extent import (
    CLIP_EPSILON,
    NormalizedClipExtent,
    PixelOffsetClipExtent,
    PixelSize,
    clip_extent_from_bounds,
    default_clip_extent,
    extent_contains,
    intersect_extents,
    is_valid_extent,
    normalized_to_pixel_clip_extent,
    pixel_clip_extent_from_offset,
    resolve_clip_extent,
    union_extent,
)
from atlascompose.models import GeoBounds
from atlascompose.projections import default_registry


def test_normalized_extent_scales_around_translate():
    extent = normalized_to_pixel_clip_extent(
        NormalizedClipExtent(-0.1, -0.05, 0.1, 0.05), 1000, (480, 250)
    )
    (x1, y1), (x2, y2) = extent
    assert x1 == pytest.approx(380 + CLIP_EPSILON)
    assert y1 == pytest.approx(200 + CLIP_EPSILON)
    assert x2 == pytest.approx(580 - CLIP_EPSILON)
    assert y2 == pytest.approx(300 - CLIP_EPSILON)


def test_pixel_size_is_centred_on_point():
    (x1, y1), (x2, y2) = pixel_clip_extent_from_offset((100, 50), PixelSize(80, 40))
    assert (x1, y1) == pytest.approx((60, 30), abs=1e-5)
    assert (x2, y2) == pytest.approx((140, 70), abs=1e-5)


@pytest.mark.parametrize(
    "offset",
    [
        [[-40, -30], [40, 30]],
        [-40, -30, 40, 30],
        PixelOffsetClipExtent(-40, -30, 40, 30),
    ],
)
def test_offset_rectangle_accepts_nested_and_flat_forms(offset):
    (x1, y1), (x2, y2) = pixel_clip_extent_from_offset((144, 211), offset)
    assert (x1, y1) == pytest.approx((104, 181), abs=1e-5)
    assert (x2, y2) == pytest.approx((184, 241), abs=1e-5)


def test_offset_rectangle_rejects_garbage():
    with pytest.raises(ValueError):
        PixelOffsetClipExtent.from_value("not a rectangle")
    with pytest.raises(ValueError):
        PixelOffsetClipExtent.from_value([1, 2, 3])


def test_default_extent_is_square_around_translate():
    assert default_clip_extent(2700, (480, 250)) == ((210.0, -20.0), (750.0, 520.0))


def test_validity_and_containment():
    assert is_valid_extent(((0, 0), (1, 1)))
    assert not is_valid_extent(((1, 0), (0, 1)))
    assert not is_valid_extent(((0, 0), (0, 1)))
    assert not is_valid_extent(((0, 0), (float("nan"), 1)))
    assert not is_valid_extent(None)
    assert extent_contains(((0, 0), (10, 10)), (10, 0))
    assert not extent_contains(((0, 0), (10, 10)), (10.5, 0))
    assert extent_contains(None, (1e9, -1e9))


def test_intersection_and_union():
    a = ((0, 0), (10, 10))
    b = ((5, -5), (20, 8))
    assert intersect_extents(a, b) == ((5, 0), (10, 8))
    assert intersect_extents(a, None) == a
    disjoint = intersect_extents(a, ((20, 20), (30, 30)))
    assert disjoint[0] == disjoint[1]
    assert union_extent([a, None, b]) == ((0, -5), (20, 10))
    assert union_extent([None]) is None


def test_resolve_uses_layout_clip():
    extent = resolve_clip_extent(PixelOffsetClipExtent(-200, -220, 200, 220), 2700, (480, 250))
    assert extent[0] == pytest.approx((280, 30), abs=1e-5)
    assert extent[1] == pytest.approx((680, 470), abs=1e-5)


def test_resolve_falls_back_on_malformed_clip(caplog):
    inverted = PixelOffsetClipExtent(10, 10, -10, -10)
    with caplog.at_level(logging.DEBUG, logger="atlascompose.clip_extent"):
        extent = resolve_clip_extent(inverted, 2700, (480, 250), label="FR-XX")
    assert extent == default_clip_extent(2700, (480, 250))
    assert any("Malformed clip extent" in rec.getMessage() for rec in caplog.records)


def test_resolve_without_clip_uses_default():
    assert resolve_clip_extent(None, 1000, (0, 0)) == ((-100.0, -100.0), (100.0, 100.0))


def test_extent_from_bounds_projects_corners():
    projection = default_registry().create("equirectangular")
    projection.scale(1).translate((0, 0))
    extent = clip_extent_from_bounds(projection, GeoBounds(-10, -5, 10, 5))
    (x1, y1), (x2, y2) = extent
    assert x1 < x2 and y1 < y2


@settings(deadline=None, max_examples=80)
@given(
    scale=st.floats(min_value=0.01, max_value=1e6),
    tx=st.floats(min_value=-1e4, max_value=1e4),
    ty=st.floats(min_value=-1e4, max_value=1e4),
)
def test_default_extent_is_always_valid(scale, tx, ty):
    extent = default_clip_extent(scale, (tx, ty))
    assert is_valid_extent(extent)
    assert extent_contains(extent, (tx, ty))
