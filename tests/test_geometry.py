"""Geometry, page-size and region model tests.

Tests cover:
1. CSS -> canvas -> PDF point conversion and its inverse
2. Renderer bounds offsets
3. Standard page size classification (tolerance, landscape, garbage input)
4. Region validation, coordinate-system migration and per-issuer rules
"""
from __future__ import annotations

import math

import pytest

from signoff_engine.errors import GeometryError, InvalidRegion, NonStandardPage
from signoff_engine.geometry import (
    css_to_canvas,
    css_to_pdf_points,
    expand_region,
    pdf_points_to_css,
    scale_region_to_page,
)
from signoff_engine.page_sizes import (
    STANDARD_PAGE_SIZES,
    build_catalogue,
    classify_page_size,
    require_standard_page,
)
from signoff_engine.region import (
    CoordSystem,
    Region,
    RegionRule,
    check_region_rule,
    enforce_region_rule,
    is_region,
    make_region,
    migrate_coord_system,
)
from signoff_engine.types import BoundsOffset, PageGeometry, Rect


# ═══════════════════════════════════════════════════════════════════════════════
# TEST FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def letter_page() -> dict:
    return {"width_pt": 612, "height_pt": 792}


@pytest.fixture
def offset_page() -> dict:
    """Letter page whose renderer box starts at (10, 20)."""
    return {
        "width_pt": 612,
        "height_pt": 792,
        "bounds_offset": {"x0": 10, "y0": 20, "x1": 622, "y1": 812},
    }


@pytest.fixture
def preview() -> tuple[dict, dict]:
    """(displayed, canvas): half-size preview of a 2x render."""
    return {"width": 918, "height": 1188}, {"width": 1836, "height": 2376}


# Every crop fits inside the smallest preview below (459x594) and starts clear
# of the (10, 20) renderer bounds origin at every scale.
ROUND_TRIP_CROPS = [
    {"x": 20, "y": 40, "width": 50, "height": 20},
    {"x": 123.4, "y": 267.8, "width": 91.2, "height": 33.3},
    {"x": 300, "y": 500, "width": 150, "height": 90},
    {"x": 409, "y": 574, "width": 50, "height": 20},
    {"x": 30.5, "y": 40.25, "width": 0.9, "height": 0.9},
]

# (displayed, canvas) pairs: half-size, 1:4 and 1:2 previews
PREVIEW_SCALES = [
    ({"width": 918, "height": 1188}, {"width": 1836, "height": 2376}),
    ({"width": 612, "height": 792}, {"width": 2550, "height": 3300}),
    ({"width": 459, "height": 594}, {"width": 1224, "height": 1584}),
]


def _region(**overrides) -> dict:
    raw = {
        "x_pt": 100.0,
        "y_pt": 50.0,
        "w_pt": 120.0,
        "h_pt": 30.0,
        "page_width_pt": 612.0,
        "page_height_pt": 792.0,
    }
    raw.update(overrides)
    return raw


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERSION TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestConversion:
    """Proportional conversion between CSS pixels, canvas pixels and points."""

    def test_letter_crop_end_to_end(self, letter_page, preview):
        """A crop on a half-size preview of a Letter page lands on exact points."""
        displayed, canvas = preview
        region = css_to_pdf_points(
            {"x": 100, "y": 200, "width": 300, "height": 150}, displayed, canvas, letter_page
        )

        # css x2 -> canvas (200, 400, 600, 300) -> points against 612x792
        assert region.x_pt == pytest.approx(66.67)
        assert region.y_pt == pytest.approx(133.33)
        assert region.w_pt == pytest.approx(200.0)
        assert region.h_pt == pytest.approx(100.0)
        assert region.page_width_pt == 612.0
        assert region.coord_system is CoordSystem.PDF_POINTS_TOP_LEFT

        assert classify_page_size(612, 792).matched_size == "Letter"
        assert is_region(region)

    def test_css_to_canvas_scales_each_axis(self):
        rect = css_to_canvas({"x": 10, "y": 10, "width": 20, "height": 40}, (100, 200), (300, 400))
        assert rect == Rect(30.0, 20.0, 60.0, 80.0)

    @pytest.mark.parametrize("crop", ROUND_TRIP_CROPS)
    @pytest.mark.parametrize("displayed,canvas", PREVIEW_SCALES)
    @pytest.mark.parametrize("bounds", [None, {"x0": 10, "y0": 20, "x1": 622, "y1": 812}])
    def test_round_trip_within_two_pixels(self, crop, displayed, canvas, bounds):
        page = {"width_pt": 612, "height_pt": 792, "bounds_offset": bounds}
        region = css_to_pdf_points(crop, displayed, canvas, page)
        back = pdf_points_to_css(region, page, canvas, displayed)

        assert abs(back.x - crop["x"]) <= 2
        assert abs(back.y - crop["y"]) <= 2
        assert abs(back.width - crop["width"]) <= 2
        assert abs(back.height - crop["height"]) <= 2

    def test_sub_hundredth_point_crop_is_rejected(self, letter_page, preview):
        displayed, canvas = preview
        # 0.005 css px -> 0.01 canvas px -> 0.0033pt, which rounds to zero
        with pytest.raises(InvalidRegion, match="positive"):
            css_to_pdf_points({"x": 10, "y": 10, "width": 0.005, "height": 20}, displayed, canvas, letter_page)

    def test_bounds_offset_is_subtracted(self, offset_page, preview):
        displayed, canvas = preview
        region = css_to_pdf_points(
            {"x": 100, "y": 200, "width": 300, "height": 150}, displayed, canvas, offset_page
        )
        assert region.x_pt == pytest.approx(56.67)
        assert region.y_pt == pytest.approx(113.33)
        assert region.bounds_offset == BoundsOffset(10, 20, 622, 812)

    def test_round_trip_with_bounds_offset(self, offset_page, preview):
        displayed, canvas = preview
        crop = {"x": 100, "y": 200, "width": 300, "height": 150}
        region = css_to_pdf_points(crop, displayed, canvas, offset_page)
        back = pdf_points_to_css(region, offset_page, canvas, displayed)

        assert back.x == pytest.approx(100, abs=2)
        assert back.y == pytest.approx(200, abs=2)
        assert back.width == pytest.approx(300, abs=2)
        assert back.height == pytest.approx(150, abs=2)

    def test_explicit_bounds_argument_wins(self, letter_page, preview):
        displayed, canvas = preview
        crop = {"x": 100, "y": 200, "width": 300, "height": 150}
        plain = css_to_pdf_points(crop, displayed, canvas, letter_page)
        shifted = css_to_pdf_points(
            crop, displayed, canvas, letter_page, bounds_offset=(10, 20, 622, 812)
        )
        assert shifted.x_pt == pytest.approx(plain.x_pt - 10, abs=0.01)
        assert shifted.y_pt == pytest.approx(plain.y_pt - 20, abs=0.01)

    def test_zero_display_size_raises(self, letter_page):
        with pytest.raises(GeometryError):
            css_to_pdf_points(
                {"x": 1, "y": 1, "width": 10, "height": 10},
                {"width": 0, "height": 100},
                {"width": 100, "height": 100},
                letter_page,
            )

    def test_non_finite_crop_raises(self, letter_page, preview):
        displayed, canvas = preview
        with pytest.raises(GeometryError):
            css_to_pdf_points(
                {"x": math.nan, "y": 1, "width": 10, "height": 10}, displayed, canvas, letter_page
            )

    def test_negative_crop_size_rejected_before_scaling(self, letter_page, preview):
        displayed, canvas = preview
        with pytest.raises(GeometryError):
            css_to_pdf_points({"x": 10, "y": 10, "width": -5, "height": 10}, displayed, canvas, letter_page)

    def test_crop_off_page_is_not_clamped(self, letter_page, preview):
        displayed, canvas = preview
        with pytest.raises(InvalidRegion):
            css_to_pdf_points({"x": 800, "y": 0, "width": 200, "height": 10}, displayed, canvas, letter_page)

    def test_inconsistent_page_bounds_raise(self):
        with pytest.raises(GeometryError):
            PageGeometry(612, 792, BoundsOffset(0, 0, 500, 792))

    def test_scale_region_to_slightly_different_page(self):
        region = make_region(_region())
        scaled = scale_region_to_page(region, {"width_pt": 614, "height_pt": 792})
        assert scaled.x_pt == pytest.approx(100 * 614 / 612, abs=0.01)
        assert scaled.page_width_pt == 614.0
        assert scale_region_to_page(region, {"width_pt": 612, "height_pt": 792}) is region

    def test_expand_region_stays_on_page(self):
        region = make_region(_region(x_pt=5, y_pt=5, w_pt=10, h_pt=10))
        wider = expand_region(region, 10)
        assert (wider.x_pt, wider.y_pt) == (0.0, 0.0)
        assert (wider.w_pt, wider.h_pt) == (25.0, 25.0)

    def test_expand_region_negative_pad_raises(self):
        with pytest.raises(GeometryError):
            expand_region(make_region(_region()), -1)


# ═══════════════════════════════════════════════════════════════════════════════
# PAGE SIZE TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestPageSizes:
    """Standard page size catalogue."""

    def test_tolerance_is_inclusive(self):
        result = classify_page_size(612 + 5, 792 + 5)
        assert result.is_standard
        assert result.matched_size == "Letter"

    def test_just_outside_tolerance(self):
        result = classify_page_size(612 + 6, 792 + 5)
        assert not result.is_standard
        assert result.matched_size is None

    def test_a4_and_legal(self):
        assert classify_page_size(595, 842).matched_size == "A4"
        assert classify_page_size(612, 1008).matched_size == "Legal"
        assert classify_page_size(792, 1224).matched_size == "Tabloid"

    def test_landscape_variants(self):
        assert classify_page_size(792, 612).matched_size == "Letter (landscape)"
        assert classify_page_size(842, 595).matched_size == "A4 (landscape)"

    def test_portrait_entries_come_first(self):
        names = [s.name for s in STANDARD_PAGE_SIZES]
        assert names[:4] == ["Letter", "A4", "Legal", "Tabloid"]
        assert all(n.endswith("(landscape)") for n in names[4:])

    @pytest.mark.parametrize("w,h", [(0, 0), (-612, 792), (math.inf, 792), (math.nan, 792), (3024, 4032)])
    def test_garbage_never_matches(self, w, h):
        assert not classify_page_size(w, h).is_standard

    def test_non_numeric_input_never_matches(self):
        assert not classify_page_size("612", 792).is_standard
        assert not classify_page_size(True, 792).is_standard

    def test_custom_tolerance(self):
        tight = build_catalogue(1.0)
        assert not classify_page_size(614, 792, tight).is_standard
        assert classify_page_size(613, 792, tight).matched_size == "Letter"

    def test_require_standard_page(self):
        assert require_standard_page(612, 792) == "Letter"
        with pytest.raises(NonStandardPage) as ei:
            require_standard_page(400, 300)
        assert ei.value.width_pt == 400


# ═══════════════════════════════════════════════════════════════════════════════
# REGION MODEL TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestRegionModel:
    """make_region validation order and wire format."""

    def test_valid_region_rounds_to_two_decimals(self):
        region = make_region(_region(x_pt=10.123, y_pt=20.987))
        assert region.x_pt == 10.12
        assert region.y_pt == 20.99

    def test_accepts_camel_case_keys(self):
        region = make_region(
            {"xPt": 1, "yPt": 2, "wPt": 3, "hPt": 4, "pageWidthPt": 612, "pageHeightPt": 792}
        )
        assert (region.x_pt, region.w_pt) == (1.0, 3.0)

    def test_percentage_fields_rejected(self):
        raw = _region()
        raw["xPct"] = 0.1
        with pytest.raises(InvalidRegion, match="percentage"):
            make_region(raw)

    def test_missing_field(self):
        raw = _region()
        del raw["h_pt"]
        with pytest.raises(InvalidRegion, match="missing"):
            make_region(raw)

    @pytest.mark.parametrize("value", [True, "10", None, math.nan, math.inf])
    def test_non_numeric_or_non_finite(self, value):
        with pytest.raises(InvalidRegion):
            make_region(_region(x_pt=value))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"w_pt": 0},
            {"h_pt": -1},
            {"page_width_pt": 0},
            {"x_pt": -0.5},
            {"y_pt": -3},
        ],
    )
    def test_shape_checks(self, overrides):
        with pytest.raises(InvalidRegion):
            make_region(_region(**overrides))

    @pytest.mark.parametrize("overrides", [{"w_pt": 0.004}, {"h_pt": 0.004}, {"w_pt": 0.001, "h_pt": 0.001}])
    def test_size_that_rounds_to_zero_is_rejected(self, overrides):
        with pytest.raises(InvalidRegion, match="positive"):
            make_region(_region(**overrides))

    def test_smallest_stored_size_stays_loadable(self):
        region = make_region(_region(w_pt=0.01, h_pt=0.006))
        assert (region.w_pt, region.h_pt) == (0.01, 0.01)
        assert is_region(region)
        assert is_region(region.to_dict())
        assert make_region(region.to_dict()) == region

    def test_tiny_negative_origin_rounds_to_zero(self):
        region = make_region(_region(x_pt=-0.004))
        assert region.x_pt == 0.0
        assert math.copysign(1.0, region.x_pt) == 1.0

    def test_containment_tolerance_is_one_point(self):
        make_region(_region(x_pt=12, w_pt=601))  # right edge 613
        with pytest.raises(InvalidRegion, match="out of bounds"):
            make_region(_region(x_pt=12, w_pt=602))  # right edge 614

    def test_bounds_must_agree_with_page(self):
        with pytest.raises(InvalidRegion):
            make_region(_region(bounds_offset={"x0": 0, "y0": 0, "x1": 500, "y1": 700}))

    def test_bounds_offset_round_trips_through_dict(self):
        region = make_region(_region(bounds_offset={"x0": 10, "y0": 20, "x1": 622, "y1": 812}))
        payload = region.to_dict()
        assert payload["boundsPt"] == {"x0": 10, "y0": 20, "x1": 622, "y1": 812}
        assert make_region(payload) == region

    def test_to_dict_uses_point_wire_format(self):
        payload = make_region(_region()).to_dict()
        assert payload["coordSystem"] == "PDF_POINTS_TOP_LEFT"
        assert not any(k.endswith("Pct") for k in payload)

    def test_containment_invariant_for_accepted_regions(self):
        for x, w in [(0, 612), (300, 312.9), (611, 1.5)]:
            r = make_region(_region(x_pt=x, w_pt=w))
            assert r.x_pt >= 0 and r.y_pt >= 0
            assert r.right_pt <= r.page_width_pt + 1
            assert r.bottom_pt <= r.page_height_pt + 1

    def test_is_region_is_total(self):
        assert is_region(_region())
        assert is_region(make_region(_region()))
        assert not is_region(None)
        assert not is_region("junk")
        assert not is_region({"x": 1})
        assert not is_region(_region(w_pt=float("nan")))


class TestCoordSystemMigration:
    """Legacy coordinate tags are migrated at the deserialisation boundary."""

    @pytest.mark.parametrize("tag", [None, "", "PDF_POINTS", "pdf_points_top_left"])
    def test_legacy_tags(self, tag):
        assert migrate_coord_system(tag) is CoordSystem.PDF_POINTS_TOP_LEFT

    def test_unknown_tag_rejected(self):
        with pytest.raises(InvalidRegion):
            migrate_coord_system("PDF_POINTS_BOTTOM_LEFT")

    def test_region_with_legacy_tag(self):
        raw = _region()
        raw["coordSystem"] = "PDF_POINTS"
        assert make_region(raw).coord_system is CoordSystem.PDF_POINTS_TOP_LEFT


class TestRegionRules:
    """Issuer-specific constraints supplied by configuration."""

    def test_x_range(self):
        rule = RegionRule(x_range_pt=(430.0, 475.0))
        assert check_region_rule(make_region(_region(x_pt=440)), rule) is None
        assert check_region_rule(make_region(_region(x_pt=300)), rule) == "invalid_crop"

    def test_minimum_size(self):
        rule = RegionRule(min_w_pt=50.0)
        assert check_region_rule(make_region(_region(w_pt=20)), rule) == "crop_too_small"

    def test_no_rule(self):
        assert check_region_rule(make_region(_region()), None) is None

    def test_enforce_raises(self):
        with pytest.raises(InvalidRegion, match="invalid_crop"):
            enforce_region_rule(make_region(_region(x_pt=10)), RegionRule(x_range_pt=(430, 475)))

    def test_merged_rule(self):
        base = RegionRule.from_dict({"min_w_pt": 4, "min_h_pt": 4})
        issuer = RegionRule.from_dict({"x_range_pt": [430, 475]})
        merged = base.merged(issuer)
        assert merged.x_range_pt == (430.0, 475.0)
        assert merged.min_w_pt == 4.0

    def test_region_dataclass_is_frozen(self):
        region = make_region(_region())
        assert isinstance(region, Region)
        with pytest.raises(Exception):
            region.x_pt = 1  # type: ignore[misc]
