from __future__ import annotations

import pytest

from typoforge.dna import ColorPalette
from typoforge.nodes.variations import (
    hex_to_hsl,
    hsl_to_hex,
    plan_variations,
    shift_hue,
    to_grayscale,
    to_pastel,
    transform_palette,
)


def _palette():
    return ColorPalette(
        primary="#d0021b", secondary=["#4a90d9", "#7ed321"], accent="#f5a623",
        temperature="neutral", saturation="vivid", contrast=0.7,
    )


def test_hsl_roundtrip_for_known_colors():
    assert hex_to_hsl("#ff0000") == pytest.approx((0, 100, 50))
    assert hsl_to_hex(120, 100, 50) == "#00ff00"
    assert hsl_to_hex(*hex_to_hsl("#4a90d9")) == "#4a90d9"


def test_hue_shift():
    assert shift_hue("#ff0000", 120) == "#00ff00"
    assert shift_hue("#ff0000", 360) == "#ff0000"
    assert shift_hue("not-a-color", 30) == "not-a-color"


def test_grayscale_and_pastel():
    gray = to_grayscale("#d0021b")
    assert gray[1:3] == gray[3:5] == gray[5:7]
    _, s, l = hex_to_hsl(to_pastel("#d0021b"))
    assert s <= 40.5 and l >= 74.5


def test_transform_palette_sets_labels():
    p = _palette()
    assert transform_palette(p, "warm").temperature == "warm"
    assert transform_palette(p, "cool").temperature == "cool"
    mono = transform_palette(p, "monochrome")
    assert mono.saturation == "monochrome"
    assert len(mono.secondary) == 2
    assert transform_palette(p, "complementary").primary == shift_hue(p.primary, 180)
    assert transform_palette(p, "unknown") is p
    # original untouched
    assert p.temperature == "neutral"


def test_plan_variations():
    plan = plan_variations(_palette(), 3)
    assert [v.id for v in plan] == ["original", "warm", "cool"]
    assert plan[0].status == "complete"
    assert plan_variations(_palette(), 0) == []
    assert len(plan_variations(_palette(), 99)) == 6
