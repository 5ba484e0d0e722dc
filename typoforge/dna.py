"""Typed "DNA" records describing the measurable style of a reference image.

The models accept the camelCase JSON the analysis model is asked to return.
Anything that does not validate is an extraction failure; callers then fall
back to the ``default_*`` records, which are recognisable through
``is_default``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .script import ScriptType


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ------------------------------------------------------------------ typeface

class VisualStyle(Schema):
    background_color: Literal["white", "black", "colored", "transparent"]
    text_color: Literal["black", "white", "colored"]
    fill_style: Literal["solid", "outline", "double-outline", "gradient"]
    outline_thickness_px: float
    italic_angle_deg: float
    has_drop_shadow: bool
    has_3d_effect: bool = Field(alias="has3DEffect")
    texture_style: Literal["clean", "distressed", "textured", "hand-drawn"]


class Metrics(Schema):
    image_width: float
    image_height: float
    cap_height: float
    x_height: float
    baseline: float
    meanline: float


class Stroke(Schema):
    thickest_px: float
    thinnest_px: float
    contrast_ratio: float
    average_weight_px: float
    weight_to_cap_ratio: float


class Geometry(Schema):
    curve_radius_px: float
    curve_eccentricity: float
    outer_corner_radius_px: float
    inner_corner_radius_px: float
    corner_radius_ratio: float
    ink_trap_depth_px: float
    ink_trap_angle_deg: float


class Terminals(Schema):
    cut_angle_deg: float
    roundness_factor: float
    serif_length_px: float
    serif_thickness_px: float


class Spacing(Schema):
    letter_spacing_px: float
    letter_spacing_ratio: float
    word_spacing_px: float
    side_bearing_px: float


class Proportions(Schema):
    width_to_height_ratio: float
    x_height_to_cap_ratio: float
    counter_area_ratio: float
    negative_space_ratio: float


class Features(Schema):
    has_stencil_gaps: bool
    stencil_gap_width_px: float
    has_ligatures: bool
    has_touching_letters: bool


class StandardFontDetection(Schema):
    looks_like_standard_font: bool
    confidence: float
    detected_category: Literal[
        "custom_logotype", "standard_gothic", "standard_mincho", "standard_sans", "standard_serif", "unknown"
    ]
    unique_features: List[str] = Field(default_factory=list)
    standard_font_similarity: str = "none"


class CriticalFeatures(Schema):
    top5: List[str]
    must_preserve: List[str] = Field(default_factory=list)
    character_width_variance: Literal["uniform", "natural", "dramatic"] = "natural"
    width_description: str = ""


class JapaneseDNA(Schema):
    style_category: Literal[
        "custom_logotype", "geometric_logotype", "calligraphic_logotype", "geometric",
        "calligraphic", "gothic", "mincho", "handwritten", "decorative",
    ]
    stroke_complexity: float
    radical_balance: float
    harai_factor: float
    tome_factor: float
    hane_factor: float
    squareness: float
    density_center: float
    is_mincho: bool
    is_gothic: bool
    is_handwritten: bool
    kana_roundness: float
    kana_connection_fluidity: float
    is_geometric_logotype: bool = False
    is_modular_grid: bool = False
    grid_unit_px: float = 0
    corner_radius_px: float = 0
    is_monoline: bool = False
    has_stencil_breaks: bool = False
    stroke_end_style: Literal["flat", "round", "angled", "brush", "tapered"] = "flat"
    is_calligraphic: bool = False
    brush_angle_deg: float = 0
    overall_elegance: float = 0
    connectedness: float = 0
    dynamic_range: float = 0


class TypefaceDNA(Schema):
    script_type: ScriptType
    visual_style: VisualStyle
    metrics: Metrics
    stroke: Stroke
    geometry: Geometry
    terminals: Terminals
    spacing: Spacing
    proportions: Proportions
    features: Features
    standard_font_detection: StandardFontDetection
    critical_features: CriticalFeatures
    japanese: Optional[JapaneseDNA] = None

    @property
    def is_default(self) -> bool:
        return not self.critical_features.top5

    @property
    def is_custom_logotype(self) -> bool:
        return not self.standard_font_detection.looks_like_standard_font


def default_typeface_dna(script: ScriptType = ScriptType.LATIN, error: Optional[str] = None) -> TypefaceDNA:
    return TypefaceDNA(
        script_type=script,
        visual_style=VisualStyle(
            background_color="white", text_color="black", fill_style="solid", outline_thickness_px=0,
            italic_angle_deg=0, has_drop_shadow=False, has_3d_effect=False, texture_style="clean",
        ),
        metrics=Metrics(image_width=1024, image_height=1024, cap_height=200, x_height=140, baseline=700, meanline=500),
        stroke=Stroke(thickest_px=40, thinnest_px=40, contrast_ratio=1.0, average_weight_px=40, weight_to_cap_ratio=0.2),
        geometry=Geometry(
            curve_radius_px=100, curve_eccentricity=0, outer_corner_radius_px=0, inner_corner_radius_px=0,
            corner_radius_ratio=0, ink_trap_depth_px=0, ink_trap_angle_deg=0,
        ),
        terminals=Terminals(cut_angle_deg=0, roundness_factor=0, serif_length_px=0, serif_thickness_px=0),
        spacing=Spacing(letter_spacing_px=20, letter_spacing_ratio=0.1, word_spacing_px=80, side_bearing_px=10),
        proportions=Proportions(
            width_to_height_ratio=0.8, x_height_to_cap_ratio=0.7, counter_area_ratio=0.3, negative_space_ratio=0.5,
        ),
        features=Features(has_stencil_gaps=False, stencil_gap_width_px=0, has_ligatures=False, has_touching_letters=False),
        standard_font_detection=StandardFontDetection(
            looks_like_standard_font=False, confidence=0.5, detected_category="custom_logotype",
        ),
        critical_features=CriticalFeatures(top5=[], width_description=f"ERROR: {error}" if error else ""),
    )


# -------------------------------------------------------------- illustration

class ColorPalette(Schema):
    primary: str
    secondary: List[str]
    accent: str
    temperature: Literal["warm", "cool", "neutral"]
    saturation: Literal["vivid", "muted", "pastel", "monochrome"]
    contrast: float


class LineStyle(Schema):
    weight: Literal["thin", "medium", "thick", "varied"]
    outline: Literal["clean", "rough", "none"]
    consistency: float


class ShapeStyle(Schema):
    type: Literal["geometric", "organic", "mixed"]
    roundness: float
    complexity: Literal["simple", "moderate", "detailed"]


class IllustrationDNA(Schema):
    color_palette: ColorPalette
    line_style: LineStyle
    shape_style: ShapeStyle
    subject_type: Literal["character", "object", "abstract", "scene"]
    overall_vibe: List[str]
    detected_subject: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return not self.overall_vibe


def default_illustration_dna() -> IllustrationDNA:
    return IllustrationDNA(
        color_palette=ColorPalette(
            primary="#4A90D9", secondary=["#F5A623", "#7ED321"], accent="#D0021B",
            temperature="neutral", saturation="vivid", contrast=0.6,
        ),
        line_style=LineStyle(weight="medium", outline="clean", consistency=0.8),
        shape_style=ShapeStyle(type="mixed", roundness=0.5, complexity="moderate"),
        subject_type="object",
        overall_vibe=[],
    )


DNA = Union[TypefaceDNA, IllustrationDNA]


class VisualDescription(Schema):
    overall_style: str
    letter_shapes: str = ""
    key_characteristics: List[str] = Field(default_factory=list)
    how_to_recreate: str = ""

    @property
    def is_default(self) -> bool:
        return self.overall_style == UNAVAILABLE_STYLE


UNAVAILABLE_STYLE = "Unable to extract"


def default_visual_description() -> VisualDescription:
    return VisualDescription(overall_style=UNAVAILABLE_STYLE)


def parse_typeface_dna(data: Dict[str, Any], script: ScriptType) -> TypefaceDNA:
    """Validate model output; the detected script always wins over what the model echoes."""
    return TypefaceDNA.model_validate({**data, "scriptType": script.value})


def parse_illustration_dna(data: Dict[str, Any]) -> IllustrationDNA:
    return IllustrationDNA.model_validate(data)
