"""Palette transforms applied to the best illustration once the loop ends."""
from __future__ import annotations

import colorsys
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from ..config import ForgeConfig
from ..dna import ColorPalette
from ..errors import GenerationError
from ..llm.gemini import ModelBackend
from ..prompts import build_recolor_prompt
from ..state import ImageArtifact

logger = logging.getLogger(__name__)

VARIATION_ORDER = ("warm", "cool", "monochrome", "complementary", "pastel")

_NAMES = {
    "original": ("Original", "Original color palette"),
    "warm": ("Warm Tone", "Shifted to warmer tones"),
    "cool": ("Cool Tone", "Shifted to cooler tones"),
    "monochrome": ("Monochrome", "Grayscale version"),
    "complementary": ("Complementary", "Complementary color scheme"),
    "pastel": ("Pastel", "Softer pastel colors"),
}


def hex_to_hsl(value: str) -> tuple[float, float, float]:
    """'#RRGGBB' -> (hue degrees, saturation %, lightness %)."""
    value = value.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"not a #RRGGBB color: {value!r}")
    r, g, b = (int(value[i : i + 2], 16) / 255 for i in (0, 2, 4))
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    return h * 360, s * 100, l * 100


def hsl_to_hex(h: float, s: float, l: float) -> str:
    r, g, b = colorsys.hls_to_rgb((h % 360) / 360, l / 100, s / 100)
    return "#" + "".join(f"{round(c * 255):02x}" for c in (r, g, b))


def shift_hue(color: str, degrees: float) -> str:
    try:
        h, s, l = hex_to_hsl(color)
    except ValueError:
        return color
    return hsl_to_hex(h + degrees, s, l)


def to_grayscale(color: str) -> str:
    try:
        h, _, l = hex_to_hsl(color)
    except ValueError:
        return color
    return hsl_to_hex(h, 0, l)


def to_pastel(color: str) -> str:
    try:
        h, s, l = hex_to_hsl(color)
    except ValueError:
        return color
    return hsl_to_hex(h, min(s, 40), max(l, 75))


def transform_palette(palette: ColorPalette, kind: str) -> ColorPalette:
    def each(fn) -> Dict[str, Any]:
        return {
            "primary": fn(palette.primary),
            "secondary": [fn(c) for c in palette.secondary],
            "accent": fn(palette.accent),
        }

    if kind == "warm":
        return palette.model_copy(update={**each(lambda c: shift_hue(c, 15)), "temperature": "warm"})
    if kind == "cool":
        return palette.model_copy(update={**each(lambda c: shift_hue(c, -30)), "temperature": "cool"})
    if kind == "monochrome":
        return palette.model_copy(update={**each(to_grayscale), "saturation": "monochrome"})
    if kind == "complementary":
        return palette.model_copy(update=each(lambda c: shift_hue(c, 180)))
    if kind == "pastel":
        return palette.model_copy(update={**each(to_pastel), "saturation": "pastel"})
    return palette


@dataclass
class ColorVariation:
    id: str
    name: str
    description: str
    palette: ColorPalette
    status: str = "pending"
    image: ImageArtifact | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "palette": self.palette.to_json_dict(),
            "status": self.status,
            "imagePath": self.image.path if self.image else None,
        }


def plan_variations(palette: ColorPalette, count: int) -> List[ColorVariation]:
    """The original palette plus up to ``count - 1`` transformed ones."""
    if count <= 0:
        return []
    name, desc = _NAMES["original"]
    out = [ColorVariation("original", name, desc, palette, status="complete")]
    for kind in VARIATION_ORDER[: max(0, count - 1)]:
        name, desc = _NAMES[kind]
        out.append(ColorVariation(kind, name, desc, transform_palette(palette, kind)))
    return out


async def render_variation(
    backend: ModelBackend,
    config: ForgeConfig,
    source: ImageArtifact,
    variation: ColorVariation,
) -> ImageArtifact:
    p = variation.palette
    prompt = build_recolor_prompt(variation.name, variation.description, p.primary, p.secondary, p.accent)
    try:
        image = await backend.generate_image(
            "recolor", prompt, [source], model=config.image_model, options=config.image, timeout=config.timeout
        )
    except Exception as e:
        raise GenerationError(f"color variation {variation.id} failed: {e}") from e
    if image is None or not image.data:
        raise GenerationError(f"color variation {variation.id} returned no image")
    return image
