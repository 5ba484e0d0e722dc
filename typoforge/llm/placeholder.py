from __future__ import annotations

import io
import json
import logging
import random
import re
from typing import Any, Dict, Optional, Sequence

from PIL import Image, ImageDraw, ImageFont

from ..config import ImageOptions
from ..state import ImageArtifact
from .gemini import extract_json

logger = logging.getLogger(__name__)

_SUBJECT = re.compile(r'(?:spelling|depict|illustration:) "(.+?)"')
_PRIMARY = re.compile(r"Primary:? (#[0-9a-fA-F]{6})")
_SCORE_KEYS = ("similarityScore", "colorScore", "lineScore", "shapeScore", "vibeScore")


def _seed(images: Sequence[ImageArtifact], prompt: str) -> int:
    basis = images[-1].digest if images else prompt
    return int(basis[:8], 16) if images else sum(ord(c) for c in basis)


def _jitter(value: Any, rng: random.Random) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return round(value * rng.uniform(0.8, 1.2), 3)


def _walk(data: Any, rng: random.Random) -> Any:
    if isinstance(data, dict):
        return {k: _walk(v, rng) for k, v in data.items()}
    if isinstance(data, list):
        return [_walk(v, rng) for v in data]
    return _jitter(data, rng)


class PlaceholderBackend:
    """Deterministic offline stand-in for the Gemini backend.

    Text tasks answer with the JSON example embedded in the prompt, with
    numbers perturbed per input image; image tasks render the requested
    text or subject with Pillow. Only used when offline mode is requested.
    """

    async def complete(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        timeout: Optional[float] = None,
    ) -> str:
        rng = random.Random(_seed(images, prompt))
        example = extract_json(prompt)
        if example is None:
            return "{}"
        if task == "judge":
            out: Dict[str, Any] = dict(example)
            for key in _SCORE_KEYS:
                if key in out:
                    out[key] = rng.randint(55, 95)
            if "subjectScore" in out:
                out["subjectScore"] = rng.randint(70, 100)
            return json.dumps(out, ensure_ascii=False)
        if task == "dna":
            return json.dumps(_walk(example, rng), ensure_ascii=False)
        return json.dumps(example, ensure_ascii=False)

    async def generate_image(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        options: Optional[ImageOptions] = None,
        timeout: Optional[float] = None,
    ) -> Optional[ImageArtifact]:
        rng = random.Random(_seed(images, prompt) + len(prompt))
        m = _SUBJECT.search(prompt)
        text = m.group(1) if m else "?"
        p = _PRIMARY.search(prompt)
        color = p.group(1) if p else "#%02x%02x%02x" % (rng.randrange(40), rng.randrange(40), rng.randrange(40))
        data = render_placeholder(text, color)
        return ImageArtifact(data=data, mime_type="image/png", meta={"source": "placeholder", "task": task})


def render_placeholder(text: str, color: str = "#000000", size: int = 512) -> bytes:
    img = Image.new("RGB", (size, size), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    try:
        font = ImageFont.truetype("DejaVuSans-Bold.ttf", size // 6)
    except OSError:
        font = ImageFont.load_default()
    tw = draw.textlength(text, font=font)
    draw.text(((size - tw) / 2, size / 2 - size // 12), text, fill=color, font=font)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
