from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from ..config import ILLUSTRATION, ForgeConfig
from ..dna import (
    DNA,
    VisualDescription,
    default_illustration_dna,
    default_typeface_dna,
    default_visual_description,
    parse_illustration_dna,
    parse_typeface_dna,
)
from ..errors import ExtractionError
from ..llm.gemini import ModelBackend, extract_json
from ..prompts import build_description_prompt, build_dna_prompt, build_illustration_dna_prompt
from ..script import ScriptType
from ..state import ImageArtifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Extraction:
    dna: DNA
    error: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.dna.is_default


async def _extract(backend: ModelBackend, image: ImageArtifact, config: ForgeConfig, script: ScriptType) -> DNA:
    if config.variant == ILLUSTRATION:
        prompt = build_illustration_dna_prompt()
    else:
        prompt = build_dna_prompt(script)
    text = await backend.complete(
        "dna", prompt, [image], model=config.analysis_model, timeout=config.timeout
    )
    data = extract_json(text)
    if data is None:
        raise ExtractionError(f"no JSON object in model response: {text[:200]!r}")
    try:
        if config.variant == ILLUSTRATION:
            return parse_illustration_dna(data)
        return parse_typeface_dna(data, script)
    except ValidationError as e:
        raise ExtractionError(f"DNA failed validation ({e.error_count()} errors)") from e


async def extract_features(
    backend: ModelBackend,
    image: ImageArtifact,
    config: ForgeConfig,
    script: ScriptType = ScriptType.LATIN,
) -> Extraction:
    """Extract DNA from ``image``; any failure yields a marked default record."""
    try:
        return Extraction(dna=await _extract(backend, image, config, script))
    except Exception as e:  # network, SDK and parse failures all degrade to defaults
        logger.warning("DNA extraction failed, using defaults: %s", e)
        if config.variant == ILLUSTRATION:
            dna: DNA = default_illustration_dna()
        else:
            dna = default_typeface_dna(script, error=str(e))
        return Extraction(dna=dna, error=str(e))


async def describe_reference(backend: ModelBackend, image: ImageArtifact, config: ForgeConfig) -> VisualDescription:
    try:
        text = await backend.complete(
            "describe", build_description_prompt(), [image], model=config.analysis_model, timeout=config.timeout
        )
        data = extract_json(text)
        if data is None:
            raise ExtractionError("no JSON object in description response")
        return VisualDescription.model_validate(data)
    except Exception as e:
        logger.warning("visual description failed: %s", e)
        return default_visual_description()
