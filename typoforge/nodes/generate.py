from __future__ import annotations

import logging
from typing import Optional

from ..config import ILLUSTRATION, ForgeConfig
from ..dna import IllustrationDNA, TypefaceDNA
from ..errors import GenerationError, InputError
from ..llm.gemini import ModelBackend
from ..prompts import build_illustration_prompt, build_typeface_prompt
from ..state import FeedbackRecord, ForgeRequest, ImageArtifact, ReferenceDescriptor

logger = logging.getLogger(__name__)


def build_prompt(
    config: ForgeConfig,
    request: ForgeRequest,
    reference: ReferenceDescriptor,
    feedback: Optional[FeedbackRecord],
) -> str:
    dna = reference.dna
    if config.variant == ILLUSTRATION and isinstance(dna, IllustrationDNA):
        return build_illustration_prompt(request.target, dna, request.mode, feedback, request.strategy)
    if config.variant != ILLUSTRATION and isinstance(dna, TypefaceDNA):
        return build_typeface_prompt(request.target, dna, reference.description, feedback, request.strategy)
    raise InputError(f"{type(dna).__name__} does not match the {config.variant} variant")


async def generate_candidate(
    backend: ModelBackend,
    config: ForgeConfig,
    prompt: str,
    reference: ReferenceDescriptor,
) -> ImageArtifact:
    """One image-model call with the reference image attached; no image is an error."""
    try:
        image = await backend.generate_image(
            "generate",
            prompt,
            [reference.image],
            model=config.image_model,
            options=config.image,
            timeout=config.timeout,
        )
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError(f"Generation failed: {e}") from e
    if image is None or not image.data:
        raise GenerationError("No image generated")
    return image
