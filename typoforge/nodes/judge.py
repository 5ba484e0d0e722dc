from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from pydantic import Field, ValidationError

from ..config import ILLUSTRATION, ForgeConfig
from ..dna import Schema
from ..errors import EvaluationError
from ..llm.gemini import ModelBackend, extract_json
from ..prompts import build_illustration_judge_prompt, build_judge_prompt
from ..state import FeedbackRecord, ForgeRequest, ImageArtifact

logger = logging.getLogger(__name__)


class TypefaceJudgement(Schema):
    similarity_score: float
    text_accuracy: float
    detected_text: str = ""
    is_reference_custom_logotype: bool = True
    is_generated_standard_font: bool = False
    preserved_features: List[str] = Field(default_factory=list)
    lost_features: List[str] = Field(default_factory=list)
    critique: str = "No critique provided"


class IllustrationJudgement(Schema):
    color_score: float
    line_score: float
    shape_score: float
    vibe_score: float
    subject_score: float
    is_generic_style: bool = False
    preserved_features: List[str] = Field(default_factory=list)
    lost_features: List[str] = Field(default_factory=list)
    critique: str = "No critique provided"


@dataclass(frozen=True)
class VisualEvaluation:
    """What the judge said about one candidate, normalised across variants."""

    visual: float
    accuracy: float
    generic_style: bool
    preserved_features: List[str] = field(default_factory=list)
    lost_features: List[str] = field(default_factory=list)
    critique: str = ""
    detected_text: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    def feedback(self, score: float) -> FeedbackRecord:
        return FeedbackRecord(
            lost_features=tuple(self.lost_features),
            preserved_features=tuple(self.preserved_features),
            previous_score=score,
            critique=self.critique,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "similarityScore": self.visual,
            "textAccuracy": self.accuracy,
            "detectedText": self.detected_text,
            "isGeneratedStandardFont": self.generic_style,
            "preservedFeatures": list(self.preserved_features),
            "lostFeatures": list(self.lost_features),
            "critique": self.critique,
            "raw": self.raw,
        }


def _normalise(config: ForgeConfig, data: Dict[str, Any]) -> VisualEvaluation:
    if config.variant == ILLUSTRATION:
        j = IllustrationJudgement.model_validate(data)
        visual = (j.color_score + j.line_score + j.shape_score + j.vibe_score) / 4.0
        return VisualEvaluation(
            visual=visual,
            accuracy=j.subject_score,
            generic_style=j.is_generic_style,
            preserved_features=j.preserved_features,
            lost_features=j.lost_features,
            critique=j.critique,
            raw=j.to_json_dict(),
        )
    t = TypefaceJudgement.model_validate(data)
    return VisualEvaluation(
        visual=t.similarity_score,
        accuracy=t.text_accuracy,
        generic_style=t.is_generated_standard_font,
        preserved_features=t.preserved_features,
        lost_features=t.lost_features,
        critique=t.critique,
        detected_text=t.detected_text,
        raw=t.to_json_dict(),
    )


async def evaluate_similarity(
    backend: ModelBackend,
    config: ForgeConfig,
    request: ForgeRequest,
    reference: ImageArtifact,
    candidate: ImageArtifact,
) -> VisualEvaluation:
    """Ask the analysis model to compare reference (first) and candidate (second)."""
    if config.variant == ILLUSTRATION:
        prompt = build_illustration_judge_prompt(request.target, request.mode)
    else:
        prompt = build_judge_prompt(request.target)
    try:
        text = await backend.complete(
            "judge", prompt, [reference, candidate], model=config.analysis_model, timeout=config.timeout
        )
    except Exception as e:
        raise EvaluationError(f"Evaluation failed: {e}") from e
    data = extract_json(text)
    if data is None:
        raise EvaluationError(f"judge returned no JSON: {text[:200]!r}")
    try:
        return _normalise(config, data)
    except ValidationError as e:
        raise EvaluationError(f"judge output failed validation ({e.error_count()} errors)") from e
