"""Numeric DNA diffing and the composite admission score."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

from .config import ForgeConfig
from .dna import DNA, IllustrationDNA, TypefaceDNA
from .script import ScriptType
from .state import SubScores

NUMERIC = "numeric"
MATCH = "match"

# Score used when neither side has real DNA to compare.
NEUTRAL_DNA_SCORE = 50
# Ceiling when only one side is a default stand-in.
UNTRUSTED_DNA_CEILING = 60


@dataclass(frozen=True)
class FieldWeight:
    name: str
    path: str
    weight: float
    kind: str = NUMERIC


LATIN_WEIGHTS: Tuple[FieldWeight, ...] = (
    FieldWeight("strokeContrastDiff", "stroke.contrast_ratio", 20),
    FieldWeight("strokeWeightDiff", "stroke.average_weight_px", 15),
    FieldWeight("curveRadiusDiff", "geometry.curve_radius_px", 15),
    FieldWeight("cornerRadiusDiff", "geometry.outer_corner_radius_px", 10),
    FieldWeight("inkTrapDepthDiff", "geometry.ink_trap_depth_px", 10),
    FieldWeight("spacingDiff", "spacing.letter_spacing_px", 10),
    FieldWeight("proportionDiff", "proportions.width_to_height_ratio", 10),
    FieldWeight("terminalDiff", "terminals.roundness_factor", 5),
    FieldWeight("featureMatch", "features.has_stencil_gaps", 5, MATCH),
)

JAPANESE_WEIGHTS: Tuple[FieldWeight, ...] = (
    FieldWeight("strokeContrastDiff", "stroke.contrast_ratio", 15),
    FieldWeight("strokeWeightDiff", "stroke.average_weight_px", 15),
    FieldWeight("curveRadiusDiff", "geometry.curve_radius_px", 10),
    FieldWeight("cornerRadiusDiff", "geometry.outer_corner_radius_px", 10),
    FieldWeight("spacingDiff", "spacing.letter_spacing_px", 10),
    FieldWeight("proportionDiff", "proportions.width_to_height_ratio", 10),
    FieldWeight("terminalDiff", "terminals.roundness_factor", 5),
    FieldWeight("squarenessDiff", "japanese.squareness", 10),
    FieldWeight("haraiDiff", "japanese.harai_factor", 10),
    FieldWeight("featureMatch", "features.has_stencil_gaps", 5, MATCH),
)

ILLUSTRATION_WEIGHTS: Tuple[FieldWeight, ...] = (
    FieldWeight("contrastDiff", "color_palette.contrast", 20),
    FieldWeight("lineConsistencyDiff", "line_style.consistency", 20),
    FieldWeight("roundnessDiff", "shape_style.roundness", 20),
    FieldWeight("temperatureMatch", "color_palette.temperature", 10, MATCH),
    FieldWeight("saturationMatch", "color_palette.saturation", 10, MATCH),
    FieldWeight("lineWeightMatch", "line_style.weight", 10, MATCH),
    FieldWeight("shapeTypeMatch", "shape_style.type", 10, MATCH),
)

WEIGHT_TABLES: Dict[str, Tuple[FieldWeight, ...]] = {
    ScriptType.LATIN.value: LATIN_WEIGHTS,
    ScriptType.MIXED.value: LATIN_WEIGHTS,
    ScriptType.JAPANESE.value: JAPANESE_WEIGHTS,
    "illustration": ILLUSTRATION_WEIGHTS,
}


def _check_table(name: str, table: Iterable[FieldWeight]) -> None:
    total = sum(f.weight for f in table)
    if not math.isclose(total, 100.0):
        raise ValueError(f"weight table {name} sums to {total}, expected 100")


for _name, _table in WEIGHT_TABLES.items():
    _check_table(_name, _table)


def weights_for(dna: DNA) -> Tuple[FieldWeight, ...]:
    if isinstance(dna, IllustrationDNA):
        return ILLUSTRATION_WEIGHTS
    return WEIGHT_TABLES[ScriptType(dna.script_type).value]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def safe_diff(a: float, b: float) -> float:
    """Normalized absolute difference, symmetric and zero on identical inputs."""
    if a == 0 and b == 0:
        return 0.0
    return abs(a - b) / max(abs(a), abs(b), 1.0)


def lookup(dna: Any, path: str) -> Any:
    node = dna
    for part in path.split("."):
        if node is None:
            return None
        node = getattr(node, part, None)
    return node


def _number(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return float(bool(value))
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class DNAComparison:
    diffs: Dict[str, float] = field(default_factory=dict)
    matches: Dict[str, bool] = field(default_factory=dict)
    overall_score: int = NEUTRAL_DNA_SCORE
    reference_default: bool = False
    candidate_default: bool = False

    @property
    def trustworthy(self) -> bool:
        return not (self.reference_default or self.candidate_default)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {k: round(v, 4) for k, v in self.diffs.items()}
        out.update(self.matches)
        out["overallScore"] = self.overall_score
        out["referenceIsDefault"] = self.reference_default
        out["candidateIsDefault"] = self.candidate_default
        return out


def compare_dna(
    reference: DNA,
    candidate: DNA,
    table: Optional[Tuple[FieldWeight, ...]] = None,
) -> DNAComparison:
    table = table or weights_for(reference)
    ref_default = reference.is_default
    cand_default = candidate.is_default

    if ref_default and cand_default:
        return DNAComparison(
            diffs={f.name: 0.0 for f in table if f.kind == NUMERIC},
            matches={f.name: True for f in table if f.kind == MATCH},
            overall_score=NEUTRAL_DNA_SCORE,
            reference_default=True,
            candidate_default=True,
        )

    diffs: Dict[str, float] = {}
    matches: Dict[str, bool] = {}
    score = 100.0
    for f in table:
        a = lookup(reference, f.path)
        b = lookup(candidate, f.path)
        if f.kind == MATCH:
            matches[f.name] = a == b
            if not matches[f.name]:
                score -= f.weight
        else:
            diffs[f.name] = safe_diff(_number(a), _number(b))
            score -= diffs[f.name] * f.weight

    if ref_default or cand_default:
        score = min(score, UNTRUSTED_DNA_CEILING)

    return DNAComparison(
        diffs=diffs,
        matches=matches,
        overall_score=max(0, round_half_up(score)),
        reference_default=ref_default,
        candidate_default=cand_default,
    )


def composite_score(sub: SubScores, generic_fallback: bool, config: ForgeConfig) -> int:
    """Blend the three sub-scores and apply the fallback and low-accuracy ceilings.

    Both penalties are ceilings; whichever is tighter wins. A penalty never
    raises a score above its unpenalized blend.
    """
    visual = clamp(sub.visual)
    accuracy = clamp(sub.accuracy)
    dna = clamp(sub.dna)

    w = config.blend
    score = visual * w.visual + accuracy * w.accuracy + dna * w.dna
    if generic_fallback:
        fb = config.fallback_blend
        penalized = visual * fb.visual + accuracy * fb.accuracy + dna * fb.dna
        score = min(config.fallback_ceiling, penalized, score)
    if accuracy < config.low_accuracy_floor:
        score = min(score, config.low_accuracy_ceiling)
    return round_half_up(clamp(score))


def is_generic_fallback(reference: DNA, candidate: Optional[DNA], judged_generic: bool) -> bool:
    """A custom reference rendered in a generic style.

    For typefaces the candidate's own standard-font detection counts too; a
    reference that is itself a standard font cannot fall back.
    """
    if isinstance(reference, TypefaceDNA):
        if not reference.is_custom_logotype:
            return False
        looks_standard = (
            isinstance(candidate, TypefaceDNA)
            and not candidate.is_default
            and candidate.standard_font_detection.looks_like_standard_font
        )
        return judged_generic or looks_standard
    return judged_generic


def update_best(best_score: float, best_iteration: int, score: float, index: int) -> Tuple[float, int]:
    # strict ">" keeps the earliest iteration on ties
    if score > best_score:
        return score, index
    return best_score, best_iteration


def is_converged(score: float, generic_fallback: bool, threshold: float) -> bool:
    return score >= threshold and not generic_fallback
