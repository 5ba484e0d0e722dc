from __future__ import annotations

import json
from typing import List, Optional

from .dna import IllustrationDNA, TypefaceDNA, VisualDescription
from .script import ScriptType
from .state import FeedbackRecord

_TYPEFACE_EXAMPLE = {
    "visualStyle": {"backgroundColor": "white", "textColor": "black", "fillStyle": "solid", "outlineThicknessPx": 0,
                    "italicAngleDeg": 0, "hasDropShadow": False, "has3DEffect": False, "textureStyle": "clean"},
    "metrics": {"imageWidth": 1024, "imageHeight": 1024, "capHeight": 200, "xHeight": 140, "baseline": 700, "meanline": 500},
    "stroke": {"thickestPx": 40, "thinnestPx": 40, "contrastRatio": 1.0, "averageWeightPx": 40, "weightToCapRatio": 0.2},
    "geometry": {"curveRadiusPx": 10, "curveEccentricity": 0, "outerCornerRadiusPx": 5, "innerCornerRadiusPx": 5,
                 "cornerRadiusRatio": 0.5, "inkTrapDepthPx": 0, "inkTrapAngleDeg": 0},
    "terminals": {"cutAngleDeg": 0, "roundnessFactor": 0.5, "serifLengthPx": 0, "serifThicknessPx": 0},
    "spacing": {"letterSpacingPx": 20, "letterSpacingRatio": 0.1, "wordSpacingPx": 80, "sideBearingPx": 10},
    "proportions": {"widthToHeightRatio": 0.8, "xHeightToCapRatio": 0.7, "counterAreaRatio": 0.3, "negativeSpaceRatio": 0.5},
    "features": {"hasStencilGaps": False, "stencilGapWidthPx": 0, "hasLigatures": False, "hasTouchingLetters": False},
    "standardFontDetection": {"looksLikeStandardFont": False, "confidence": 0.8, "detectedCategory": "custom_logotype",
                              "uniqueFeatures": ["feature1", "feature2"], "standardFontSimilarity": "none"},
    "criticalFeatures": {"top5": ["distinctive feature 1", "distinctive feature 2", "distinctive feature 3",
                                  "distinctive feature 4", "distinctive feature 5"],
                         "mustPreserve": ["most important feature"], "characterWidthVariance": "natural",
                         "widthDescription": "description of width variation"},
}

_JAPANESE_EXAMPLE = {
    "styleCategory": "custom_logotype", "strokeComplexity": 0.5, "radicalBalance": 0.5, "haraiFactor": 0.3,
    "tomeFactor": 0.5, "haneFactor": 0.3, "squareness": 0.8, "densityCenter": 0.5, "isMincho": False,
    "isGothic": True, "isHandwritten": False, "kanaRoundness": 0.5, "kanaConnectionFluidity": 0.2,
    "isGeometricLogotype": False, "isModularGrid": False, "gridUnitPx": 0, "cornerRadiusPx": 0, "isMonoline": True,
    "hasStencilBreaks": False, "strokeEndStyle": "flat", "isCalligraphic": False, "brushAngleDeg": 0,
    "overallElegance": 0.5, "connectedness": 0.2, "dynamicRange": 0.3,
}

_ILLUSTRATION_EXAMPLE = {
    "colorPalette": {"primary": "#4A90D9", "secondary": ["#F5A623"], "accent": "#D0021B",
                     "temperature": "neutral", "saturation": "vivid", "contrast": 0.6},
    "lineStyle": {"weight": "medium", "outline": "clean", "consistency": 0.8},
    "shapeStyle": {"type": "mixed", "roundness": 0.5, "complexity": "moderate"},
    "subjectType": "object",
    "overallVibe": ["playful", "modern", "friendly"],
    "detectedSubject": "a short description of what is depicted",
}


def build_dna_prompt(script: ScriptType) -> str:
    example = dict(_TYPEFACE_EXAMPLE, scriptType=script.value)
    if script in (ScriptType.JAPANESE, ScriptType.MIXED):
        example["japanese"] = _JAPANESE_EXAMPLE
    return (
        "Analyze this typography image and extract its visual DNA. Focus on the unique characteristics.\n\n"
        "IMPORTANT: Identify the TOP 5 most distinctive visual features that make this typeface unique.\n\n"
        "Respond with ONLY a JSON object (no markdown code blocks):\n"
        f"{json.dumps(example, ensure_ascii=False)}\n\n"
        "Replace all placeholder values with actual analysis of the image. "
        "Be specific about what makes this typeface unique."
    )


def build_description_prompt() -> str:
    return (
        "Analyze the typography in this image. Return JSON only:\n"
        '{"overallStyle":"<1 sentence describing the overall style>","letterShapes":"<describe each visible letter briefly>",'
        '"keyCharacteristics":["<feature 1>","<feature 2>","<feature 3>","<feature 4>","<feature 5>"],'
        '"howToRecreate":"<brief instructions>"}'
    )


def build_illustration_dna_prompt() -> str:
    return (
        "Analyze this illustration and extract its visual DNA. Focus on:\n"
        "1. Color palette - the main colors (hex format), temperature, saturation level\n"
        "2. Line style - weight, outline style, consistency\n"
        "3. Shape style - geometric vs organic, roundness, complexity\n"
        "4. Subject type - character, object, abstract, or scene\n"
        "5. Overall vibe - 3-5 adjectives\n\n"
        "Respond with ONLY a JSON object:\n"
        f"{json.dumps(_ILLUSTRATION_EXAMPLE, ensure_ascii=False)}"
    )


def build_judge_prompt(target: str) -> str:
    return (
        "You are a typography expert. Compare these two images:\n"
        "IMAGE 1 (first image): The REFERENCE design - the original typeface style\n"
        "IMAGE 2 (second image): The GENERATED attempt to recreate that style\n\n"
        f'The target text that should appear in the generated image is: "{target}"\n\n'
        "EVALUATION TASKS:\n"
        "1. Read the text in the GENERATED image (IMAGE 2) carefully\n"
        f'2. Compare if it matches the target text "{target}" exactly\n'
        "3. Rate the visual style similarity between reference and generated\n\n"
        "SIMILARITY SCORING (0-100):\n"
        "- 90-100: Nearly identical letterform style, weight, and character\n"
        "- 70-89: Good style match with minor differences in details\n"
        "- 50-69: Moderate match, some stylistic features lost\n"
        "- 30-49: Poor match, many important features different\n"
        "- 0-29: Complete mismatch or replaced with standard font\n\n"
        "TEXT ACCURACY SCORING (0-100):\n"
        "- 100: Exact match - all characters are correct\n"
        "- 75: Minor issue - one character slightly malformed but readable\n"
        "- 50: One character wrong or missing\n"
        "- 25: Multiple characters wrong or missing\n"
        "- 0: Completely wrong or unreadable\n\n"
        "IMPORTANT: Be strict. If the generated image uses a standard/generic font instead of matching "
        "the reference's custom style, score should be under 40.\n\n"
        "You MUST respond with ONLY a JSON object (no markdown, no explanation):\n"
        f'{{"similarityScore":75,"textAccuracy":100,"detectedText":{json.dumps(target, ensure_ascii=False)},'
        '"isReferenceCustomLogotype":true,"isGeneratedStandardFont":false,'
        '"preservedFeatures":["thick strokes","rounded corners"],"lostFeatures":["unique curves","spacing"],'
        '"critique":"The generated text maintains weight but loses the distinctive character shapes"}'
    )


def build_illustration_judge_prompt(subject: str, mode: str) -> str:
    return (
        "Compare these two illustrations:\n"
        "IMAGE 1 (first): Reference illustration\n"
        f'IMAGE 2 (second): Generated illustration (should be "{subject}" in {mode} mode)\n\n'
        "Evaluate how well the generated image:\n"
        "1. Preserves the color palette (0-100)\n"
        "2. Maintains line style consistency (0-100)\n"
        "3. Keeps shape characteristics (0-100)\n"
        "4. Matches overall vibe/mood (0-100)\n"
        "5. Successfully depicts the target subject (0-100)\n"
        "Also say whether the generated image ignored the reference style and fell back to a generic look.\n\n"
        "Respond with ONLY JSON:\n"
        '{"colorScore":80,"lineScore":75,"shapeScore":70,"vibeScore":85,"subjectScore":90,'
        '"isGenericStyle":false,"preservedFeatures":["flat colors"],"lostFeatures":["thick outline"],'
        '"critique":"one or two sentences"}'
    )


def _bullets(items: List[str], empty: str) -> str:
    return "\n".join(f"- {x}" for x in items) if items else empty


def _feedback_section(feedback: Optional[FeedbackRecord]) -> str:
    if feedback is None:
        return ""
    return (
        f"=== PREVIOUS ATTEMPT FAILED (Score: {feedback.previous_score:g}/100) ===\n"
        f"CRITIQUE: {feedback.critique}\n"
        "LOST FEATURES YOU MUST FIX:\n"
        f"{_bullets(list(feedback.lost_features), '- Unknown')}\n"
        f"PRESERVED (keep these): {', '.join(feedback.preserved_features) or 'Unknown'}\n"
    )


def build_typeface_prompt(
    target: str,
    dna: TypefaceDNA,
    description: Optional[VisualDescription] = None,
    feedback: Optional[FeedbackRecord] = None,
    strategy: Optional[str] = None,
) -> str:
    cf = dna.critical_features
    sfd = dna.standard_font_detection
    vs = dna.visual_style
    sections: List[str] = [f'TASK: Recreate the EXACT letterform style from the reference image, spelling "{target}".']
    if strategy:
        sections.append(f"STRATEGY: {strategy}")
    fb = _feedback_section(feedback)
    if fb:
        sections.append(fb)
    if cf.top5:
        numbered = "\n".join(f"{i + 1}. {f}" for i, f in enumerate(cf.top5))
        must = "\n".join(cf.must_preserve) or "All features above"
        sections.append(
            "=== CRITICAL STYLE FEATURES TO REPLICATE ===\n"
            f"{numbered}\n\nMUST PRESERVE AT ALL COSTS:\n{must}"
        )
    if dna.is_custom_logotype:
        sections.append(
            "=== WARNING: CUSTOM LOGOTYPE ===\n"
            "This is NOT a standard font. It has these unique features:\n"
            f"{_bullets(sfd.unique_features, '- Custom letterforms')}\n"
            "DO NOT substitute with any system/standard font like Arial, Helvetica, Gothic, etc.\n"
            "You MUST recreate the custom letterforms exactly."
        )
    if cf.width_description and not cf.width_description.startswith("ERROR:"):
        sections.append(
            "=== CHARACTER WIDTH VARIATION ===\n"
            f"{cf.width_description}\nWidth variance: {cf.character_width_variance}"
        )
    style = [f"- Background: {vs.background_color}", f"- Text color: {vs.text_color}", f"- Fill style: {vs.fill_style}"]
    if vs.italic_angle_deg > 0:
        style.append(f"- Italic angle: {vs.italic_angle_deg:g} degrees")
    if vs.has_drop_shadow:
        style.append("- Has drop shadow")
    if vs.has_3d_effect:
        style.append("- Has 3D effect")
    sections.append("=== VISUAL STYLE ===\n" + "\n".join(style))
    if dna.japanese is not None:
        jp = dna.japanese
        sections.append(
            "=== JAPANESE LETTERFORMS ===\n"
            f"- Style category: {jp.style_category}\n"
            f"- Squareness: {jp.squareness:g}, harai (sweeps): {jp.harai_factor:g}, "
            f"tome (stops): {jp.tome_factor:g}, hane (hooks): {jp.hane_factor:g}\n"
            f"- Stroke ends: {jp.stroke_end_style}{', monoline' if jp.is_monoline else ''}"
        )
    if not cf.top5 and description is not None and not description.is_default:
        sections.append(
            "=== VISUAL DESCRIPTION ===\n"
            f"Style: {description.overall_style}\n"
            f"Letter shapes: {description.letter_shapes or 'Not specified'}\n"
            f"Key characteristics: {', '.join(description.key_characteristics) or 'Not specified'}\n"
            f"How to recreate: {description.how_to_recreate or 'Match the reference image'}"
        )
    sections.append(
        "=== ABSOLUTE REQUIREMENTS ===\n"
        f'1. Spell EXACTLY "{target}" - verify each character is correct\n'
        "2. Copy the EXACT stroke construction, weight, and contrast from reference\n"
        "3. Match terminals, corners, and curve radii precisely\n"
        "4. DO NOT use standard/system fonts - recreate the custom letterforms\n"
        "5. Center the text horizontally\n"
        "6. No decorations, labels, borders, or watermarks\n"
        "7. Clean background matching reference style\n\n"
        "Look at the reference image carefully. Your output must look like it was created by the same designer."
    )
    return "\n\n".join(sections)


def build_illustration_prompt(
    subject: str,
    dna: IllustrationDNA,
    mode: str = "transform",
    feedback: Optional[FeedbackRecord] = None,
    strategy: Optional[str] = None,
) -> str:
    if mode == "transform":
        head = f'Transform this illustration to depict "{subject}" instead, while preserving the exact same visual style.'
    else:
        head = f'Create a variation of this illustration: "{subject}", keeping the same subject but with the requested changes.'
    cp, ls, ss = dna.color_palette, dna.line_style, dna.shape_style
    sections = [head]
    if strategy:
        sections.append(f"STRATEGY: {strategy}")
    fb = _feedback_section(feedback)
    if fb:
        sections.append(fb)
    sections.append(
        "STYLE DNA TO PRESERVE:\n"
        f"- Color palette: Primary {cp.primary}, accents {cp.accent}\n"
        f"- Temperature: {cp.temperature}\n"
        f"- Saturation: {cp.saturation}\n"
        f"- Line style: {ls.weight} weight, {ls.outline} outline\n"
        f"- Shape style: {ss.type}, {ss.complexity} complexity\n"
        f"- Overall vibe: {', '.join(dna.overall_vibe) or 'match the reference'}"
    )
    sections.append(
        "REQUIREMENTS:\n"
        "1. Match the exact color palette and color relationships\n"
        "2. Preserve the line weight and style\n"
        "3. Keep the same level of detail and complexity\n"
        "4. Maintain the overall mood and feeling\n"
        "5. Clean background (white or matching the reference style)\n"
        "6. No text, labels, or watermarks"
    )
    return "\n\n".join(sections)


def build_recolor_prompt(name: str, description: str, primary: str, secondary: List[str], accent: str) -> str:
    return (
        f"Recolor this illustration with a {name} palette ({description}). "
        "Keep every shape, line, and the composition exactly the same; change colors only.\n"
        f"- Primary: {primary}\n"
        f"- Secondary: {', '.join(secondary)}\n"
        f"- Accent: {accent}"
    )
