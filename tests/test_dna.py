from __future__ import annotations

import pytest
from pydantic import ValidationError

from typoforge.dna import (
    default_typeface_dna,
    default_visual_description,
    parse_illustration_dna,
    parse_typeface_dna,
)
from typoforge.llm.gemini import extract_json
from typoforge.prompts import (
    build_dna_prompt,
    build_illustration_dna_prompt,
    build_illustration_prompt,
    build_typeface_prompt,
)
from typoforge.script import ScriptType
from typoforge.state import FeedbackRecord


def _example(script=ScriptType.LATIN):
    return extract_json(build_dna_prompt(script))


def test_prompt_example_parses_as_dna():
    dna = parse_typeface_dna(_example(), ScriptType.LATIN)
    assert not dna.is_default
    assert dna.is_custom_logotype
    assert dna.visual_style.has_3d_effect is False
    assert dna.to_json_dict()["visualStyle"]["has3DEffect"] is False


def test_detected_script_overrides_model_echo():
    data = dict(_example(), scriptType="japanese")
    assert parse_typeface_dna(data, ScriptType.LATIN).script_type is ScriptType.LATIN


def test_japanese_block_only_for_japanese_scripts():
    assert "japanese" not in _example(ScriptType.LATIN)
    dna = parse_typeface_dna(_example(ScriptType.MIXED), ScriptType.MIXED)
    assert dna.japanese is not None and dna.japanese.is_gothic


def test_incomplete_dna_fails_validation():
    data = _example()
    del data["stroke"]
    with pytest.raises(ValidationError):
        parse_typeface_dna(data, ScriptType.LATIN)


def test_defaults_are_marked():
    dna = default_typeface_dna(error="timeout")
    assert dna.is_default
    assert dna.critical_features.width_description == "ERROR: timeout"
    assert default_visual_description().is_default


def test_illustration_example_parses():
    dna = parse_illustration_dna(extract_json(build_illustration_dna_prompt()))
    assert not dna.is_default
    assert dna.color_palette.temperature == "neutral"


def test_typeface_prompt_sections():
    dna = parse_typeface_dna(_example(), ScriptType.LATIN)
    fb = FeedbackRecord(lost_features=("ink traps",), preserved_features=("weight",), previous_score=64, critique="too plain")
    prompt = build_typeface_prompt("HELLO", dna, None, fb, "go bolder")
    assert 'Spell EXACTLY "HELLO"' in prompt
    assert "PREVIOUS ATTEMPT FAILED (Score: 64/100)" in prompt
    assert "- ink traps" in prompt
    assert "CUSTOM LOGOTYPE" in prompt
    assert "STRATEGY: go bolder" in prompt


def test_default_dna_prompt_uses_description():
    desc = default_visual_description().model_copy(update={"overall_style": "chunky stencil"})
    prompt = build_typeface_prompt("HELLO", default_typeface_dna(error="x"), desc)
    assert "chunky stencil" in prompt
    assert "ERROR:" not in prompt


def test_illustration_prompt_modes():
    dna = parse_illustration_dna(extract_json(build_illustration_dna_prompt()))
    assert 'depict "a fox"' in build_illustration_prompt("a fox", dna, "transform")
    assert "Create a variation" in build_illustration_prompt("a fox", dna, "variation")
