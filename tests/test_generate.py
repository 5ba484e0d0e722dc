from __future__ import annotations

import pytest

from typoforge.config import ForgeConfig
from typoforge.dna import default_illustration_dna, default_typeface_dna
from typoforge.errors import InputError
from typoforge.nodes.generate import build_prompt
from typoforge.script import ScriptType
from typoforge.state import ForgeRequest, ReferenceDescriptor


def _descriptor(reference, dna):
    return ReferenceDescriptor(image=reference, dna=dna, script=ScriptType.LATIN)


def test_illustration_prompt_follows_mode(reference):
    config = ForgeConfig.for_variant("illustration")
    desc = _descriptor(reference, default_illustration_dna())
    transform = build_prompt(config, ForgeRequest(reference, "a fox"), desc, None)
    variation = build_prompt(config, ForgeRequest(reference, "a fox", mode="variation"), desc, None)
    assert transform.startswith("Transform this illustration")
    assert variation.startswith("Create a variation")


def test_dna_of_the_other_variant_is_rejected(reference):
    request = ForgeRequest(reference, "HELLO")
    with pytest.raises(InputError):
        build_prompt(ForgeConfig.for_variant("illustration"), request, _descriptor(reference, default_typeface_dna()), None)
    with pytest.raises(InputError):
        build_prompt(ForgeConfig.for_variant("typeface"), request, _descriptor(reference, default_illustration_dna()), None)
