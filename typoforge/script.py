from __future__ import annotations

import re
from enum import Enum


class ScriptType(str, Enum):
    LATIN = "latin"
    JAPANESE = "japanese"
    MIXED = "mixed"

    @property
    def label(self) -> str:
        return {"latin": "Latin", "japanese": "Japanese", "mixed": "Japanese+Latin"}[self.value]


# hiragana, katakana, CJK unified ideographs
_JAPANESE = re.compile(r"[぀-ゟ゠-ヿ一-龯]")
_LATIN = re.compile(r"[a-zA-Z]")


def classify_script(text: str) -> ScriptType:
    """Classify target text; anything without Japanese characters counts as latin."""
    text = text or ""
    has_japanese = bool(_JAPANESE.search(text))
    has_latin = bool(_LATIN.search(text))
    if has_japanese and has_latin:
        return ScriptType.MIXED
    if has_japanese:
        return ScriptType.JAPANESE
    return ScriptType.LATIN
