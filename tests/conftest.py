"""Fake model backends shared across the suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from typoforge.llm.gemini import extract_json
from typoforge.state import ImageArtifact

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-reference"


def judgement(visual: float, accuracy: float = 100, generic: bool = False, **extra: Any) -> Dict[str, Any]:
    out = {
        "similarityScore": visual,
        "textAccuracy": accuracy,
        "detectedText": "HELLO",
        "isGeneratedStandardFont": generic,
        "preservedFeatures": ["weight"],
        "lostFeatures": [f"curves@{visual:g}"],
        "critique": f"critique for visual {visual:g}",
    }
    out.update(extra)
    return out


class FakeBackend:
    """Scripted backend.

    ``judgements`` and ``generations`` are consumed in order, one per call;
    an Exception instance is raised, ``None`` for a generation means "no
    image". DNA requests echo the example embedded in the prompt, which is a
    complete, non-default record.
    """

    def __init__(
        self,
        judgements: Sequence[Any] = (),
        generations: Sequence[Any] = (),
        reference_dna: Optional[str] = None,
    ) -> None:
        self.judgements: List[Any] = list(judgements)
        self.generations: List[Any] = list(generations)
        self.reference_dna = reference_dna
        self.calls: List[Tuple[str, str]] = []
        self.generated = 0

    async def complete(self, task, prompt, images=(), *, model, timeout=None) -> str:
        self.calls.append((task, prompt))
        if task == "dna":
            if self.reference_dna is not None and images and images[0].data == FAKE_PNG:
                return self.reference_dna
            return json.dumps(extract_json(prompt))
        if task == "describe":
            return json.dumps({"overallStyle": "rounded geometric sans", "keyCharacteristics": ["round dots"]})
        if task == "judge":
            item = self.judgements.pop(0) if self.judgements else judgement(50)
            if isinstance(item, Exception):
                raise item
            return json.dumps(item)
        raise AssertionError(f"unexpected task {task}")

    async def generate_image(self, task, prompt, images=(), *, model, options=None, timeout=None):
        self.calls.append((task, prompt))
        item = self.generations.pop(0) if self.generations else True
        if isinstance(item, Exception):
            raise item
        if item is None:
            return None
        self.generated += 1
        return ImageArtifact(data=f"candidate-{self.generated}".encode(), mime_type="image/png")

    def prompts(self, task: str) -> List[str]:
        return [p for t, p in self.calls if t == task]


def visual_for(score: float) -> float:
    """Judge visual score giving ``score`` overall with perfect text and identical DNA."""
    return (score - 60) / 0.4


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def reference() -> ImageArtifact:
    return ImageArtifact(data=FAKE_PNG, mime_type="image/png")
