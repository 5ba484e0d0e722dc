from __future__ import annotations

import base64
from types import SimpleNamespace

import pytest

from typoforge.config import Settings
from typoforge.errors import MissingCredentialError
from typoforge.llm.gemini import create_backend, extract_json, first_image_bytes, first_text
from typoforge.llm.placeholder import PlaceholderBackend


def test_extract_json_from_fence():
    text = 'Here you go:\n```json\n{"similarityScore": 80, "critique": "ok"}\n```\nthanks'
    assert extract_json(text) == {"similarityScore": 80, "critique": "ok"}


def test_extract_json_from_prose():
    text = 'Sure! {"a": {"b": [1, 2]}, "c": "brace } in string"} trailing words'
    assert extract_json(text) == {"a": {"b": [1, 2]}, "c": "brace } in string"}


def test_extract_json_skips_unparseable_candidates():
    assert extract_json('{not json} then {"ok": true}') == {"ok": True}


@pytest.mark.parametrize("text", ["", "no braces here", "[1, 2, 3]", "{broken"])
def test_extract_json_none(text):
    assert extract_json(text) is None


def _resp(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def test_first_image_bytes_raw_and_base64():
    raw = _resp(SimpleNamespace(text="caption", inline_data=None),
                SimpleNamespace(inline_data=SimpleNamespace(data=b"PNG", mime_type="image/png")))
    assert first_image_bytes(raw) == (b"PNG", "image/png")
    encoded = _resp(SimpleNamespace(inline_data=SimpleNamespace(data=base64.b64encode(b"JPG").decode(), mime_type="image/jpeg")))
    assert first_image_bytes(encoded) == (b"JPG", "image/jpeg")
    assert first_image_bytes(_resp(SimpleNamespace(text="no image"))) == (None, "")


def test_first_text_falls_back_to_parts():
    resp = _resp(SimpleNamespace(text="hello"))
    assert first_text(resp) == "hello"


def test_create_backend_requires_key_unless_offline():
    with pytest.raises(MissingCredentialError):
        create_backend(Settings(api_key=None))
    assert isinstance(create_backend(Settings(api_key=None, offline=True)), PlaceholderBackend)
