from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..config import ImageOptions, Settings
from ..errors import MissingCredentialError
from ..state import ImageArtifact

logger = logging.getLogger(__name__)


class ModelBackend(Protocol):
    """The two capabilities the forge loop needs from a model provider.

    ``task`` names the call site ("dna", "describe", "judge", "generate",
    "recolor", ...); it is used for logging and by the offline backend.
    """

    async def complete(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        timeout: Optional[float] = None,
    ) -> str: ...

    async def generate_image(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        options: Optional[ImageOptions] = None,
        timeout: Optional[float] = None,
    ) -> Optional[ImageArtifact]: ...


def create_backend(settings: Settings) -> ModelBackend:
    """Real Gemini backend, or the offline placeholder when explicitly requested."""
    if settings.offline:
        from .placeholder import PlaceholderBackend

        return PlaceholderBackend()
    if not settings.api_key:
        raise MissingCredentialError("GEMINI_API_KEY is not set (or ~/.config/gemini/api_key is missing)")
    return GeminiBackend(api_key=settings.api_key, timeout=settings.timeout)


class GeminiBackend:
    def __init__(self, api_key: str, timeout: float = 180.0) -> None:
        if not api_key:
            raise MissingCredentialError("GEMINI_API_KEY is not set")
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        self._genai = genai
        self.timeout = timeout

    def _model(self, name: str) -> Any:
        return self._genai.GenerativeModel(model_name=name)

    async def complete(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        timeout: Optional[float] = None,
    ) -> str:
        parts: List[Any] = [im.as_part() for im in images]
        parts.append({"text": prompt})
        logger.debug("%s: %s with %d image(s)", task, model, len(images))
        resp = await self._model(model).generate_content_async(
            parts, request_options={"timeout": timeout or self.timeout}
        )
        return first_text(resp)

    async def generate_image(
        self,
        task: str,
        prompt: str,
        images: Sequence[ImageArtifact] = (),
        *,
        model: str,
        options: Optional[ImageOptions] = None,
        timeout: Optional[float] = None,
    ) -> Optional[ImageArtifact]:
        options = options or ImageOptions()
        parts: List[Any] = [im.as_part() for im in images]
        parts.append({"text": f"{prompt}\n\nOutput: aspect ratio {options.aspect_ratio}, {options.image_size} resolution."})
        logger.debug("%s: %s with %d image(s)", task, model, len(images))
        resp = await self._model(model).generate_content_async(
            parts, request_options={"timeout": timeout or self.timeout}
        )
        img_bytes, mime = first_image_bytes(resp)
        if not img_bytes:
            logger.warning("%s: image model returned no image (%s)", task, first_text(resp)[:200])
            return None
        return ImageArtifact(data=img_bytes, mime_type=mime or "image/png", meta={"source": "gemini", "model": model})


def first_text(resp: Any) -> str:
    # resp.text raises when the first candidate holds no text part
    try:
        text = resp.text
        if text:
            return text
    except (AttributeError, ValueError):
        pass
    for cand in getattr(resp, "candidates", None) or []:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                return part.text
    return ""


def first_image_bytes(resp: Any) -> tuple[bytes | None, str]:
    """Walk candidates[].content.parts[] and return the first inline image."""
    for cand in getattr(resp, "candidates", None) or []:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if not inline or not getattr(inline, "data", None):
                continue
            data = inline.data
            mime = getattr(inline, "mime_type", "") or "image/png"
            if isinstance(data, bytes):
                return data, mime
            # some versions may base64-encode
            try:
                return base64.b64decode(data), mime
            except (ValueError, TypeError):
                continue
    return None, ""


_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def _balanced_objects(text: str):
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : i + 1]
                    break
        start = text.find("{", start + 1)


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced ``{...}`` object in ``text`` that parses.

    Code fences are searched first, then the raw text; ``None`` when
    nothing parses.
    """
    if not text:
        return None
    candidates = [m.group(1) for m in _FENCE.finditer(text)] + [text]
    for chunk in candidates:
        for blob in _balanced_objects(chunk):
            try:
                data = json.loads(blob)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data
    return None
