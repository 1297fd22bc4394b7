"""
Generative-text service backed by Google Gemini.

`generate()` returns a whole response; `generate_stream()` yields text chunks
as they arrive. Each call to `generate_stream()` issues a new request, so a
consumed stream cannot be replayed.

Model output that should be JSON is parsed with `parse_json_response`, which
tolerates markdown code fences and surrounding prose.
"""

import io
import json
import logging
import re
from typing import Any, Iterator

from google import genai
from PIL import Image

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_p": 1,
    "top_k": 1,
    "max_output_tokens": 2048,
    "safety_settings": [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    ],
}


class GenerationError(Exception):
    """The generative-text service could not produce a response."""


class MalformedResponseError(GenerationError):
    """The service answered, but not with the JSON that was asked for."""


class TextService:
    def generate(self, prompt: str) -> str:
        raise NotImplementedError

    def generate_stream(self, prompt: str, image: Image.Image | None = None) -> Iterator[str]:
        raise NotImplementedError


class GeminiTextService(TextService):
    def __init__(self, api_key: str | None = None, model: str = DEFAULT_MODEL, client=None):
        self.model = model
        self.api_key = api_key
        self._client = client

    @property
    def client(self):
        # created on first use so the app can start without an API key
        if self._client is None:
            try:
                self._client = genai.Client(api_key=self.api_key)
            except ValueError as e:
                raise GenerationError(f"Gemini client unavailable: {e}") from e
        return self._client

    def generate(self, prompt):
        try:
            resp = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=GENERATION_CONFIG,
            )
        except Exception as e:
            raise GenerationError(f"Gemini request failed: {e}") from e
        return (getattr(resp, "text", None) or "").strip()

    def generate_stream(self, prompt, image=None):
        contents: list[Any] = [prompt]
        if image is not None:
            contents.append(image)
        try:
            for chunk in self.client.models.generate_content_stream(
                model=self.model,
                contents=contents,
                config=GENERATION_CONFIG,
            ):
                text = getattr(chunk, "text", None)
                if text:
                    yield text
        except Exception as e:
            raise GenerationError(f"Gemini stream failed: {e}") from e


# ============================================================================
# JSON RESPONSES
# ============================================================================

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?|\n?\s*```\s*$")


def strip_code_fences(raw: str) -> str:
    """Remove a ```json ... ``` (or bare ```) wrapper around a response."""
    return _FENCE_RE.sub("", (raw or "").strip()).strip()


_CLOSERS = {"{": "}", "[": "]"}


def _balanced_from(s: str, start: int) -> str | None:
    """The bracketed substring opening at `start`, or None if it never closes."""
    stack = []
    in_string = False
    escaped = False
    for i in range(start, len(s)):
        ch = s[i]
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "]}":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return s[start:i + 1]
    return None


def extract_json_fragment(s: str) -> Any:
    """Parse the first balanced {...} or [...] in `s` that is valid JSON."""
    for i, ch in enumerate(s):
        if ch not in _CLOSERS:
            continue
        candidate = _balanced_from(s, i)
        if candidate is None:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise MalformedResponseError(f"No JSON found in response: {s[:100]!r}")


def parse_json_response(raw: str) -> Any:
    """Parse JSON returned by the model, with fence stripping and fragment recovery."""
    text = strip_code_fences(raw)
    if not text:
        raise MalformedResponseError("Empty response")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Response is not plain JSON; looking for a JSON fragment")
    return extract_json_fragment(text)


def load_image(data: bytes) -> Image.Image:
    """Decode uploaded image bytes for inline use in a prompt."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Unsupported image: {e}") from e
    return img
