"""
Shared building blocks for the external-AI analyzers.

Defines:
- ImagePayload: the in-memory evidence image handed to vision backends.
- VisionBackend: abstract "can run vision inference" capability. Subclasses
  implement `_call_api` to hit a specific model endpoint; the base class
  enforces the per-call timeout and rejects empty completions.
- JSON extraction helpers used by the analyzers' parse ladders.
"""

from __future__ import annotations

import asyncio
import base64
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


DEFAULT_CALL_TIMEOUT_S = 10.0


class BackendError(RuntimeError):
    """Raised when a vision backend cannot produce any text."""


# ---------------------------------------------------------------------------
# Image payload
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImagePayload:
    """Raw evidence image bytes plus MIME type. Never persisted."""

    data: bytes = field(repr=False)
    mime_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def __len__(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Vision inference capability
# ---------------------------------------------------------------------------

class VisionBackend(ABC):
    """
    Abstract vision-language model client.

    `generate` is what analyzers call. It bounds every request with
    `timeout_s` so a stalled provider degrades the calling branch instead of
    hanging the whole pipeline.
    """

    name = "vision"

    def __init__(self, timeout_s: float = DEFAULT_CALL_TIMEOUT_S):
        self.timeout_s = timeout_s

    async def generate(
        self,
        prompt: str,
        image: ImagePayload | None = None,
        *,
        json_mode: bool = False,
    ) -> str:
        raw = await asyncio.wait_for(
            self._call_api(prompt=prompt, image=image, json_mode=json_mode),
            timeout=self.timeout_s,
        )
        if raw is None or not str(raw).strip():
            raise BackendError(f"{self.name} returned no text")
        return str(raw)

    async def aclose(self) -> None:
        """Release provider resources; the default backend holds none."""

    @abstractmethod
    async def _call_api(self, prompt: str, image: ImagePayload | None, json_mode: bool) -> str:
        """
        Call the model endpoint and return the raw completion text.
        Must be implemented by each provider-specific subclass.
        """
        ...


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_fences(text: str) -> str:
    """Remove markdown code fences around a model response."""
    return _FENCE_RE.sub("", text).strip()


def parse_json_object(text: str) -> dict:
    """Strict parse; raises ValueError unless the text is a single JSON object."""
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def find_balanced_object(text: str) -> str | None:
    """
    Return the first balanced `{...}` span in `text`, or None.

    Braces inside string literals are ignored so a justification containing
    "{" or "}" does not cut the object short.
    """
    start = text.find("{")
    if start == -1:
        return None

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
                return text[start:i + 1]
    return None


_DANGLING_TAIL_RE = re.compile(r'(,\s*("[^"]*"\s*:?\s*)?|"[^"]*"\s*:\s*)$')
_CLOSERS = {"{": "}", "[": "]"}


def salvage_truncated_object(text: str) -> str | None:
    """
    Best-effort repair of an object whose tail was cut off.

    Takes everything from the first `{`, closes an open string literal,
    drops a dangling comma or key, and appends the missing closing
    brackets. Returns None when there is no `{` at all.
    """
    start = text.find("{")
    if start == -1:
        return None
    fragment = text[start:].rstrip()

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in fragment:
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
        elif ch in "}]" and stack:
            stack.pop()

    if in_string:
        if escaped:
            fragment = fragment[:-1]
        fragment += '"'
    fragment = _DANGLING_TAIL_RE.sub("", fragment.rstrip())
    if not stack:
        stack.append("}")
    return fragment + "".join(reversed(stack))
