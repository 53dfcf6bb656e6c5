"""
HuggingFaceVisionBackend: vision inference via Hugging Face Inference
Providers (chat completions with an inline base64 image).

Requires:
- HF_TOKEN env var (or an explicit token) with permissions to call
  Inference Providers.
Optionally:
- `hf_provider` selects a specific provider (e.g. "novita") or a routing
  policy ("auto").
"""

from __future__ import annotations

from huggingface_hub import AsyncInferenceClient

from .base_analyzer import DEFAULT_CALL_TIMEOUT_S, ImagePayload, VisionBackend


class HuggingFaceVisionBackend(VisionBackend):
    """
    Backed by a vision-language chat model, Qwen/Qwen2.5-VL-72B-Instruct by
    default.
    """

    name = "huggingface"
    MODEL_ID = "Qwen/Qwen2.5-VL-72B-Instruct"

    def __init__(
        self,
        token: str | None = None,
        model_id: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 800,
        hf_provider: str | None = None,
        timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        client: AsyncInferenceClient | None = None,
    ):
        super().__init__(timeout_s=timeout_s)
        self.model_id = model_id or self.MODEL_ID
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._owns_client = client is None
        self._client = client or AsyncInferenceClient(
            provider=hf_provider,
            api_key=token,
            timeout=timeout_s,
        )

    async def _call_api(self, prompt: str, image: ImagePayload | None, json_mode: bool) -> str:
        content: list[dict] = []
        if image is not None:
            content.append({"type": "image_url", "image_url": {"url": image.data_url()}})
        content.append({"type": "text", "text": prompt})

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        completion = await self._client.chat_completion(
            messages=[{"role": "user", "content": content}],
            model=self.model_id,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            **kwargs,
        )
        content_out = completion.choices[0].message.content
        return content_out if isinstance(content_out, str) else str(content_out or "")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
