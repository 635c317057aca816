"""Vision analysis adapter (OpenAI chat completions with an image)."""

from __future__ import annotations

from typing import Any

import openai

from constants import VISION_MAX_OUTPUT_TOKENS
from errors import VisionError
from observability.logger import log_event, preview


VISION_PROMPT = (
    "A child is showing something to their AI companion Appu. Describe what you "
    "see in this image in a child-friendly way. Focus on objects, toys, drawings, "
    "books, or anything the child might be proudly showing off. Be specific about "
    "colors, shapes and details that would help Appu respond enthusiastically."
)


class OpenAIVisionAnalyzer:
    """
    Concrete VisionAnalyzer.

    Adapter is responsible ONLY for:
    - Sending one JPEG frame + request context to the model
    - Returning the description text

    Adapter does NOT:
    - Capture frames
    - Retry
    - Decide what the tool replies on failure (VisionTool does)
    """

    def __init__(
        self,
        *,
        client: Any,  # Type: openai.AsyncOpenAI
        model: str,
        max_tokens: int = VISION_MAX_OUTPUT_TOKENS,
    ) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    async def analyze_frame(self, frame_b64: str, context: str) -> str:
        """
        Raises:
            VisionError: request failed or returned no text.
        """
        prompt = f"{VISION_PROMPT}\n\n{context}" if context else VISION_PROMPT
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{frame_b64}"},
                        },
                    ],
                }],
                max_tokens=self._max_tokens,
                temperature=0.7,
            )
        except openai.OpenAIError as exc:
            raise VisionError(f"vision request failed: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None
        if not text:
            raise VisionError("vision response had no text")

        log_event({
            "level": "DEBUG",
            "event_type": "vision_response",
            "model": self._model,
            "analysis_preview": preview(text, limit=100),
        })
        return text
