"""Claude API vision backend for product and expiry extraction."""

from __future__ import annotations

import base64
import logging
from typing import Sequence

from ..errors import AnalysisError
from . import SYSTEM_INSTRUCTION, ImageInput, ProductAnalysis, VisionBackend, load_image, parse_analysis

logger = logging.getLogger(__name__)


class ClaudeVisionBackend(VisionBackend):
    """Read product labels using Claude's vision capability."""

    def __init__(self, api_key: str = "", model: str = "claude-sonnet-4-5-20250929") -> None:
        self._api_key = api_key
        self._model = model

    async def analyze(
        self, images: Sequence[ImageInput], prompt: str
    ) -> ProductAnalysis:
        if not self._api_key:
            raise ValueError(
                "Anthropic API key is not set. "
                "Check the config file or the ANTHROPIC_API_KEY environment variable."
            )

        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic SDK is required: pip install anthropic"
            ) from None

        content: list[dict] = []
        for image in images:
            data, media_type = load_image(image)
            content.append(
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": media_type,
                        "data": base64.standard_b64encode(data).decode(),
                    },
                }
            )
        content.append({"type": "text", "text": prompt})

        client = anthropic.AsyncAnthropic(api_key=self._api_key)
        try:
            response = await client.messages.create(
                model=self._model,
                max_tokens=1024,
                system=SYSTEM_INSTRUCTION,
                messages=[{"role": "user", "content": content}],
            )
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            raise AnalysisError("Failed to analyze images. Please try again.") from e

        return parse_analysis(response.content[0].text)
