"""Gemini API vision backend for product and expiry extraction."""

from __future__ import annotations

import logging
from typing import Sequence

from ..errors import AnalysisError
from . import SYSTEM_INSTRUCTION, ImageInput, ProductAnalysis, VisionBackend, load_image, parse_analysis

logger = logging.getLogger(__name__)


class GeminiVisionBackend(VisionBackend):
    """Read product labels using Google Gemini's vision capability."""

    def __init__(self, api_key: str = "", model: str = "gemini-2.5-flash") -> None:
        self._api_key = api_key
        self._model = model

    async def analyze(
        self, images: Sequence[ImageInput], prompt: str
    ) -> ProductAnalysis:
        if not self._api_key:
            raise ValueError(
                "Gemini API key is not set. "
                "Check the config file or the GEMINI_API_KEY environment variable."
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "google-generativeai SDK is required: pip install google-generativeai"
            ) from None

        genai.configure(api_key=self._api_key)
        model = genai.GenerativeModel(
            self._model,
            system_instruction=SYSTEM_INSTRUCTION,
            generation_config={"response_mime_type": "application/json"},
        )

        parts: list = [prompt]
        for image in images:
            data, media_type = load_image(image)
            parts.append({"mime_type": media_type, "data": data})

        try:
            response = await model.generate_content_async(parts)
            text = response.text
        except Exception as e:
            logger.error("Gemini API error: %s", e)
            raise AnalysisError("Failed to analyze images. Please try again.") from e

        return parse_analysis(text or "")
