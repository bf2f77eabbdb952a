"""Vision backend base class, data types, and factory."""

from __future__ import annotations

import json
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence, Union

from ..dates import parse_iso_date
from ..errors import AnalysisError, InvalidDateError

if TYPE_CHECKING:
    from ..config import AppConfig

ImageInput = Union[str, Path, bytes]

SYSTEM_INSTRUCTION = (
    "You are an expert OCR and object recognition system for food and "
    "household product inventory. Your task is to extract a product name "
    "and an expiry date from images. The expiry date must be returned in "
    "YYYY-MM-DD format. If a specific date is unclear, prioritize "
    "year-month (YYYY-MM-01). If no date is found, use the current date "
    "plus one year. Respond ONLY with a single JSON object of the form "
    '{"productName": "...", "expiryDate": "YYYY-MM-DD"}.'
)

DUAL_SHOT_PROMPT = (
    "Analyze the two images. Image 1 shows the product name/label. "
    "Image 2 shows the expiry date."
)

QUICK_SCAN_PROMPT = "Analyze this image and provide the product name and expiry date."


@dataclass
class ProductAnalysis:
    product_name: str
    expiry_date: str  # YYYY-MM-DD


class VisionBackend(ABC):
    """Abstract base for product/expiry extraction from photos."""

    @abstractmethod
    async def analyze(
        self, images: Sequence[ImageInput], prompt: str
    ) -> ProductAnalysis:
        """Extract the product name and expiry date from the images.

        Raises:
            AnalysisError: If the model call fails or the answer is unusable.
        """
        ...


def load_image(image: ImageInput) -> tuple[bytes, str]:
    """Return raw bytes and a MIME type for a path or an in-memory payload."""
    if isinstance(image, bytes):
        return image, "image/jpeg"
    path = Path(image)
    media_type = mimetypes.guess_type(str(path))[0] or "image/jpeg"
    return path.read_bytes(), media_type


def parse_analysis(text: str) -> ProductAnalysis:
    """Parse the JSON object a model returned.

    Raises:
        AnalysisError: If the text is not a JSON object with a product name
            and a valid expiry date.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)

    if not cleaned:
        raise AnalysisError("Empty response from AI")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"AI response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError(f"AI response is not an object: {data!r}")

    name = str(data.get("productName") or "").strip()
    expiry = data.get("expiryDate")
    if not name or not expiry:
        raise AnalysisError(f"AI response is missing fields: {data!r}")
    try:
        expiry_date = parse_iso_date(expiry)
    except InvalidDateError as e:
        raise AnalysisError(str(e)) from e

    return ProductAnalysis(product_name=name, expiry_date=expiry_date.isoformat())


def create_backend(config: AppConfig) -> VisionBackend:
    """Create a vision backend based on configuration."""
    backend_name = config.vision.backend

    match backend_name:
        case "gemini":
            from .gemini import GeminiVisionBackend

            return GeminiVisionBackend(
                api_key=config.vision.gemini.api_key,
                model=config.vision.gemini.model,
            )
        case "claude":
            from .claude import ClaudeVisionBackend

            return ClaudeVisionBackend(
                api_key=config.vision.claude.api_key,
                model=config.vision.claude.model,
            )
        case _:
            raise ValueError(
                f"Unknown vision backend: {backend_name!r} "
                f"(choose gemini or claude)"
            )
