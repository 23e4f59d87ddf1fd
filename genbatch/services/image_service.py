"""Image generation service.

Builds the provider payload from a validated request, performs the remote
call and stores every returned image next to the requested output path.
"""

from __future__ import annotations

import binascii
import logging
from pathlib import Path
from typing import Any

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.adapters.generation.minimax_client import IMAGE_GENERATION_ENDPOINT
from genbatch.core.errors import AppError, ProviderAppError
from genbatch.schemas.generation import ImageGenerationRequest
from genbatch.utils.file_store import (
    decode_base64_payload,
    indexed_filename,
    resolve_output_path,
    write_bytes,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "image-01"
STYLED_MODEL = "image-01-live"
DEFAULT_ASPECT_RATIO = "1:1"


def select_model(request: ImageGenerationRequest) -> str:
    return STYLED_MODEL if request.style is not None else DEFAULT_MODEL


def build_image_payload(request: ImageGenerationRequest) -> dict[str, Any]:
    """Translate a request into the provider's image_generation body.

    Custom size wins over aspect ratio. Subject reference only applies to
    the default model and style only to the styled one.
    """
    model = select_model(request)
    payload: dict[str, Any] = {
        "model": model,
        "prompt": request.prompt,
        "n": 1,
        "prompt_optimizer": True,
        "response_format": "url",
    }

    if request.custom_size is not None:
        payload["width"] = request.custom_size.width
        payload["height"] = request.custom_size.height
    else:
        payload["aspect_ratio"] = request.aspect_ratio or DEFAULT_ASPECT_RATIO

    if request.seed is not None:
        payload["seed"] = request.seed

    if model == DEFAULT_MODEL and request.subject_reference:
        payload["subject_reference"] = [
            {"type": "character", "image_file": request.subject_reference}
        ]
    elif model == STYLED_MODEL and request.style is not None:
        payload["style"] = {
            "style_type": request.style.style_type,
            "style_weight": request.style.style_weight,
        }

    return payload


class ImageGenerationService:
    """Generates images through a remote provider and saves them to disk."""

    def __init__(self, client: AbstractGenerationClient, output_dir: str | Path = ".") -> None:
        self.client = client
        self.output_dir = Path(output_dir)

    async def generate(self, request: ImageGenerationRequest) -> dict[str, Any]:
        """Run one generation call and persist the results.

        Args:
            request: Validated image request.

        Returns:
            dict with ``files``, ``count``, ``model``, ``prompt`` and, when some
            images could not be saved, ``warnings``.

        Raises:
            ValidationAppError: If ``output_file`` leaves the output directory.
            ProviderAppError: If the response contains no images.
            AppError: If none of the returned images could be saved, or the
                remote call itself failed.
        """
        target = resolve_output_path(request.output_file, self.output_dir)
        payload = build_image_payload(request)
        response = await self.client.post_json(IMAGE_GENERATION_ENDPOINT, payload)

        data = response.get("data") or {}
        image_urls: list[str] = data.get("image_urls") or []
        image_base64: list[str] = data.get("image_base64") or []
        if not image_urls and not image_base64:
            raise ProviderAppError(
                code="provider_empty_result",
                message="No images generated in API response",
            )

        sources = image_urls or image_base64
        saved: list[str] = []
        warnings: list[str] = []

        for index, source in enumerate(sources):
            path = indexed_filename(target, index, len(sources))
            try:
                if image_urls:
                    content = await self.client.download(source)
                else:
                    content = decode_base64_payload(source)
                await write_bytes(path, content)
            except (AppError, OSError, binascii.Error, ValueError) as exc:
                warnings.append(f"Image {index + 1}: {exc}")
                logger.warning(
                    "image.save_failed",
                    extra={"index": index + 1, "error_type": type(exc).__name__},
                )
                continue
            saved.append(str(path))

        if not saved:
            raise AppError(
                code="image_save_failed",
                message=f"Failed to save any images: {'; '.join(warnings)}",
            )

        result: dict[str, Any] = {
            "files": saved,
            "count": len(saved),
            "model": payload["model"],
            "prompt": request.prompt,
        }
        if warnings:
            result["warnings"] = warnings

        logger.info("image.generated", extra={"count": len(saved), "model": payload["model"]})
        return result
