"""Text-to-speech service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.adapters.generation.minimax_client import TEXT_TO_SPEECH_ENDPOINT
from genbatch.core.errors import ProviderAppError
from genbatch.schemas.generation import SpeechGenerationRequest
from genbatch.utils.file_store import resolve_output_path, write_bytes

logger = logging.getLogger(__name__)

HD_MODEL = "speech-02-hd"
TURBO_MODEL = "speech-02-turbo"
AUDIO_CHANNELS = 1


def select_model(request: SpeechGenerationRequest) -> str:
    return HD_MODEL if request.high_quality else TURBO_MODEL


def build_speech_payload(request: SpeechGenerationRequest) -> dict[str, Any]:
    """Translate a request into the provider's t2a_v2 body; unset options are omitted."""
    payload: dict[str, Any] = {
        "model": select_model(request),
        "text": request.text,
        "voice_setting": {
            "voice_id": request.voice_id,
            "speed": request.speed,
            "vol": request.volume,
            "pitch": request.pitch,
            "emotion": request.emotion,
        },
        "audio_setting": {
            "sample_rate": request.sample_rate,
            "bitrate": request.bitrate,
            "format": request.format,
            "channel": AUDIO_CHANNELS,
        },
    }

    if request.language_boost:
        payload["language_boost"] = request.language_boost

    voice_modify = {
        key: value
        for key, value in (
            ("intensity", request.intensity),
            ("timbre", request.timbre),
            ("sound_effects", request.sound_effects),
        )
        if value is not None
    }
    if voice_modify:
        payload["voice_modify"] = voice_modify

    return payload


class SpeechGenerationService:
    """Synthesizes speech through a remote provider and writes the audio file."""

    def __init__(self, client: AbstractGenerationClient, output_dir: str | Path = ".") -> None:
        self.client = client
        self.output_dir = Path(output_dir)

    async def generate(self, request: SpeechGenerationRequest) -> dict[str, Any]:
        """Run one synthesis call and save the audio.

        Args:
            request: Validated speech request.

        Returns:
            dict with ``audio_file``, ``voice_used``, ``model``, ``duration``,
            ``format``, ``sample_rate`` and ``bitrate``.

        Raises:
            ProviderAppError: If the response carries no audio or it is not hex.
            ValidationAppError: If ``output_file`` leaves the output directory.
        """
        path = resolve_output_path(request.output_file, self.output_dir)
        payload = build_speech_payload(request)
        response = await self.client.post_json(TEXT_TO_SPEECH_ENDPOINT, payload)

        data = response.get("data") or {}
        audio_hex = data.get("audio")
        if not audio_hex:
            raise ProviderAppError(
                code="provider_empty_result",
                message="No audio data received from API",
            )
        try:
            audio = bytes.fromhex(audio_hex)
        except ValueError as exc:
            raise ProviderAppError(
                code="provider_invalid_audio",
                message="Audio data is not valid hex",
            ) from exc

        await write_bytes(path, audio)

        logger.info(
            "speech.generated",
            extra={"model": payload["model"], "bytes": len(audio)},
        )
        return {
            "audio_file": str(path),
            "voice_used": request.voice_id,
            "model": payload["model"],
            "duration": data.get("duration"),
            "format": request.format,
            "sample_rate": request.sample_rate,
            "bitrate": request.bitrate,
        }
