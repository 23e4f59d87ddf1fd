"""Tests for image and speech generation services and request validation."""

from __future__ import annotations

import base64

import pytest
from pydantic import ValidationError

from genbatch.adapters.generation.minimax_client import (
    IMAGE_GENERATION_ENDPOINT,
    TEXT_TO_SPEECH_ENDPOINT,
)
from genbatch.core.errors import AppError, NetworkAppError, ProviderAppError, ValidationAppError
from genbatch.schemas.generation import ImageGenerationRequest, SpeechGenerationRequest
from genbatch.services.image_service import ImageGenerationService, build_image_payload
from genbatch.services.speech_service import SpeechGenerationService, build_speech_payload
from genbatch.utils.file_store import indexed_filename, resolve_output_path


class TestImagePayload:
    def test_defaults(self) -> None:
        payload = build_image_payload(ImageGenerationRequest(prompt="a cat", output_file="cat.png"))

        assert payload == {
            "model": "image-01",
            "prompt": "a cat",
            "n": 1,
            "prompt_optimizer": True,
            "response_format": "url",
            "aspect_ratio": "1:1",
        }

    def test_custom_size_replaces_aspect_ratio(self) -> None:
        request = ImageGenerationRequest(
            prompt="a cat",
            output_file="cat.png",
            aspect_ratio="16:9",
            custom_size={"width": 1024, "height": 768},
            seed=7,
        )

        payload = build_image_payload(request)

        assert payload["width"] == 1024
        assert payload["height"] == 768
        assert "aspect_ratio" not in payload
        assert payload["seed"] == 7

    def test_style_switches_model(self) -> None:
        request = ImageGenerationRequest(
            prompt="a cat",
            output_file="cat.png",
            style={"style_type": "水彩"},
        )

        payload = build_image_payload(request)

        assert payload["model"] == "image-01-live"
        assert payload["style"] == {"style_type": "水彩", "style_weight": 0.8}

    def test_subject_reference(self) -> None:
        request = ImageGenerationRequest(
            prompt="a cat",
            output_file="cat.png",
            subject_reference="https://example.com/face.jpg",
        )

        payload = build_image_payload(request)

        assert payload["subject_reference"] == [
            {"type": "character", "image_file": "https://example.com/face.jpg"}
        ]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"prompt": "x" * 1501},
            {"aspect_ratio": "5:4"},
            {"custom_size": {"width": 500, "height": 512}},
            {"custom_size": {"width": 1020, "height": 512}},
            {"style": {"style_type": "油画"}},
            {"style": {"style_type": "漫画"}, "custom_size": {"width": 512, "height": 512}},
            {"style": {"style_type": "漫画"}, "subject_reference": "https://example.com/a.jpg"},
        ],
    )
    def test_invalid_requests(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            ImageGenerationRequest(**{"prompt": "a cat", "output_file": "cat.png", **overrides})


class TestSpeechPayload:
    def test_defaults_omit_optional_sections(self) -> None:
        payload = build_speech_payload(SpeechGenerationRequest(text="hello", output_file="a.mp3"))

        assert payload == {
            "model": "speech-02-turbo",
            "text": "hello",
            "voice_setting": {
                "voice_id": "female-shaonv",
                "speed": 1.0,
                "vol": 1.0,
                "pitch": 0,
                "emotion": "neutral",
            },
            "audio_setting": {
                "sample_rate": 32000,
                "bitrate": 128000,
                "format": "mp3",
                "channel": 1,
            },
        }

    def test_high_quality_and_voice_modify(self) -> None:
        request = SpeechGenerationRequest(
            text="hello",
            output_file="a.wav",
            high_quality=True,
            format="wav",
            language_boost="English",
            timbre=-20,
            sound_effects="robotic",
        )

        payload = build_speech_payload(request)

        assert payload["model"] == "speech-02-hd"
        assert payload["language_boost"] == "English"
        assert payload["voice_modify"] == {"timbre": -20, "sound_effects": "robotic"}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"text": ""},
            {"text": "x" * 10001},
            {"speed": 2.5},
            {"volume": 0},
            {"pitch": 13},
            {"emotion": "bored"},
            {"format": "ogg"},
            {"sample_rate": 48000},
            {"bitrate": 100000},
            {"intensity": 101},
            {"sound_effects": "reverb"},
        ],
    )
    def test_invalid_requests(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            SpeechGenerationRequest(**{"text": "hello", "output_file": "a.mp3", **overrides})


class TestImageService:
    @pytest.mark.asyncio
    async def test_downloads_each_url_with_indexed_names(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(
            responses={
                IMAGE_GENERATION_ENDPOINT: {"data": {"image_urls": ["https://cdn/1", "https://cdn/2"]}},
            },
            downloads={"https://cdn/1": b"one", "https://cdn/2": b"two"},
        )
        service = ImageGenerationService(client, output_dir=tmp_path)

        result = await service.generate(ImageGenerationRequest(prompt="a cat", output_file="out/cat.png"))

        assert result["count"] == 2
        assert result["model"] == "image-01"
        assert result["prompt"] == "a cat"
        assert "warnings" not in result
        assert (tmp_path / "out" / "cat_01.png").read_bytes() == b"one"
        assert (tmp_path / "out" / "cat_02.png").read_bytes() == b"two"

    @pytest.mark.asyncio
    async def test_decodes_base64_images(self, tmp_path, make_fake_client) -> None:
        encoded = base64.b64encode(b"pixels").decode()
        client = make_fake_client(
            responses={
                IMAGE_GENERATION_ENDPOINT: {"data": {"image_base64": [f"data:image/png;base64,{encoded}"]}},
            },
        )
        service = ImageGenerationService(client, output_dir=tmp_path)

        result = await service.generate(ImageGenerationRequest(prompt="a cat", output_file="cat.png"))

        assert result["files"] == [str((tmp_path / "cat.png").resolve())]
        assert (tmp_path / "cat.png").read_bytes() == b"pixels"

    @pytest.mark.asyncio
    async def test_partial_failures_become_warnings(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(
            responses={
                IMAGE_GENERATION_ENDPOINT: {"data": {"image_urls": ["https://cdn/1", "https://cdn/2"]}},
            },
            downloads={
                "https://cdn/1": b"one",
                "https://cdn/2": NetworkAppError(code="network_error", message="Network connection failed"),
            },
        )
        service = ImageGenerationService(client, output_dir=tmp_path)

        result = await service.generate(ImageGenerationRequest(prompt="a cat", output_file="cat.png"))

        assert result["count"] == 1
        assert result["warnings"] == ["Image 2: Network connection failed"]

    @pytest.mark.asyncio
    async def test_all_saves_failing_is_an_error(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(
            responses={IMAGE_GENERATION_ENDPOINT: {"data": {"image_base64": ["not base64!"]}}},
        )
        service = ImageGenerationService(client, output_dir=tmp_path)

        with pytest.raises(AppError) as exc_info:
            await service.generate(ImageGenerationRequest(prompt="a cat", output_file="cat.png"))

        assert exc_info.value.code == "image_save_failed"

    @pytest.mark.asyncio
    async def test_empty_response_is_provider_error(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(responses={IMAGE_GENERATION_ENDPOINT: {"data": {}}})
        service = ImageGenerationService(client, output_dir=tmp_path)

        with pytest.raises(ProviderAppError):
            await service.generate(ImageGenerationRequest(prompt="a cat", output_file="cat.png"))


class TestSpeechService:
    @pytest.mark.asyncio
    async def test_writes_hex_audio(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(
            responses={TEXT_TO_SPEECH_ENDPOINT: {"data": {"audio": b"ID3audio".hex(), "duration": 1200}}},
        )
        service = SpeechGenerationService(client, output_dir=tmp_path)

        result = await service.generate(SpeechGenerationRequest(text="hello", output_file="hello.mp3"))

        assert (tmp_path / "hello.mp3").read_bytes() == b"ID3audio"
        assert result == {
            "audio_file": str((tmp_path / "hello.mp3").resolve()),
            "voice_used": "female-shaonv",
            "model": "speech-02-turbo",
            "duration": 1200,
            "format": "mp3",
            "sample_rate": 32000,
            "bitrate": 128000,
        }

    @pytest.mark.asyncio
    async def test_missing_audio_is_provider_error(self, tmp_path, make_fake_client) -> None:
        client = make_fake_client(responses={TEXT_TO_SPEECH_ENDPOINT: {"data": {}}})
        service = SpeechGenerationService(client, output_dir=tmp_path)

        with pytest.raises(ProviderAppError) as exc_info:
            await service.generate(SpeechGenerationRequest(text="hello", output_file="a.mp3"))

        assert exc_info.value.code == "provider_empty_result"


def test_indexed_filename(tmp_path) -> None:
    base = tmp_path / "cat.png"

    assert indexed_filename(base, 0, 1) == base
    assert indexed_filename(base, 2, 3) == tmp_path / "cat_03.png"


def test_resolve_output_path_accepts_paths_inside_output_dir(tmp_path) -> None:
    inside = tmp_path / "speech" / "x.mp3"

    assert resolve_output_path(str(inside), tmp_path) == inside.resolve()
    assert resolve_output_path("speech/../y.mp3", tmp_path) == (tmp_path / "y.mp3").resolve()


@pytest.mark.parametrize("output_file", ["../escaped.mp3", "/tmp/elsewhere.mp3", ".", ""])
def test_resolve_output_path_rejects_paths_leaving_output_dir(tmp_path, output_file) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        resolve_output_path(output_file, tmp_path / "out")

    assert exc_info.value.code == "invalid_output_path"


def test_resolve_output_path_rejects_symlink_out_of_output_dir(tmp_path) -> None:
    out = tmp_path / "out"
    out.mkdir()
    (out / "link").symlink_to(tmp_path)

    with pytest.raises(ValidationAppError):
        resolve_output_path("link/escaped.mp3", out)


@pytest.mark.asyncio
async def test_speech_refuses_to_write_outside_output_dir(tmp_path, make_fake_client) -> None:
    client = make_fake_client(
        responses={TEXT_TO_SPEECH_ENDPOINT: {"data": {"audio": b"ID3audio".hex(), "duration": 1}}},
    )
    out = tmp_path / "out"
    service = SpeechGenerationService(client, output_dir=out)

    with pytest.raises(ValidationAppError):
        await service.generate(SpeechGenerationRequest(text="hi", output_file="../escaped.mp3"))

    assert not (tmp_path / "escaped.mp3").exists()
    assert client.calls == []


@pytest.mark.asyncio
async def test_image_refuses_to_write_outside_output_dir(tmp_path, make_fake_client) -> None:
    client = make_fake_client(
        responses={IMAGE_GENERATION_ENDPOINT: {"data": {"image_base64": ["aGVsbG8="]}}},
    )
    service = ImageGenerationService(client, output_dir=tmp_path / "out")

    with pytest.raises(ValidationAppError):
        await service.generate(ImageGenerationRequest(prompt="a cat", output_file=str(tmp_path / "cat.png")))

    assert not (tmp_path / "cat.png").exists()
    assert client.calls == []
