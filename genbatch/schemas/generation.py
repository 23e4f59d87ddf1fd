"""Pydantic request models for image and speech generation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

AspectRatio = Literal["1:1", "16:9", "4:3", "3:2", "2:3", "3:4", "9:16", "21:9"]
StyleType = Literal["漫画", "元气", "中世纪", "水彩"]
Emotion = Literal["neutral", "happy", "sad", "angry", "fearful", "disgusted", "surprised"]
AudioFormat = Literal["mp3", "wav", "flac", "pcm"]
SampleRate = Literal[8000, 16000, 22050, 24000, 32000, 44100]
Bitrate = Literal[64000, 96000, 128000, 160000, 192000, 224000, 256000, 320000]
SoundEffect = Literal["spacious_echo", "auditorium_echo", "lofi_telephone", "robotic"]


class CustomSize(BaseModel):
    """Explicit output dimensions in pixels (multiples of 8)."""

    width: int = Field(..., ge=512, le=2048, multiple_of=8)
    height: int = Field(..., ge=512, le=2048, multiple_of=8)


class ImageStyle(BaseModel):
    style_type: StyleType = Field(..., description="Art style applied by image-01-live.")
    style_weight: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="Style strength in (0, 1].",
    )


class ImageGenerationRequest(BaseModel):
    """Parameters for one image generation call."""

    prompt: str = Field(..., min_length=1, max_length=1500)
    output_file: str = Field(
        ...,
        min_length=1,
        description="Target path; relative paths resolve against APP_OUTPUT_DIR.",
    )
    aspect_ratio: AspectRatio | None = Field(
        default=None,
        description="Ignored when custom_size is given. Defaults to 1:1.",
    )
    custom_size: CustomSize | None = None
    seed: int | None = Field(default=None, ge=0)
    subject_reference: str | None = Field(
        default=None,
        description="Character reference image URL or data URI (image-01 only).",
    )
    style: ImageStyle | None = None

    @model_validator(mode="after")
    def _check_style_combination(self) -> "ImageGenerationRequest":
        if self.style is not None and (
            self.custom_size is not None or self.subject_reference is not None
        ):
            raise ValueError(
                "style cannot be combined with custom_size or subject_reference"
            )
        return self


class SpeechGenerationRequest(BaseModel):
    """Parameters for one text-to-speech call."""

    text: str = Field(..., min_length=1, max_length=10000)
    output_file: str = Field(
        ...,
        min_length=1,
        description="Target path; relative paths resolve against APP_OUTPUT_DIR.",
    )
    high_quality: bool = Field(
        default=False,
        description="Use speech-02-hd instead of speech-02-turbo.",
    )
    voice_id: str = Field(default="female-shaonv", min_length=1)
    speed: float = Field(default=1.0, ge=0.5, le=2.0)
    volume: float = Field(default=1.0, ge=0.1, le=10.0)
    pitch: int = Field(default=0, ge=-12, le=12)
    emotion: Emotion = "neutral"
    format: AudioFormat = "mp3"
    sample_rate: SampleRate = 32000
    bitrate: Bitrate = 128000
    language_boost: str | None = Field(
        default=None,
        description="Language/dialect hint, e.g. 'English' or 'auto'.",
    )
    intensity: int | None = Field(default=None, ge=-100, le=100)
    timbre: int | None = Field(default=None, ge=-100, le=100)
    sound_effects: SoundEffect | None = None
