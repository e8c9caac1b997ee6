"""
Common OBS input and filter kinds.

The settings shapes are descriptive only; OBS accepts partial settings and the
reconciler never validates them.
"""

from __future__ import annotations

from typing import List, TypedDict

from .declarations import FilterType, InputType


class BrowserSourceSettings(TypedDict, total=False):
    url: str
    width: int
    height: int
    fps: int
    fps_custom: bool
    css: str
    is_local_file: bool
    local_file: str
    reroute_audio: bool
    shutdown: bool
    restart_when_active: bool


class ColorSourceSettings(TypedDict, total=False):
    color: int
    width: int
    height: int


class ImageSourceSettings(TypedDict, total=False):
    file: str
    unload: bool
    linear_alpha: bool


class TextFont(TypedDict, total=False):
    face: str
    size: int
    style: str
    flags: int


class FreetypeTextSettings(TypedDict, total=False):
    text: str
    font: TextFont
    color1: int
    color2: int
    outline: bool
    drop_shadow: bool
    word_wrap: bool
    from_file: bool
    text_file: str


class GDIPlusTextSettings(TypedDict, total=False):
    text: str
    font: TextFont
    color: int
    opacity: int
    align: str
    valign: str
    outline: bool
    extents: bool
    extents_cx: int
    extents_cy: int


class MediaSourceSettings(TypedDict, total=False):
    local_file: str
    is_local_file: bool
    input: str
    looping: bool
    restart_on_activate: bool
    clear_on_media_end: bool
    close_when_inactive: bool
    hw_decode: bool
    speed_percent: int


class ColorCorrectionSettings(TypedDict, total=False):
    gamma: float
    contrast: float
    brightness: float
    saturation: float
    hue_shift: float
    opacity: float
    color_add: int
    color_multiply: int


class ChromaKeySettings(TypedDict, total=False):
    key_color_type: str
    key_color: int
    similarity: int
    smoothness: int
    spill: int
    opacity: float


class CropPadSettings(TypedDict, total=False):
    left: int
    right: int
    top: int
    bottom: int
    relative: bool


class SharpnessSettings(TypedDict, total=False):
    sharpness: float


class GainSettings(TypedDict, total=False):
    db: float


class CompressorSettings(TypedDict, total=False):
    ratio: float
    threshold: float
    attack_time: int
    release_time: int
    output_gain: float
    sidechain_source: str


BROWSER_SOURCE: InputType[BrowserSourceSettings] = InputType("browser_source", BrowserSourceSettings)
COLOR_SOURCE: InputType[ColorSourceSettings] = InputType("color_source_v3", ColorSourceSettings)
IMAGE_SOURCE: InputType[ImageSourceSettings] = InputType("image_source", ImageSourceSettings)
FREETYPE_TEXT: InputType[FreetypeTextSettings] = InputType("text_ft2_source_v2", FreetypeTextSettings)
GDIPLUS_TEXT: InputType[GDIPlusTextSettings] = InputType("text_gdiplus_v2", GDIPlusTextSettings)
MEDIA_SOURCE: InputType[MediaSourceSettings] = InputType("ffmpeg_source", MediaSourceSettings)

COLOR_CORRECTION: FilterType[ColorCorrectionSettings] = FilterType("color_filter_v2", ColorCorrectionSettings)
CHROMA_KEY: FilterType[ChromaKeySettings] = FilterType("chroma_key_filter_v2", ChromaKeySettings)
CROP_PAD: FilterType[CropPadSettings] = FilterType("crop_filter", CropPadSettings)
SHARPNESS: FilterType[SharpnessSettings] = FilterType("sharpness_filter_v2", SharpnessSettings)
GAIN: FilterType[GainSettings] = FilterType("gain_filter", GainSettings)
COMPRESSOR: FilterType[CompressorSettings] = FilterType("compressor_filter", CompressorSettings)

INPUT_TYPES: List[InputType] = [
    BROWSER_SOURCE,
    COLOR_SOURCE,
    IMAGE_SOURCE,
    FREETYPE_TEXT,
    GDIPLUS_TEXT,
    MEDIA_SOURCE,
]

FILTER_TYPES: List[FilterType] = [
    COLOR_CORRECTION,
    CHROMA_KEY,
    CROP_PAD,
    SHARPNESS,
    GAIN,
    COMPRESSOR,
]


def input_type(kind: str) -> InputType:
    """The catalogued input type for ``kind``, or an untyped one."""

    for candidate in INPUT_TYPES:
        if candidate.kind == kind:
            return candidate
    return InputType(kind)


def filter_type(kind: str) -> FilterType:
    for candidate in FILTER_TYPES:
        if candidate.kind == kind:
            return candidate
    return FilterType(kind)
