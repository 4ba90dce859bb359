from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class UploadedFile:
    """A multipart upload spooled to disk for the duration of one request."""

    path: Path
    original_name: str
    size_bytes: int


@dataclass(frozen=True)
class ProducedArtifact:
    """One output file produced by a document operation."""

    path: Path
    suggested_name: str


class CompressionQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WatermarkPosition(str, Enum):
    CENTER = "center"
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


class PageSize(str, Enum):
    A4 = "A4"
    LETTER = "Letter"
    FIT = "fit"


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class ImageFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    message: str


class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    success: bool
    token: str


class TogglePriorityRequest(BaseModel):
    enabled: bool


class AdminStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_count: int = Field(alias="requestCount")
    priority_mode: bool = Field(alias="priorityMode")


class TogglePriorityResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    priority_mode: bool = Field(alias="priorityMode")
