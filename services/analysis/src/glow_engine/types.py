"""
Core types for the analysis engine.

Provides the image handle passed in by callers and the score result models
handed back to them.
"""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, ClassVar, List, Optional, Tuple, Union

from pydantic import BeforeValidator, Field, computed_field

from glow_common.schemas import GlowModel

SCORE_MIN = 1
SCORE_MAX = 100


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding; scores must not depend on that.
    """
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def clamp_score(value: Any) -> int:
    """Coerce a numeric value to an integer score in [1, 100]."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"score must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"score must be numeric, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"score must be finite, got {number!r}")
    return max(SCORE_MIN, min(SCORE_MAX, round_half_up(number)))


Score = Annotated[int, BeforeValidator(clamp_score)]


class AnalysisKind(str, Enum):
    """Operation kinds; also the suffix of result cache keys."""

    FACE = "face"
    OUTFIT = "outfit"


class ResultSource(str, Enum):
    """Where the numbers in a result came from."""

    ANNOTATION = "annotation"
    GENERATIVE = "generative"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ImageRef:
    """Immutable handle to raw image bytes owned by the caller."""

    data: bytes
    mime_type: str = "image/jpeg"

    def __post_init__(self) -> None:
        if not isinstance(self.data, (bytes, bytearray, memoryview)):
            raise TypeError("ImageRef data must be bytes")
        object.__setattr__(self, "data", bytes(self.data))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageRef":
        path = Path(path)
        suffix = path.suffix.lower().lstrip(".")
        mime = {"png": "image/png", "webp": "image/webp", "heic": "image/heic"}.get(
            suffix, "image/jpeg"
        )
        return cls(path.read_bytes(), mime)

    @classmethod
    def from_base64(cls, encoded: str) -> "ImageRef":
        """Decode base64 text; ``data:`` URIs are accepted."""
        mime = "image/jpeg"
        if encoded.startswith("data:") and "," in encoded:
            header, encoded = encoded.split(",", 1)
            mime = header[5:].split(";", 1)[0] or mime
        return cls(base64.b64decode(encoded), mime)

    def encoded(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.encoded()}"

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"ImageRef({len(self.data)} bytes, {self.mime_type})"


class ScoreResult(GlowModel):
    """Fields shared by every analysis result."""

    SCORE_FIELDS: ClassVar[Tuple[str, ...]] = ("overall",)

    fingerprint: str
    kind: AnalysisKind
    source: ResultSource = ResultSource.ANNOTATION
    overall: Score
    tips: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def is_fallback(self) -> bool:
        return self.source is ResultSource.FALLBACK

    @classmethod
    def score_fields(cls) -> Tuple[str, ...]:
        """Names of the integer score fields of this model."""
        return cls.SCORE_FIELDS


class FaceAnalysisResult(ScoreResult):
    SCORE_FIELDS: ClassVar[Tuple[str, ...]] = (
        "overall", "brightness", "symmetry", "jawline", "hydration",
    )

    kind: AnalysisKind = AnalysisKind.FACE
    brightness: Score
    symmetry: Score
    jawline: Score
    hydration: Score
    skin_potential: str = "Medium"
    skin_quality: str = "Good"
    skin_tone: str = "Medium"
    skin_type: str = "Normal"
    recommendations: List[str] = Field(default_factory=list)


class OutfitAnalysisResult(ScoreResult):
    SCORE_FIELDS: ClassVar[Tuple[str, ...]] = (
        "overall", "color_harmony", "occasion_fit", "confidence", "style", "fit", "trend",
    )

    kind: AnalysisKind = AnalysisKind.OUTFIT
    event_category: str
    color_harmony: Score
    occasion_fit: Score
    confidence: Score
    style: Optional[Score] = None
    fit: Optional[Score] = None
    trend: Optional[Score] = None
    detected_items: List[str] = Field(default_factory=list)
    compatible_colors: List[str] = Field(default_factory=list)
    what_worked: List[str] = Field(default_factory=list)
    event_appropriate: bool = True
    seasonal_match: bool = True
    style_category: str = "Smart Casual"


__all__ = [
    "AnalysisKind",
    "FaceAnalysisResult",
    "ImageRef",
    "OutfitAnalysisResult",
    "ResultSource",
    "SCORE_MAX",
    "SCORE_MIN",
    "Score",
    "ScoreResult",
    "clamp_score",
    "round_half_up",
]
