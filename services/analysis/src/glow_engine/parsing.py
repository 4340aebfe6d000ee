"""
Defensive parsing of generative-service responses.

The generative service returns JSON inside free text. Parsing happens in two
documented attempts:

1. Parse the whole completion as JSON.
2. Extract the first balanced ``{...}`` or ``[...]`` substring and parse that.

Each step returns a ``ParseOutcome`` instead of raising, so callers decide
whether a failure is fatal. Schema validation then maps the loose payload to
typed reports.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Annotated, Any, Generic, List, Optional, TypeVar

from pydantic import BeforeValidator, Field, ValidationError as PydanticValidationError

from glow_common.logging import excerpt, get_logger
from glow_common.schemas import GlowModel

from .errors import ParseError
from .synthesizer import Baseline
from .types import FaceAnalysisResult, OutfitAnalysisResult, ResultSource

LOGGER = get_logger(__name__)

T = TypeVar("T")

DEFAULT_DETECTED_ITEMS = ["Black blazer", "White shirt", "Dark jeans", "Brown shoes"]
DEFAULT_COMPATIBLE_COLORS = ["#FF6B98", "#9D71E8", "#4CAF50", "#2196F3", "#FFD166"]
DEFAULT_OUTFIT_TIPS = [
    "Consider adding a statement accessory",
    "Try different shoe styles for variety",
]
DEFAULT_WHAT_WORKED = ["Great color coordination", "Well-fitted garments"]
DEFAULT_OUTFIT_IMPROVEMENTS = ["Add more texture variety", "Consider seasonal colors"]


@dataclass(frozen=True)
class ParseOutcome(Generic[T]):
    """Success-or-failure result of a parse attempt."""

    value: Optional[T] = None
    error: Optional[str] = None
    strategy: Optional[str] = None
    excerpt: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, strategy: str) -> "ParseOutcome[T]":
        return cls(value=value, strategy=strategy)

    @classmethod
    def failure(cls, error: str, text: Any = "") -> "ParseOutcome[T]":
        return cls(error=error, excerpt=excerpt(text))

    def unwrap(self) -> T:
        """Return the value or raise ``ParseError`` carrying the excerpt."""
        if self.error is not None:
            raise ParseError(self.error, excerpt=self.excerpt)
        return self.value  # type: ignore[return-value]


def extract_balanced(text: str) -> Optional[str]:
    """
    Return the first balanced bracket-delimited substring of ``text``.

    Brackets inside JSON string literals are ignored.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return None
    start = min(starts)
    stack: List[str] = []
    in_string = False
    escaped = False
    pairs = {"{": "}", "[": "]"}
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in pairs:
            stack.append(pairs[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start : index + 1]
    return None


def parse_structured(text: str) -> ParseOutcome[Any]:
    """Parse JSON directly, then from the first balanced substring."""
    if not isinstance(text, str):
        return ParseOutcome.failure("Completion is not text", text)
    try:
        return ParseOutcome.success(json.loads(text), "direct")
    except ValueError:
        pass

    candidate = extract_balanced(text)
    if candidate is None:
        return ParseOutcome.failure("No JSON object found in completion", text)
    try:
        value = json.loads(candidate)
    except ValueError as exc:
        return ParseOutcome.failure(f"Extracted JSON is invalid: {exc}", candidate)
    LOGGER.debug("Parsed completion from extracted substring", length=len(candidate))
    return ParseOutcome.success(value, "extracted")


def extract_completion(body: Any) -> str:
    """
    Pull the completion text out of a generative response envelope.

    Accepts ``{"completion": "..."}`` and chat-style
    ``{"choices": [{"message": {"content": "..."}}]}`` bodies.
    """
    if isinstance(body, str):
        return body
    if isinstance(body, dict):
        completion = body.get("completion")
        if isinstance(completion, str):
            return completion
        choices = body.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
    raise ParseError("Generative response has no completion text", excerpt=excerpt(body))


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _strict_number(value: Any) -> float:
    number = _finite(value)
    if number is None:
        raise ValueError("must be a finite number")
    return number


def _list_or_none(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value]


def _text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


Number = Annotated[float, BeforeValidator(_strict_number)]
LooseNumber = Annotated[Optional[float], BeforeValidator(_finite)]
LooseList = Annotated[Optional[List[str]], BeforeValidator(_list_or_none)]
LooseText = Annotated[Optional[str], BeforeValidator(_text_or_none)]


class FaceReport(GlowModel):
    """Current face report format."""

    overall_score: Number = Field(alias="overallScore")
    skin_tone: str = Field(alias="skinTone")
    ai_tips: List[str] = Field(alias="aiTips")
    skin_potential: LooseText = Field(None, alias="skinPotential")
    skin_quality: LooseText = Field(None, alias="skinQuality")
    skin_type: LooseText = Field(None, alias="skinType")
    jawline_score: LooseNumber = Field(None, alias="jawlineScore")
    brightness: LooseNumber = None
    hydration: LooseNumber = None
    symmetry_score: LooseNumber = Field(None, alias="symmetryScore")
    improvements: LooseList = None
    recommendations: LooseList = None

    def to_result(self, fingerprint: str, baseline: Optional[Baseline] = None) -> FaceAnalysisResult:
        traits = baseline.traits if baseline is not None else {}
        return FaceAnalysisResult(
            fingerprint=fingerprint,
            source=ResultSource.GENERATIVE,
            overall=self.overall_score,
            jawline=self.jawline_score if self.jawline_score is not None else 75,
            brightness=self.brightness if self.brightness is not None else 75,
            hydration=self.hydration if self.hydration is not None else 70,
            symmetry=self.symmetry_score if self.symmetry_score is not None else 85,
            skin_potential=self.skin_potential or traits.get("skin_potential", "Medium"),
            skin_quality=self.skin_quality or traits.get("skin_quality", "Good"),
            skin_tone=self.skin_tone or traits.get("skin_tone", "Medium"),
            skin_type=self.skin_type or traits.get("skin_type", "Normal"),
            tips=list(self.ai_tips),
            improvements=self.improvements or [],
            recommendations=self.recommendations or [],
        )


class LegacyFaceReport(GlowModel):
    """Older face format keyed on ``glowScore``."""

    glow_score: Number = Field(alias="glowScore")
    skin_tone: LooseText = Field(None, alias="skinTone")
    skin_type: LooseText = Field(None, alias="skinType")
    brightness: LooseNumber = None
    hydration: LooseNumber = None
    symmetry: LooseNumber = None
    tips: LooseList = None
    improvements: LooseList = None
    recommendations: LooseList = None

    def to_report(self) -> FaceReport:
        return FaceReport(
            overall_score=self.glow_score,
            skin_tone=self.skin_tone or "",
            ai_tips=self.tips or self.improvements or [],
            skin_type=self.skin_type,
            brightness=self.brightness,
            hydration=self.hydration,
            symmetry_score=self.symmetry,
            improvements=self.improvements,
            recommendations=self.recommendations,
        )


class OutfitReport(GlowModel):
    outfit_score: Number = Field(alias="outfitScore")
    color_match_score: LooseNumber = Field(None, alias="colorMatchScore")
    style_score: LooseNumber = Field(None, alias="styleScore")
    fit_score: LooseNumber = Field(None, alias="fitScore")
    trend_score: LooseNumber = Field(None, alias="trendScore")
    occasion_score: LooseNumber = Field(None, alias="occasionScore")
    confidence_level: LooseNumber = Field(None, alias="confidenceLevel")
    detected_items: LooseList = Field(None, alias="detectedItems")
    compatible_colors: LooseList = Field(None, alias="compatibleColors")
    tips: LooseList = None
    what_worked: LooseList = Field(None, alias="whatWorked")
    improvements: LooseList = None
    event_appropriate: Any = Field(None, alias="eventAppropriate")
    seasonal_match: Any = Field(None, alias="seasonalMatch")
    style_category: LooseText = Field(None, alias="styleCategory")

    def to_result(self, fingerprint: str, event_category: str) -> OutfitAnalysisResult:
        def pick(value: Optional[float], default: int) -> float:
            return value if value else default

        return OutfitAnalysisResult(
            fingerprint=fingerprint,
            source=ResultSource.GENERATIVE,
            event_category=event_category,
            overall=self.outfit_score,
            color_harmony=pick(self.color_match_score, 75),
            style=pick(self.style_score, 75),
            fit=pick(self.fit_score, 75),
            trend=pick(self.trend_score, 70),
            occasion_fit=pick(self.occasion_score, 85),
            confidence=pick(self.confidence_level, 85),
            detected_items=self.detected_items if self.detected_items is not None else list(DEFAULT_DETECTED_ITEMS),
            compatible_colors=(
                self.compatible_colors
                if self.compatible_colors is not None
                else list(DEFAULT_COMPATIBLE_COLORS)
            ),
            tips=self.tips if self.tips is not None else list(DEFAULT_OUTFIT_TIPS),
            what_worked=self.what_worked if self.what_worked is not None else list(DEFAULT_WHAT_WORKED),
            improvements=(
                self.improvements if self.improvements is not None else list(DEFAULT_OUTFIT_IMPROVEMENTS)
            ),
            event_appropriate=self.event_appropriate is not False,
            seasonal_match=self.seasonal_match is not False,
            style_category=self.style_category or "Smart Casual",
        )


def _validation_summary(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


def parse_face_report(text: str) -> ParseOutcome[FaceReport]:
    """Parse a face completion, accepting the current and legacy formats."""
    structured = parse_structured(text)
    if not structured.ok:
        return ParseOutcome.failure(structured.error or "unparseable", text)
    payload = structured.value
    if not isinstance(payload, dict):
        return ParseOutcome.failure("Face report is not a JSON object", text)

    try:
        return ParseOutcome.success(FaceReport.model_validate(payload), structured.strategy or "direct")
    except PydanticValidationError as exc:
        current_error = _validation_summary(exc)
    try:
        legacy = LegacyFaceReport.model_validate(payload)
    except PydanticValidationError:
        LOGGER.warning("Face report failed validation", error=current_error, excerpt=excerpt(text))
        return ParseOutcome.failure(f"Invalid face report format: {current_error}", text)
    LOGGER.debug("Face report in legacy format")
    return ParseOutcome.success(legacy.to_report(), "legacy")


def parse_outfit_report(text: str) -> ParseOutcome[OutfitReport]:
    structured = parse_structured(text)
    if not structured.ok:
        return ParseOutcome.failure(structured.error or "unparseable", text)
    payload = structured.value
    if not isinstance(payload, dict):
        return ParseOutcome.failure("Outfit report is not a JSON object", text)
    try:
        report = OutfitReport.model_validate(payload)
    except PydanticValidationError as exc:
        error = _validation_summary(exc)
        LOGGER.warning("Outfit report failed validation", error=error, excerpt=excerpt(text))
        return ParseOutcome.failure(f"Invalid outfit report format: {error}", text)
    return ParseOutcome.success(report, structured.strategy or "direct")


__all__ = [
    "FaceReport",
    "LegacyFaceReport",
    "OutfitReport",
    "ParseOutcome",
    "extract_balanced",
    "extract_completion",
    "parse_face_report",
    "parse_outfit_report",
    "parse_structured",
]
