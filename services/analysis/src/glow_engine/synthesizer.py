"""
Deterministic score synthesis.

Derives reproducible baseline scores from an image fingerprint. Baselines are
used to anchor upstream generative scores for the same image, and as the
explicit offline fallback where a caller opts in to one.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, TypeVar

from glow_common.config import Settings
from glow_common.logging import get_logger

from .fingerprint import fnv1a, to_base36
from .types import (
    AnalysisKind,
    FaceAnalysisResult,
    OutfitAnalysisResult,
    ResultSource,
    ScoreResult,
    clamp_score,
    round_half_up,
)

LOGGER = get_logger(__name__)

ScoreRange = Tuple[int, int]
R = TypeVar("R", bound=ScoreResult)

# field -> (salt appended to the fingerprint, range)
FACE_RANGES: Dict[str, Tuple[str, ScoreRange]] = {
    "overall": ("", (75, 95)),
    "jawline": ("jaw", (70, 90)),
    "brightness": ("bright", (65, 90)),
    "hydration": ("hydro", (60, 85)),
    "symmetry": ("sym", (75, 95)),
}

OUTFIT_RANGES: Dict[str, Tuple[str, ScoreRange]] = {
    "overall": ("", (70, 92)),
    "color_harmony": ("color", (65, 90)),
    "occasion_fit": ("occasion", (70, 95)),
    "style": ("style", (65, 90)),
    "fit": ("fit", (65, 90)),
    "trend": ("trend", (60, 85)),
    "confidence": ("confidence", (75, 95)),
}

SKIN_TONES = ["Warm Beige", "Cool Ivory", "Olive Medium", "Deep Caramel", "Golden Tan", "Porcelain Fair"]
SKIN_TYPES = ["Normal", "Dry", "Oily", "Combination", "Sensitive"]
POTENTIALS = ["High", "Medium", "Low"]
QUALITIES = ["Excellent", "Good", "Fair", "Needs Improvement"]

FALLBACK_FACE_TIPS = [
    "Retake the photo in soft natural light for a full analysis",
    "Keep a consistent cleanse, moisturise and SPF routine",
    "Drink water through the day to support skin hydration",
]
FALLBACK_OUTFIT_TIPS = [
    "Retake the photo full length in good light for a full analysis",
    "Anchor the look with one neutral base colour",
]


@dataclass(frozen=True)
class Baseline:
    """Synthesized anchor values for one fingerprint and operation kind."""

    fingerprint: str
    kind: AnalysisKind
    scores: Mapping[str, int]
    traits: Mapping[str, str] = field(default_factory=dict)

    def __getitem__(self, name: str) -> int:
        return self.scores[name]


class ScoreSynthesizer:
    """
    Pure, seedable score generator keyed on fingerprints.

    Every method is a function of its arguments and the configured variance
    bands; no state is kept between calls.
    """

    def __init__(self, variance_seen: int = 3, variance_first: int = 8):
        if variance_seen < 0 or variance_first < 0:
            raise ValueError("variance bands must be non-negative")
        self.variance_seen = variance_seen
        self.variance_first = variance_first

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoreSynthesizer":
        return cls(variance_seen=settings.variance_seen, variance_first=settings.variance_first)

    @staticmethod
    def synthesize(fingerprint: str, score_range: ScoreRange) -> int:
        """
        Map a fingerprint to a stable integer in ``score_range``.

        The 32-bit FNV-1a hash of the fingerprint is normalised to [0, 1)
        and shaped with sin(x * pi) before scaling, so values spread across
        the range instead of piling up at its edges.

        Args:
            fingerprint: Seed string
            score_range: Inclusive (min, max)

        Returns:
            Integer in [min, max]
        """
        low, high = score_range
        if low > high:
            raise ValueError(f"Invalid score range: {score_range}")
        x = fnv1a(fingerprint.encode("utf-8"), bits=32) / 2**32
        value = round_half_up(low + math.sin(x * math.pi) * (high - low))
        return max(low, min(high, value))

    def baseline(self, fingerprint: str, kind: AnalysisKind) -> Baseline:
        ranges = FACE_RANGES if kind is AnalysisKind.FACE else OUTFIT_RANGES
        scores = {
            name: self.synthesize(fingerprint + salt, score_range)
            for name, (salt, score_range) in ranges.items()
        }
        traits = self._face_traits(fingerprint) if kind is AnalysisKind.FACE else {}
        return Baseline(fingerprint=fingerprint, kind=kind, scores=scores, traits=traits)

    @staticmethod
    def _face_traits(fingerprint: str) -> Dict[str, str]:
        seed = sum(ord(ch) for ch in to_base36(fnv1a(fingerprint.encode("utf-8"))))
        return {
            "skin_potential": POTENTIALS[seed % len(POTENTIALS)],
            "skin_quality": QUALITIES[(seed // 10) % len(QUALITIES)],
            "skin_tone": SKIN_TONES[(seed // 100) % len(SKIN_TONES)],
            "skin_type": SKIN_TYPES[(seed // 1000) % len(SKIN_TYPES)],
        }

    def constrain(self, candidate: Any, baseline: int, seen: bool) -> int:
        """
        Pull an upstream candidate score to within the variance band of its baseline.

        A fingerprint analysed before gets the narrow band; a first-time
        fingerprint gets the wide one. Non-numeric candidates yield the
        baseline itself.
        """
        variance = self.variance_seen if seen else self.variance_first
        try:
            value = clamp_score(candidate)
        except ValueError:
            LOGGER.debug("Non-numeric candidate score, using baseline", candidate=repr(candidate))
            return clamp_score(baseline)
        return clamp_score(max(baseline - variance, min(baseline + variance, value)))

    def constrain_result(self, result: R, baseline: Baseline, seen: bool) -> R:
        """Constrain every score field of ``result`` that has a baseline."""
        updates: Dict[str, int] = {}
        for name in result.score_fields():
            value = getattr(result, name)
            if name in baseline.scores and value is not None:
                updates[name] = self.constrain(value, baseline.scores[name], seen)
        return result.model_copy(update=updates)

    def fallback_result(
        self,
        fingerprint: str,
        kind: AnalysisKind,
        event_category: Optional[str] = None,
    ) -> ScoreResult:
        """
        Build a complete result from baselines alone.

        The result is marked with ``ResultSource.FALLBACK``; callers must only
        serve it where they explicitly allowed a fallback.
        """
        base = self.baseline(fingerprint, kind)
        if kind is AnalysisKind.FACE:
            return FaceAnalysisResult(
                fingerprint=fingerprint,
                source=ResultSource.FALLBACK,
                tips=list(FALLBACK_FACE_TIPS),
                **base.scores,
                **base.traits,
            )
        return OutfitAnalysisResult(
            fingerprint=fingerprint,
            source=ResultSource.FALLBACK,
            event_category=event_category or "casual-outing",
            tips=list(FALLBACK_OUTFIT_TIPS),
            event_appropriate=True,
            **base.scores,
        )


__all__ = [
    "Baseline",
    "FACE_RANGES",
    "OUTFIT_RANGES",
    "ScoreRange",
    "ScoreSynthesizer",
]
