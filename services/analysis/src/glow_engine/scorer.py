"""
Annotation scoring.

Pure numeric transforms from a ``VisionAnnotation`` to face and outfit
scores. No I/O happens here; the orchestrator decides whether the scorer runs
at all.
"""

from __future__ import annotations

import colorsys
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .annotations import DominantColor, ObjectLabel, VisionAnnotation
from .synthesizer import Baseline
from .types import FaceAnalysisResult, OutfitAnalysisResult, ResultSource, clamp_score

LUMINANCE_COEFFICIENTS = np.array([0.2126, 0.7152, 0.0722])

HUMANOID_LABELS = frozenset({"person", "man", "woman", "human", "girl", "boy"})

EVENT_CATEGORIES = (
    "date-night",
    "job-interview",
    "casual-outing",
    "formal-event",
    "business-meeting",
    "party",
    "workout",
    "travel",
)

EVENT_ALIASES = {
    "date": "date-night",
    "interview": "job-interview",
    "casual": "casual-outing",
    "formal": "formal-event",
    "wedding": "formal-event",
    "business": "business-meeting",
    "work": "business-meeting",
    "office": "business-meeting",
    "social": "party",
    "party-social": "party",
    "gym": "workout",
    "sport": "workout",
    "vacation": "travel",
}


@dataclass(frozen=True)
class ScoringWeights:
    """Product-tuned constants for annotation scoring."""

    overall_symmetry: float = 0.25
    overall_brightness: float = 0.25
    overall_jawline: float = 0.2
    overall_hydration: float = 0.2
    overall_detection: float = 0.1

    hydration_brightness: float = 0.6
    hydration_symmetry: float = 0.2
    hydration_detection: float = 0.2

    symmetry_angle_cap: float = 30.0
    symmetry_angle_factor: float = 2.0

    harmony_palette_size: int = 5
    harmony_base: float = 70.0
    harmony_span: float = 30.0
    harmony_divisor: float = 6.0
    harmony_bounds: Tuple[int, int] = (50, 95)

    outfit_harmony: float = 0.4
    outfit_occasion: float = 0.4
    outfit_confidence: float = 0.2

    label_min_confidence: float = 0.5
    event_appropriate_threshold: int = 70


@dataclass(frozen=True)
class OccasionRule:
    """Keyword rule scoring detected garments against an event category."""

    base: int
    boost_keywords: Tuple[str, ...] = ()
    boost: int = 10
    max_boosts: int = 3
    penalty_keywords: Tuple[str, ...] = ()
    penalty: int = 15
    advice: str = ""


OCCASION_RULES: Dict[str, OccasionRule] = {
    "formal-event": OccasionRule(
        base=60,
        boost_keywords=("blazer", "jacket", "suit", "tie", "dress", "gown", "heels"),
        boost=12,
        penalty_keywords=("sneaker", "shorts", "t-shirt", "hoodie", "cap"),
        advice="Formal events reward tailored layers such as a blazer or a structured dress",
    ),
    "job-interview": OccasionRule(
        base=60,
        boost_keywords=("blazer", "jacket", "suit", "shirt", "tie", "trousers", "skirt"),
        boost=12,
        penalty_keywords=("shorts", "sandal", "hoodie", "cap", "sunglasses"),
        advice="Interviews favour a clean jacket and shirt over casual pieces",
    ),
    "business-meeting": OccasionRule(
        base=62,
        boost_keywords=("blazer", "jacket", "shirt", "trousers", "suit", "tie"),
        boost=10,
        penalty_keywords=("shorts", "sandal", "hoodie"),
        advice="A blazer or collared shirt reads as meeting-ready",
    ),
    "date-night": OccasionRule(
        base=70,
        boost_keywords=("dress", "jacket", "shirt", "heels", "boot", "jewelry"),
        boost=8,
        penalty_keywords=("hoodie", "sweatpants"),
        advice="One statement piece goes a long way on a date night",
    ),
    "party": OccasionRule(
        base=70,
        boost_keywords=("dress", "jacket", "heels", "jewelry", "shirt"),
        boost=8,
        penalty_keywords=("suit", "tie"),
        penalty=8,
        advice="Parties welcome colour and texture over strict tailoring",
    ),
    "casual-outing": OccasionRule(
        base=75,
        boost_keywords=("jeans", "t-shirt", "sneaker", "jacket", "shirt"),
        boost=6,
        penalty_keywords=("gown", "tie"),
        penalty=10,
        advice="Relaxed basics like denim and sneakers suit casual plans",
    ),
    "workout": OccasionRule(
        base=60,
        boost_keywords=("sneaker", "shoe", "shorts", "t-shirt", "leggings"),
        boost=12,
        penalty_keywords=("blazer", "suit", "heels", "dress", "jeans"),
        advice="Breathable activewear and trainers fit a workout best",
    ),
    "travel": OccasionRule(
        base=70,
        boost_keywords=("jacket", "sneaker", "backpack", "jeans", "hat"),
        boost=8,
        penalty_keywords=("heels", "gown"),
        advice="Comfortable layers and footwear make travel outfits work",
    ),
}

DEFAULT_OCCASION_RULE = OccasionRule(base=70)


def normalize_event_category(label: str) -> str:
    """
    Map a display label such as "Formal Event" or "Party/Social" to a category id.

    Unknown labels are returned slugified.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", label.strip().lower()).strip("-")
    if slug in EVENT_CATEGORIES:
        return slug
    if slug in EVENT_ALIASES:
        return EVENT_ALIASES[slug]
    for token in slug.split("-"):
        if token in EVENT_ALIASES:
            return EVENT_ALIASES[token]
    return slug


def has_humanoid(labels: Iterable[ObjectLabel]) -> bool:
    return any(label.name.strip().lower() in HUMANOID_LABELS for label in labels)


def brightness_score(colors: Sequence[DominantColor]) -> int:
    """Pixel-fraction weighted luminance of the dominant colours, scaled to 100."""
    if not colors:
        return 50
    rgb = np.array([[c.r, c.g, c.b] for c in colors], dtype=float)
    weights = np.array([c.pixel_fraction for c in colors], dtype=float)
    luminance = rgb @ LUMINANCE_COEFFICIENTS
    if weights.sum() <= 0:
        mean = float(luminance.mean())
    else:
        mean = float(np.average(luminance, weights=weights))
    return clamp_score(mean / 255.0 * 100.0)


def hues_degrees(colors: Sequence[DominantColor]) -> np.ndarray:
    return np.array(
        [colorsys.rgb_to_hsv(c.r / 255.0, c.g / 255.0, c.b / 255.0)[0] * 360.0 for c in colors],
        dtype=float,
    )


def mean_hue_distance(hues: np.ndarray) -> Optional[float]:
    """Mean pairwise circular distance between hues in degrees, None for fewer than two."""
    if hues.size < 2:
        return None
    diff = np.abs(hues[:, None] - hues[None, :])
    circular = np.minimum(diff, 360.0 - diff)
    upper = np.triu_indices(hues.size, k=1)
    return float(circular[upper].mean())


class AnnotationScorer:
    """
    Converts vision annotations into integer scores in [1, 100].

    Usage:
        scorer = AnnotationScorer()
        result = scorer.score_face(annotation, fingerprint="k3v9a1", baseline=baseline)
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def symmetry(self, roll: float, pan: float, tilt: float) -> int:
        w = self.weights
        deviation = min(w.symmetry_angle_cap, abs(roll) + abs(pan) + abs(tilt))
        return clamp_score(100 - deviation * w.symmetry_angle_factor)

    def color_harmony(self, colors: Sequence[DominantColor]) -> int:
        w = self.weights
        low, high = w.harmony_bounds
        if not colors:
            return low
        palette = sorted(colors, key=lambda c: c.pixel_fraction, reverse=True)
        distance = mean_hue_distance(hues_degrees(palette[: w.harmony_palette_size]))
        if distance is None:
            return high
        raw = w.harmony_base + min(w.harmony_span, abs(180.0 - distance) / w.harmony_divisor)
        return clamp_score(max(low, min(high, raw)))

    def occasion_fit(
        self, event_category: str, labels: Sequence[ObjectLabel]
    ) -> Tuple[int, List[str]]:
        """Score garment labels against the event; returns (score, matched keywords)."""
        rule = OCCASION_RULES.get(event_category, DEFAULT_OCCASION_RULE)
        names = [
            label.name.lower()
            for label in labels
            if label.confidence >= self.weights.label_min_confidence
        ]
        matched = [kw for kw in rule.boost_keywords if any(kw in name for name in names)]
        penalised = [kw for kw in rule.penalty_keywords if any(kw in name for name in names)]
        score = (
            rule.base
            + rule.boost * min(len(matched), rule.max_boosts)
            - rule.penalty * len(penalised)
        )
        return clamp_score(score), matched

    def score_face(
        self,
        annotation: VisionAnnotation,
        fingerprint: str,
        baseline: Optional[Baseline] = None,
    ) -> FaceAnalysisResult:
        face = annotation.face_geometry
        if face is None:
            raise ValueError("score_face requires face geometry")
        w = self.weights
        detection = face.detection_confidence * 100

        brightness = brightness_score(annotation.dominant_colors)
        symmetry = self.symmetry(face.roll_deg, face.pan_deg, face.tilt_deg)
        jawline = clamp_score(face.landmark_confidence * 100)
        hydration = clamp_score(
            w.hydration_brightness * brightness
            + w.hydration_symmetry * symmetry
            + w.hydration_detection * detection
        )
        overall = clamp_score(
            w.overall_symmetry * symmetry
            + w.overall_brightness * brightness
            + w.overall_jawline * jawline
            + w.overall_hydration * hydration
            + w.overall_detection * detection
        )
        traits = dict(baseline.traits) if baseline is not None else {}
        return FaceAnalysisResult(
            fingerprint=fingerprint,
            source=ResultSource.ANNOTATION,
            overall=overall,
            brightness=brightness,
            symmetry=symmetry,
            jawline=jawline,
            hydration=hydration,
            tips=_face_tips(brightness, symmetry, hydration),
            improvements=_face_improvements(jawline, detection),
            **traits,
        )

    def score_outfit(
        self,
        annotation: VisionAnnotation,
        fingerprint: str,
        event_category: str,
    ) -> OutfitAnalysisResult:
        w = self.weights
        category = normalize_event_category(event_category)
        people = [
            label for label in annotation.object_labels
            if label.name.strip().lower() in HUMANOID_LABELS
        ]
        garments = [
            label for label in annotation.object_labels
            if label.name.strip().lower() not in HUMANOID_LABELS
        ]
        confidence = clamp_score(max((p.confidence for p in people), default=0.0) * 100)
        harmony = self.color_harmony(annotation.dominant_colors)
        occasion, matched = self.occasion_fit(category, garments)
        overall = clamp_score(
            w.outfit_harmony * harmony + w.outfit_occasion * occasion + w.outfit_confidence * confidence
        )

        rule = OCCASION_RULES.get(category, DEFAULT_OCCASION_RULE)
        palette = sorted(annotation.dominant_colors, key=lambda c: c.pixel_fraction, reverse=True)
        what_worked = [f"{kw.capitalize()} suits a {category.replace('-', ' ')}" for kw in matched]
        if harmony >= 85:
            what_worked.append("Cohesive colour palette")
        improvements = []
        if occasion < w.event_appropriate_threshold and rule.advice:
            improvements.append(rule.advice)
        if harmony < 70:
            improvements.append("Try fewer competing hues or add a neutral piece")

        return OutfitAnalysisResult(
            fingerprint=fingerprint,
            source=ResultSource.ANNOTATION,
            event_category=category,
            overall=overall,
            color_harmony=harmony,
            occasion_fit=occasion,
            confidence=confidence,
            detected_items=list(dict.fromkeys(label.name for label in garments)),
            compatible_colors=[c.hex for c in palette[: w.harmony_palette_size]],
            what_worked=what_worked,
            improvements=improvements,
            event_appropriate=occasion >= w.event_appropriate_threshold,
        )


def _face_tips(brightness: int, symmetry: int, hydration: int) -> List[str]:
    tips = []
    if brightness < 60:
        tips.append("Face a window or soft light source to bring out natural glow")
    if symmetry < 80:
        tips.append("Keep your head level and look straight at the camera")
    if hydration < 70:
        tips.append("Layer a hydrating serum under moisturiser")
    if not tips:
        tips.append("Great capture; keep up your current routine")
    return tips


def _face_improvements(jawline: int, detection: float) -> List[str]:
    improvements = []
    if jawline < 70:
        improvements.append("Tilt your chin slightly down and forward to define the jawline")
    if detection < 70:
        improvements.append("Move closer so your face fills more of the frame")
    return improvements


__all__ = [
    "AnnotationScorer",
    "DEFAULT_OCCASION_RULE",
    "EVENT_CATEGORIES",
    "HUMANOID_LABELS",
    "OCCASION_RULES",
    "OccasionRule",
    "ScoringWeights",
    "brightness_score",
    "has_humanoid",
    "mean_hue_distance",
    "normalize_event_category",
]
