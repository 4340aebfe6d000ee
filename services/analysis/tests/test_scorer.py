"""
Tests for AnnotationScorer: brightness, symmetry, derived face scores, harmony and occasion fit.
"""

import numpy as np
import pytest

from glow_engine.annotations import DominantColor, FaceGeometry, ObjectLabel, VisionAnnotation
from glow_engine.scorer import (
    AnnotationScorer,
    ScoringWeights,
    brightness_score,
    has_humanoid,
    mean_hue_distance,
    normalize_event_category,
)
from glow_engine.synthesizer import ScoreSynthesizer
from glow_engine.types import AnalysisKind, ResultSource


def color(r, g, b, fraction=1.0):
    return DominantColor(r=r, g=g, b=b, pixel_fraction=fraction)


def face(roll=0.0, pan=0.0, tilt=0.0, detection=1.0, landmark=1.0):
    return FaceGeometry(
        roll_deg=roll,
        pan_deg=pan,
        tilt_deg=tilt,
        detection_confidence=detection,
        landmark_confidence=landmark,
    )


@pytest.fixture
def scorer():
    return AnnotationScorer()


class TestBrightness:
    """Tests for luminance-based brightness."""

    def test_all_white_is_100(self):
        assert brightness_score([color(255, 255, 255)]) == 100

    def test_all_black_is_1(self):
        assert brightness_score([color(0, 0, 0)]) == 1

    def test_weighted_by_pixel_fraction(self):
        mostly_white = brightness_score([color(255, 255, 255, 0.9), color(0, 0, 0, 0.1)])
        mostly_black = brightness_score([color(255, 255, 255, 0.1), color(0, 0, 0, 0.9)])

        assert mostly_white == 90
        assert mostly_black == 10

    def test_green_brighter_than_blue(self):
        assert brightness_score([color(0, 255, 0)]) > brightness_score([color(0, 0, 255)])

    def test_zero_fractions_use_plain_mean(self):
        assert brightness_score([color(255, 255, 255, 0), color(0, 0, 0, 0)]) == 50

    def test_no_colors_neutral(self):
        assert brightness_score([]) == 50


class TestFaceScores:
    """Tests for face geometry scoring."""

    def test_zero_angles_full_symmetry(self, scorer):
        assert scorer.symmetry(0, 0, 0) == 100

    def test_symmetry_penalty_capped(self, scorer):
        assert scorer.symmetry(5, -5, 0) == 80
        assert scorer.symmetry(40, 40, 40) == 40

    def test_custom_weights(self):
        scorer = AnnotationScorer(ScoringWeights(symmetry_angle_factor=3.0))
        assert scorer.symmetry(10, 0, 0) == 70

    def test_score_face_formulas(self, scorer):
        annotation = VisionAnnotation(
            face_geometry=face(roll=5, detection=0.9, landmark=0.75),
            dominant_colors=[color(255, 255, 255)],
        )

        result = scorer.score_face(annotation, fingerprint="fp1")

        assert result.brightness == 100
        assert result.symmetry == 90
        assert result.jawline == 75
        # 0.6*100 + 0.2*90 + 0.2*90
        assert result.hydration == 96
        # 0.25*90 + 0.25*100 + 0.2*75 + 0.2*96 + 0.1*90
        assert result.overall == 91
        assert result.source is ResultSource.ANNOTATION
        assert result.kind is AnalysisKind.FACE

    def test_all_scores_in_bounds(self, scorer):
        annotation = VisionAnnotation(
            face_geometry=face(roll=90, pan=90, tilt=90, detection=0, landmark=0),
            dominant_colors=[color(0, 0, 0)],
        )

        result = scorer.score_face(annotation, fingerprint="fp1")

        for name in result.score_fields():
            assert 1 <= getattr(result, name) <= 100

    def test_traits_from_baseline(self, scorer):
        baseline = ScoreSynthesizer().baseline("fp1", AnalysisKind.FACE)
        annotation = VisionAnnotation(face_geometry=face(), dominant_colors=[color(200, 180, 160)])

        result = scorer.score_face(annotation, fingerprint="fp1", baseline=baseline)

        assert result.skin_tone == baseline.traits["skin_tone"]
        assert result.skin_type == baseline.traits["skin_type"]

    def test_requires_face(self, scorer):
        with pytest.raises(ValueError):
            scorer.score_face(VisionAnnotation(), fingerprint="fp1")


class TestColorHarmony:
    """Tests for hue-distance harmony."""

    def test_mean_hue_distance_circular(self):
        assert mean_hue_distance(np.array([350.0, 10.0])) == pytest.approx(20.0)
        assert mean_hue_distance(np.array([0.0])) is None

    def test_complementary_pair(self, scorer):
        # red vs cyan: distance 180 -> 70
        assert scorer.color_harmony([color(255, 0, 0), color(0, 255, 255)]) == 70

    def test_analogous_pair_capped(self, scorer):
        # identical hues: distance 0 -> 70 + 30 capped to 95
        assert scorer.color_harmony([color(255, 0, 0), color(200, 0, 0)]) == 95

    def test_single_color_and_empty(self, scorer):
        assert scorer.color_harmony([color(10, 20, 30)]) == 95
        assert scorer.color_harmony([]) == 50

    def test_uses_top_five_by_fraction(self, scorer):
        palette = [color(255, 0, 0, 0.2)] * 5 + [color(0, 255, 255, 0.01)]
        assert scorer.color_harmony(palette) == 95


class TestOccasion:
    """Tests for event category handling and occasion fit."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Formal Event", "formal-event"),
            ("formal-event", "formal-event"),
            ("Party/Social", "party"),
            ("Job Interview", "job-interview"),
            ("Date Night", "date-night"),
            ("Gym", "workout"),
            ("Picnic", "picnic"),
        ],
    )
    def test_normalize_event_category(self, label, expected):
        assert normalize_event_category(label) == expected

    def test_blazer_boosts_formal(self, scorer):
        with_blazer, matched = scorer.occasion_fit(
            "formal-event", [ObjectLabel(name="Blazer", confidence=0.9)]
        )
        without, _ = scorer.occasion_fit("formal-event", [ObjectLabel(name="Shirt", confidence=0.9)])

        assert with_blazer > without
        assert matched == ["blazer"]

    def test_low_confidence_labels_ignored(self, scorer):
        low, matched = scorer.occasion_fit("formal-event", [ObjectLabel(name="Jacket", confidence=0.2)])

        assert matched == []
        assert low == 60

    def test_penalty_keywords(self, scorer):
        score, _ = scorer.occasion_fit("job-interview", [ObjectLabel(name="Shorts", confidence=0.9)])
        assert score == 45

    def test_humanoid_detection(self):
        assert has_humanoid([ObjectLabel(name="Person", confidence=0.9)])
        assert has_humanoid([ObjectLabel(name=" woman ", confidence=0.5)])
        assert not has_humanoid([ObjectLabel(name="Jacket", confidence=0.9)])

    def test_score_outfit(self, scorer):
        annotation = VisionAnnotation(
            dominant_colors=[color(20, 20, 20, 0.6), color(240, 240, 240, 0.4)],
            object_labels=[
                ObjectLabel(name="Person", confidence=0.9),
                ObjectLabel(name="Jacket", confidence=0.8),
            ],
        )

        result = scorer.score_outfit(annotation, fingerprint="fp2", event_category="Formal Event")

        assert result.event_category == "formal-event"
        assert result.confidence == 90
        assert result.occasion_fit == 72
        assert result.detected_items == ["Jacket"]
        assert result.compatible_colors == ["#141414", "#F0F0F0"]
        assert result.style is None
        assert result.event_appropriate is True
        for name in ("overall", "color_harmony", "occasion_fit", "confidence"):
            assert 1 <= getattr(result, name) <= 100
