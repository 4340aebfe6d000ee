"""
Analysis orchestration.

One analysis call:
    fingerprint -> cache lookup -> baseline -> annotate (deduplicated)
    -> subject check -> score or parse+constrain -> cache write

Two scoring modes are supported. ``annotation`` scores raw vision
annotations locally. ``generative`` sends the annotations plus the image to
the generative service and constrains its scores against the fingerprint
baseline.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union, cast

from glow_common.config import Settings, get_settings
from glow_common.logging import get_logger

from .annotations import VisionAnnotation, build_annotate_request
from .cache import ResultCache, cache_key
from .cancellation import CancellationToken
from .dedup import RequestDeduplicator, make_request_key
from .errors import AnalysisError, NetworkError, ValidationError
from .fingerprint import fingerprint as compute_fingerprint
from .metrics import ANALYSES, FALLBACK_RESULTS
from .network import NetworkClient, RequestConfig
from .parsing import extract_completion, parse_face_report, parse_outfit_report
from .scorer import AnnotationScorer, has_humanoid, normalize_event_category
from .synthesizer import Baseline, ScoreSynthesizer
from .types import (
    AnalysisKind,
    FaceAnalysisResult,
    ImageRef,
    OutfitAnalysisResult,
    ScoreResult,
)

LOGGER = get_logger(__name__)

ImageInput = Union[ImageRef, bytes]

FACE_SYSTEM_PROMPT = """You are a professional beauty and facial analysis expert. Analyze the facial features and skin quality comprehensively.

For consistency with the same image, use these baseline references but prioritize actual visual assessment:
- Baseline Overall Score: {overall}
- Baseline Jawline Score: {jawline}
- Baseline Brightness: {brightness}
- Baseline Hydration: {hydration}
- Baseline Symmetry: {symmetry}
- Suggested Skin Tone: {skin_tone}
- Suggested Skin Type: {skin_type}

Return a JSON object with these exact fields:
{{
  "overallScore": number (1-100),
  "skinPotential": "High" | "Medium" | "Low",
  "skinQuality": "Excellent" | "Good" | "Fair" | "Needs Improvement",
  "jawlineScore": number (1-100),
  "skinTone": string,
  "skinType": "Oily" | "Dry" | "Combination" | "Normal" | "Sensitive",
  "brightness": number (1-100),
  "hydration": number (1-100),
  "symmetryScore": number (1-100),
  "aiTips": array of 3-5 personalized beauty tips,
  "improvements": array of specific improvement suggestions,
  "recommendations": array of product/routine recommendations
}}"""

FACE_USER_PROMPT = """Perform a comprehensive facial analysis on this image. Use the baseline scores as reference points and make small adjustments based on what you observe.

Vision API data: {vision}

For the SAME image, stay within {variance} points of baseline."""

OUTFIT_SYSTEM_PROMPT = """You are a professional fashion stylist and outfit analysis expert. Analyze outfits comprehensively using fashion principles.

Return a JSON object with these exact fields:
{
  "outfitScore": number (1-100, overall style score),
  "colorMatchScore": number (1-100, color harmony analysis),
  "styleScore": number (1-100, style coherence),
  "fitScore": number (1-100, fit and proportion assessment),
  "trendScore": number (1-100, current fashion trends alignment),
  "occasionScore": number (1-100, appropriateness for the event),
  "detectedItems": array of detected clothing items,
  "compatibleColors": array of hex color codes that work well,
  "tips": array of general style suggestions,
  "whatWorked": array of positive aspects,
  "improvements": array of specific improvement suggestions,
  "eventAppropriate": boolean,
  "seasonalMatch": boolean,
  "styleCategory": string,
  "confidenceLevel": number (1-100, analysis confidence)
}"""

OUTFIT_USER_PROMPT = """Perform comprehensive outfit analysis for a {event} event.

Assess color harmony, fit and proportion, style coherence, trend alignment, occasion appropriateness and seasonal matching.

Vision API data: {vision}

Provide actionable, specific feedback with confidence scoring."""


class AnalysisOrchestrator:
    """
    Composes fingerprinting, caching, deduplicated network calls and scoring.

    The orchestrator owns its deduplicator and cache instances; nothing here
    is module-level state.

    Usage:
        async with build_orchestrator() as engine:
            result = await engine.analyze_face(ImageRef.from_path("selfie.jpg"))
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        network: Optional[NetworkClient] = None,
        dedup: Optional[RequestDeduplicator] = None,
        cache: Optional[ResultCache] = None,
        synthesizer: Optional[ScoreSynthesizer] = None,
        scorer: Optional[AnnotationScorer] = None,
    ):
        self.settings = settings or get_settings()
        required = ["vision_api_url", "vision_api_key"]
        if self.settings.analysis_mode == "generative":
            required.append("generative_api_url")
        self.settings.require(*required)

        self.request_config = RequestConfig.from_settings(self.settings)
        self.vision_config = RequestConfig.from_settings(
            self.settings, headers={"x-goog-api-key": self.settings.vision_api_key}
        )
        self.network = network or NetworkClient(default_config=self.request_config)
        self.dedup = dedup or RequestDeduplicator(window_ms=self.settings.dedup_window_ms)
        self.cache = cache or ResultCache.from_settings(self.settings)
        self.synthesizer = synthesizer or ScoreSynthesizer.from_settings(self.settings)
        self.scorer = scorer or AnnotationScorer()

    async def __aenter__(self) -> "AnalysisOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        self.dedup.cancel_all()
        await self.cache.close()
        await self.network.close()

    @property
    def vision_url(self) -> str:
        base = self.settings.vision_api_url.rstrip("/")
        return f"{base}/v1/images:annotate"

    @property
    def generative_url(self) -> str:
        return f"{self.settings.generative_api_url.rstrip('/')}/text/llm/"

    def fingerprint(self, image: ImageInput) -> str:
        return compute_fingerprint(_image_bytes(image), self.settings.fingerprint_sample_size)

    async def analyze_face(
        self,
        image: ImageInput,
        cancel_token: Optional[CancellationToken] = None,
        allow_fallback: bool = False,
    ) -> FaceAnalysisResult:
        """
        Analyse facial features.

        Raises:
            ValidationError: No face detected
            NetworkError: Upstream failure after retries, or ABORTED
            ParseError: Upstream response unusable
        """
        result = await self._analyze(AnalysisKind.FACE, image, None, cancel_token, allow_fallback)
        return cast(FaceAnalysisResult, result)

    async def analyze_outfit(
        self,
        image: ImageInput,
        event_category: str,
        cancel_token: Optional[CancellationToken] = None,
        allow_fallback: bool = False,
    ) -> OutfitAnalysisResult:
        """
        Analyse an outfit against an event category.

        Raises:
            ValidationError: No person detected
            NetworkError: Upstream failure after retries, or ABORTED
            ParseError: Upstream response unusable
        """
        category = normalize_event_category(event_category)
        result = await self._analyze(AnalysisKind.OUTFIT, image, category, cancel_token, allow_fallback)
        return cast(OutfitAnalysisResult, result)

    async def _analyze(
        self,
        kind: AnalysisKind,
        image: ImageInput,
        event_category: Optional[str],
        cancel_token: Optional[CancellationToken],
        allow_fallback: bool,
    ) -> ScoreResult:
        self._ensure_sweeper()
        image_ref = image if isinstance(image, ImageRef) else ImageRef(image)
        fp = self.fingerprint(image_ref)
        key = cache_key(fp, kind)
        if event_category is not None:
            key = f"{key}_{event_category}"
        log = LOGGER.bind(fingerprint=fp, kind=kind.value)

        cached = await self.cache.get(key)
        if cached is not None:
            log.debug("Using cached analysis result")
            ANALYSES.labels(kind=kind.value, outcome="cache_hit").inc()
            return _result_model(kind).model_validate(cached)

        baseline = self.synthesizer.baseline(fp, kind)
        try:
            result = await self._compute(kind, image_ref, fp, baseline, event_category, cancel_token)
        except ValidationError as exc:
            log.info("No subject detected", reasons=exc.reasons)
            ANALYSES.labels(kind=kind.value, outcome="validation_error").inc()
            raise
        except NetworkError as exc:
            if exc.aborted:
                log.debug("Analysis cancelled by caller")
                ANALYSES.labels(kind=kind.value, outcome="aborted").inc()
                raise
            ANALYSES.labels(kind=kind.value, outcome="network_error").inc()
            if not allow_fallback:
                raise
            log.warning("Network path failed, serving fallback result", error=str(exc))
            return self._fallback(fp, kind, event_category)
        except AnalysisError as exc:
            ANALYSES.labels(kind=kind.value, outcome="error").inc()
            log.error(
                "Analysis failed",
                error=str(exc),
                error_type=type(exc).__name__,
                excerpt=getattr(exc, "excerpt", ""),
            )
            if not allow_fallback:
                raise
            return self._fallback(fp, kind, event_category)

        await self.cache.set(key, result.model_dump(mode="json"))
        await self.cache.mark_seen(fp)
        ANALYSES.labels(kind=kind.value, outcome="success").inc()
        log.info("Analysis complete", overall=result.overall, source=result.source.value)
        return result

    def _ensure_sweeper(self) -> None:
        # interval 0 disables the periodic sweep
        if self.settings.cache_sweep_interval_s > 0:
            self.cache.start_sweeper(self.settings.cache_sweep_interval_s)

    def _fallback(self, fp: str, kind: AnalysisKind, event_category: Optional[str]) -> ScoreResult:
        FALLBACK_RESULTS.labels(kind=kind.value).inc()
        return self.synthesizer.fallback_result(fp, kind, event_category)

    async def _compute(
        self,
        kind: AnalysisKind,
        image: ImageRef,
        fp: str,
        baseline: Baseline,
        event_category: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> ScoreResult:
        annotation = await self.annotate(image, cancel_token)
        self._check_subject(kind, annotation)

        if self.settings.analysis_mode == "annotation":
            if kind is AnalysisKind.FACE:
                return self.scorer.score_face(annotation, fp, baseline)
            return self.scorer.score_outfit(annotation, fp, event_category or "casual-outing")

        seen = await self.cache.was_seen(fp)
        completion = await self._generate(kind, image, annotation, baseline, event_category, seen, cancel_token)
        if kind is AnalysisKind.FACE:
            face_report = parse_face_report(completion).unwrap()
            result: ScoreResult = face_report.to_result(fp, baseline)
        else:
            outfit_report = parse_outfit_report(completion).unwrap()
            result = outfit_report.to_result(fp, event_category or "casual-outing")
        return self.synthesizer.constrain_result(result, baseline, seen)

    @staticmethod
    def _check_subject(kind: AnalysisKind, annotation: VisionAnnotation) -> None:
        if kind is AnalysisKind.FACE and not annotation.has_face:
            raise ValidationError(
                "No face detected in the image", reasons=["face geometry missing"]
            )
        if kind is AnalysisKind.OUTFIT and not has_humanoid(annotation.object_labels):
            raise ValidationError(
                "No person detected in the image", reasons=["no humanoid object label"]
            )

    async def annotate(
        self,
        image: ImageRef,
        cancel_token: Optional[CancellationToken] = None,
    ) -> VisionAnnotation:
        """Fetch vision annotations for ``image`` through the deduplicator."""
        url = self.vision_url
        body = build_annotate_request(image.encoded())
        payload = await self._post(url, body, self.vision_config, cancel_token)
        return VisionAnnotation.from_vision_response(payload)

    async def _generate(
        self,
        kind: AnalysisKind,
        image: ImageRef,
        annotation: VisionAnnotation,
        baseline: Baseline,
        event_category: Optional[str],
        seen: bool,
        cancel_token: Optional[CancellationToken],
    ) -> str:
        vision = json.dumps(annotation.summary())
        if kind is AnalysisKind.FACE:
            variance = self.synthesizer.variance_seen if seen else self.synthesizer.variance_first
            system = FACE_SYSTEM_PROMPT.format(**baseline.scores, **baseline.traits)
            text = FACE_USER_PROMPT.format(vision=vision, variance=f"±{variance}")
        else:
            system = OUTFIT_SYSTEM_PROMPT
            text = OUTFIT_USER_PROMPT.format(
                event=(event_category or "casual-outing").replace("-", " "), vision=vision
            )
        body = {
            "messages": [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": text},
                        {"type": "image", "image": image.encoded()},
                    ],
                },
            ]
        }
        config = RequestConfig.from_settings(
            self.settings,
            timeout_ms=self.settings.analysis_timeout_ms,
            headers=_auth_headers(self.settings.generative_api_key),
        )
        payload = await self._post(self.generative_url, body, config, cancel_token)
        return extract_completion(payload)

    async def _post(
        self,
        url: str,
        body: Dict[str, Any],
        config: RequestConfig,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        key = make_request_key(url, body)
        return await self.dedup.coalesce(
            key,
            lambda token: self.network.post_json(url, body, config, cancel_token=token),
            cancel_token=cancel_token,
        )

    async def health_check(self) -> Dict[str, bool]:
        """Probe the configured upstream services."""
        checks = {"vision": await self.network.health_check(self.settings.vision_api_url)}
        if self.settings.analysis_mode == "generative":
            checks["generative"] = await self.network.health_check(self.settings.generative_api_url)
        return checks


def _image_bytes(image: ImageInput) -> bytes:
    return image.data if isinstance(image, ImageRef) else bytes(image)


def _result_model(kind: AnalysisKind) -> type:
    return FaceAnalysisResult if kind is AnalysisKind.FACE else OutfitAnalysisResult


def _auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


def build_orchestrator(
    settings: Optional[Settings] = None,
    network: Optional[NetworkClient] = None,
) -> AnalysisOrchestrator:
    """Build an orchestrator wired from settings."""
    settings = settings or get_settings()
    return AnalysisOrchestrator(settings=settings, network=network)


__all__ = ["AnalysisOrchestrator", "build_orchestrator"]
