"""GlowCheck analysis engine."""

from .cache import CacheEntry, MemoryCacheBackend, RedisCacheBackend, ResultCache, cache_key
from .cancellation import CancellationToken
from .dedup import RequestDeduplicator, make_request_key
from .errors import (
    AnalysisError,
    ConfigError,
    NetworkError,
    NetworkErrorCode,
    ParseError,
    ValidationError,
)
from .fingerprint import fingerprint
from .network import NetworkClient, RequestConfig
from .orchestrator import AnalysisOrchestrator, build_orchestrator
from .scorer import AnnotationScorer, ScoringWeights
from .synthesizer import ScoreSynthesizer
from .types import AnalysisKind, FaceAnalysisResult, ImageRef, OutfitAnalysisResult, ResultSource

__version__ = "1.0.0"

__all__ = [
    "AnalysisError",
    "AnalysisKind",
    "AnalysisOrchestrator",
    "AnnotationScorer",
    "CacheEntry",
    "CancellationToken",
    "ConfigError",
    "FaceAnalysisResult",
    "ImageRef",
    "MemoryCacheBackend",
    "NetworkClient",
    "NetworkError",
    "NetworkErrorCode",
    "OutfitAnalysisResult",
    "ParseError",
    "RedisCacheBackend",
    "RequestConfig",
    "RequestDeduplicator",
    "ResultCache",
    "ResultSource",
    "ScoreSynthesizer",
    "ScoringWeights",
    "ValidationError",
    "__version__",
    "build_orchestrator",
    "cache_key",
    "fingerprint",
    "make_request_key",
]
