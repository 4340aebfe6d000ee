"""Pytest configuration and fixtures for analysis engine tests."""

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import structlog

from glow_common.config import Settings
from glow_engine.cache import MemoryCacheBackend, ResultCache
from glow_engine.network import NetworkClient, RequestConfig

# Loggers resolve the processor chain per call so capture_logs sees every module.
structlog.configure(cache_logger_on_first_use=False)


class FakeClock:
    """Manually advanced wall clock in seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.requests: List[httpx.Request] = []

        async def _record(request: httpx.Request):
            self.requests.append(request)
            response = handler(request)
            if not isinstance(response, httpx.Response):
                response = await response
            return response

        super().__init__(_record)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_network(
    handler: Callable[[httpx.Request], Any],
    config: Optional[RequestConfig] = None,
) -> tuple[NetworkClient, RecordingTransport]:
    transport = RecordingTransport(handler)
    client = httpx.AsyncClient(transport=transport)
    config = config or RequestConfig(timeout_ms=1_000, max_retries=3, retry_delay_ms=1)
    return NetworkClient(client=client, default_config=config), transport


def vision_payload(
    face: Optional[Dict[str, float]] = None,
    colors: Optional[List[Dict[str, float]]] = None,
    labels: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build an images:annotate response body."""
    response: Dict[str, Any] = {}
    if face is not None:
        response["faceAnnotations"] = [face]
    if colors is not None:
        response["imagePropertiesAnnotation"] = {
            "dominantColors": {
                "colors": [
                    {
                        "color": {"red": c["r"], "green": c["g"], "blue": c["b"]},
                        "pixelFraction": c.get("fraction", 1.0),
                    }
                    for c in colors
                ]
            }
        }
    if labels is not None:
        response["localizedObjectAnnotations"] = labels
    return {"responses": [response]}


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with credentials present and fast retries."""
    return Settings(
        vision_api_url="https://vision.test",
        vision_api_key="test-key",
        generative_api_url="https://llm.test",
        generative_api_key="llm-key",
        request_timeout_ms=1_000,
        request_max_retries=2,
        request_retry_delay_ms=1,
        analysis_timeout_ms=1_000,
        cache_backend="memory",
        analysis_mode="annotation",
        cache_sweep_interval_s=0,
    )


@pytest.fixture
def memory_cache(fake_clock):
    return ResultCache(MemoryCacheBackend(), ttl_ms=60_000, clock=fake_clock)


@pytest.fixture
def face_annotation_payload():
    return vision_payload(
        face={
            "rollAngle": 2.0,
            "panAngle": -3.0,
            "tiltAngle": 1.0,
            "detectionConfidence": 0.95,
            "landmarkingConfidence": 0.8,
        },
        colors=[
            {"r": 230, "g": 190, "b": 170, "fraction": 0.6},
            {"r": 40, "g": 30, "b": 25, "fraction": 0.4},
        ],
    )


@pytest.fixture
def outfit_annotation_payload():
    return vision_payload(
        colors=[
            {"r": 20, "g": 20, "b": 20, "fraction": 0.5},
            {"r": 240, "g": 240, "b": 240, "fraction": 0.3},
            {"r": 30, "g": 40, "b": 120, "fraction": 0.2},
        ],
        labels=[
            {"name": "Person", "score": 0.92},
            {"name": "Jacket", "score": 0.81},
            {"name": "Pants", "score": 0.7},
        ],
    )
