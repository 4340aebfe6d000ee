"""Typed view over vision-annotation service responses."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError as PydanticValidationError, model_validator

from glow_common.logging import excerpt, get_logger
from glow_common.schemas import GlowModel

from .errors import ParseError

LOGGER = get_logger(__name__)

VISION_FEATURES = [
    {"type": "FACE_DETECTION", "maxResults": 1},
    {"type": "IMAGE_PROPERTIES", "maxResults": 1},
    {"type": "OBJECT_LOCALIZATION", "maxResults": 10},
]


class FaceGeometry(GlowModel):
    """Head pose and detector confidences of the primary face."""

    roll_deg: float = Field(0.0, alias="rollAngle")
    pan_deg: float = Field(0.0, alias="panAngle")
    tilt_deg: float = Field(0.0, alias="tiltAngle")
    detection_confidence: float = Field(0.0, alias="detectionConfidence", ge=0.0, le=1.0)
    landmark_confidence: float = Field(0.0, alias="landmarkingConfidence", ge=0.0, le=1.0)


class DominantColor(GlowModel):
    r: float = Field(0.0, ge=0.0, le=255.0)
    g: float = Field(0.0, ge=0.0, le=255.0)
    b: float = Field(0.0, ge=0.0, le=255.0)
    pixel_fraction: float = Field(0.0, alias="pixelFraction", ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _flatten_color(cls, data: Any) -> Any:
        # The service nests channels under "color" and omits zero channels
        if isinstance(data, dict) and isinstance(data.get("color"), dict):
            color = data["color"]
            flat = {k: v for k, v in data.items() if k != "color"}
            flat.update(
                r=color.get("red", 0), g=color.get("green", 0), b=color.get("blue", 0)
            )
            return flat
        return data

    @property
    def hex(self) -> str:
        return "#{:02X}{:02X}{:02X}".format(round(self.r), round(self.g), round(self.b))


class ObjectLabel(GlowModel):
    name: str
    confidence: float = Field(0.0, alias="score", ge=0.0, le=1.0)


class VisionAnnotation(GlowModel):
    """Face geometry, dominant colours and object labels for one image."""

    face_geometry: Optional[FaceGeometry] = None
    dominant_colors: List[DominantColor] = Field(default_factory=list)
    object_labels: List[ObjectLabel] = Field(default_factory=list)

    @property
    def has_face(self) -> bool:
        return self.face_geometry is not None

    @classmethod
    def from_vision_response(cls, payload: Any) -> "VisionAnnotation":
        """
        Build an annotation from an ``images:annotate`` response body.

        Raises:
            ParseError: If the body is not shaped like an annotate response
                or the service reported a per-image error
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("responses"), list):
            raise ParseError("Vision response has no 'responses' list", excerpt=excerpt(payload))
        if not payload["responses"]:
            return cls()

        response = payload["responses"][0]
        if not isinstance(response, dict):
            raise ParseError("Vision response entry is not an object", excerpt=excerpt(response))
        if response.get("error"):
            message = response["error"].get("message", "unknown error") if isinstance(
                response["error"], dict
            ) else str(response["error"])
            raise ParseError(f"Vision service error: {message}", excerpt=excerpt(response))

        faces = response.get("faceAnnotations") or []
        colors = (
            (response.get("imagePropertiesAnnotation") or {})
            .get("dominantColors", {})
            .get("colors", [])
        )
        objects = response.get("localizedObjectAnnotations") or []
        try:
            return cls(
                face_geometry=FaceGeometry.model_validate(faces[0]) if faces else None,
                dominant_colors=[DominantColor.model_validate(c) for c in colors],
                object_labels=[ObjectLabel.model_validate(o) for o in objects],
            )
        except (PydanticValidationError, AttributeError, TypeError) as exc:
            snippet = excerpt(response)
            LOGGER.error("Malformed vision annotation", error=str(exc), excerpt=snippet)
            raise ParseError("Malformed vision annotation", excerpt=snippet) from exc

    def summary(self) -> Dict[str, Any]:
        """Compact form for embedding in generative prompts."""
        return self.model_dump(mode="json", exclude_none=True)


def build_annotate_request(encoded_image: str) -> Dict[str, Any]:
    """Request body for the ``images:annotate`` endpoint."""
    return {
        "requests": [
            {
                "image": {"content": encoded_image},
                "features": [dict(feature) for feature in VISION_FEATURES],
            }
        ]
    }


__all__ = [
    "DominantColor",
    "FaceGeometry",
    "ObjectLabel",
    "VISION_FEATURES",
    "VisionAnnotation",
    "build_annotate_request",
]
