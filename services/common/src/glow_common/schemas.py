"""Pydantic schema helpers shared by the engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


class GlowModel(BaseModel):
    """Base model enabling attribute loading and common helper methods."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    def dict_for_cache(self, **kwargs: Any) -> dict[str, Any]:
        payload = self.model_dump(mode="json", **kwargs)
        payload["generated_at"] = datetime.now(timezone.utc).isoformat()
        return payload


__all__ = ["GlowModel"]
