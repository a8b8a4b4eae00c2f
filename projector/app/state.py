"""Shared state definitions for the edge projector."""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


class ObjectType(str, enum.Enum):
    """Object classes the table reacts to (values match detector labels)."""
    CUP = "cup"
    BOTTLE = "bottle"
    PERSON = "person"
    PHONE = "cell phone"
    HAND = "hand"
    LAPTOP = "laptop"
    CHAIR = "chair"
    COIN = "coin"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ObjectType":
        """Map a detector label onto a known type; anything unrecognised is UNKNOWN."""
        if isinstance(value, ObjectType):
            return value
        label = str(value).strip().lower()
        label = _TYPE_ALIASES.get(label, label)
        try:
            return cls(label)
        except ValueError:
            return cls.UNKNOWN


_TYPE_ALIASES = {
    "phone": "cell phone",
    "cellphone": "cell phone",
    "smartphone": "cell phone",
    "mobile phone": "cell phone",
    "mug": "cup",
    "wine glass": "cup",
}


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _finite_number(value: Any) -> Optional[float]:
    # bool is an int subclass, but True is never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class Detection:
    """One reported sighting in normalized camera coordinates (unmirrored)."""

    id: str
    type: ObjectType
    x: float
    y: float
    confidence: float = 1.0

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Detection"]:
        """
        Build a Detection from a detector payload item.

        Returns None when the item is malformed (missing id/type/x/y, non-numeric
        coordinates). Coordinates and confidence are clamped to [0, 1].
        """
        if isinstance(raw, Detection):
            return raw.clamped()
        if not isinstance(raw, Mapping):
            return None

        raw_id = raw.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, (str, int)):
            return None
        obj_id = str(raw_id).strip()
        if not obj_id:
            return None

        raw_type = raw.get("type")
        if raw_type is None or (isinstance(raw_type, str) and not raw_type.strip()):
            return None

        x = _finite_number(raw.get("x"))
        y = _finite_number(raw.get("y"))
        if x is None or y is None:
            return None

        if "confidence" in raw and raw["confidence"] is not None:
            confidence = _finite_number(raw["confidence"])
            if confidence is None:
                return None
        else:
            confidence = 1.0

        return cls(
            id=obj_id,
            type=ObjectType.parse(raw_type),
            x=_clamp01(x),
            y=_clamp01(y),
            confidence=_clamp01(confidence),
        )

    def clamped(self) -> "Detection":
        return Detection(
            id=self.id,
            type=self.type,
            x=_clamp01(self.x),
            y=_clamp01(self.y),
            confidence=_clamp01(self.confidence),
        )


@dataclass(frozen=True)
class TrackedObject:
    """Smoothed, persistent view of one physical object."""

    id: str
    type: ObjectType
    x: float
    y: float
    confidence: float
    last_seen_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "x": round(self.x, 4),
            "y": round(self.y, 4),
            "confidence": round(self.confidence, 3),
        }


@dataclass
class EngineStatus:
    """Values the presentation shell displays (status panels, error dialogs)."""

    running: bool = False
    camera_ready: bool = False
    camera_error: Optional[str] = None
    detector: str = "none"
    detector_error: Optional[str] = None
    last_detection_latency_ms: Optional[float] = None
    consecutive_failures: int = 0
    tracked_objects: int = 0
    render_fps: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "camera_ready": self.camera_ready,
            "camera_error": self.camera_error,
            "detector": self.detector,
            "detector_error": self.detector_error,
            "last_detection_latency_ms": self.last_detection_latency_ms,
            "consecutive_failures": self.consecutive_failures,
            "tracked_objects": self.tracked_objects,
            "render_fps": round(self.render_fps, 1),
        }


@dataclass
class ProjectorEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


__all__ = ["ObjectType", "Detection", "TrackedObject", "EngineStatus", "ProjectorEvent"]
