"""Identity-keyed registry of tracked table objects."""
from __future__ import annotations

import logging
import math
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .state import Detection, TrackedObject

logger = logging.getLogger(__name__)


class TrackedObjectRegistry:
    """
    Turns sparse, noisy detection batches into a temporally coherent object set.

    Positions are exponentially smoothed toward each new detection, objects are
    evicted once they have not been reported for ``evict_timeout`` seconds.
    All timestamps are seconds on the caller's (monotonic) clock.
    """

    def __init__(
        self,
        *,
        smoothing_alpha: float = 0.15,
        evict_timeout: float = 2.0,
        match_radius: float = 0.0,
    ) -> None:
        if not 0.0 < smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if evict_timeout <= 0:
            raise ValueError("evict_timeout must be positive")
        if match_radius < 0:
            raise ValueError("match_radius must not be negative")
        self.smoothing_alpha = smoothing_alpha
        self.evict_timeout = evict_timeout
        self.match_radius = match_radius
        self._objects: Dict[str, TrackedObject] = {}

    @classmethod
    def from_settings(cls, tracking) -> "TrackedObjectRegistry":
        return cls(
            smoothing_alpha=tracking.smoothing_alpha,
            evict_timeout=tracking.evict_timeout_ms / 1000.0,
            match_radius=tracking.match_radius,
        )

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, obj_id: object) -> bool:
        return obj_id in self._objects

    def update(self, batch: Iterable[Any], now: float) -> None:
        """Apply one detection batch, then evict stale objects."""
        latest: Dict[str, Detection] = {}
        dropped = 0
        for raw in batch or ():
            detection = Detection.from_raw(raw)
            if detection is None:
                dropped += 1
                continue
            # Later duplicates replace earlier ones but keep first-seen order
            latest[detection.id] = detection

        if dropped:
            logger.debug("Dropped %d malformed detection(s)", dropped)

        claimed: Set[str] = set()
        for detection in latest.values():
            key = detection.id
            if key not in self._objects and self.match_radius > 0:
                key = self._match_existing(detection, claimed, latest) or key
            claimed.add(key)

            current = self._objects.get(key)
            if current is None:
                self._objects[key] = TrackedObject(
                    id=key,
                    type=detection.type,
                    x=detection.x,
                    y=detection.y,
                    confidence=detection.confidence,
                    last_seen_at=now,
                )
                logger.debug("Tracking new %s '%s' at (%.3f, %.3f)", detection.type.value, key, detection.x, detection.y)
                continue

            alpha = self.smoothing_alpha
            self._objects[key] = TrackedObject(
                id=key,
                type=detection.type,
                x=current.x + (detection.x - current.x) * alpha,
                y=current.y + (detection.y - current.y) * alpha,
                confidence=detection.confidence,
                last_seen_at=now,
            )

        self.sweep(now)

    def sweep(self, now: float) -> List[str]:
        """Remove objects unseen for longer than the eviction timeout."""
        stale = [
            obj_id
            for obj_id, obj in self._objects.items()
            if now - obj.last_seen_at > self.evict_timeout
        ]
        for obj_id in stale:
            del self._objects[obj_id]
        if stale:
            logger.debug("Evicted %s", ", ".join(stale))
        return stale

    def snapshot(self) -> Mapping[str, TrackedObject]:
        """Read-only copy of the current tracked set."""
        return MappingProxyType(dict(self._objects))

    def clear(self) -> None:
        self._objects.clear()

    def _match_existing(
        self,
        detection: Detection,
        claimed: Set[str],
        batch: Mapping[str, Detection],
    ) -> Optional[str]:
        """Nearest same-type object within match_radius that this batch has not already claimed."""
        best_id: Optional[str] = None
        best_dist = self.match_radius
        for obj_id, obj in self._objects.items():
            # An id reported verbatim in this batch belongs to that detection
            if obj_id in claimed or obj_id in batch or obj.type is not detection.type:
                continue
            dist = math.hypot(obj.x - detection.x, obj.y - detection.y)
            if dist <= best_dist:
                best_id, best_dist = obj_id, dist
        return best_id


__all__ = ["TrackedObjectRegistry"]
