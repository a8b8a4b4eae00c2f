"""Remote vision detection over HTTP (Gemini generateContent)."""
from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import cv2
import httpx
import numpy as np

from ..config import DetectorSettings
from ..state import ObjectType
from .base import DetectionBatch, DetectorError

logger = logging.getLogger(__name__)

PROMPT = (
    "Detect cups, coins, smartphones, and hands in this top-down table view. "
    "Provide their normalized coordinates (0-1) and confidence. "
    "If multiple objects of same type exist, list them all. "
    "Keep each object's id stable between requests (e.g. cup-1, cup-2)."
)

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING"},
            "type": {
                "type": "STRING",
                "enum": [ObjectType.CUP.value, ObjectType.COIN.value, ObjectType.PHONE.value, ObjectType.HAND.value],
            },
            "x": {"type": "NUMBER"},
            "y": {"type": "NUMBER"},
            "confidence": {"type": "NUMBER"},
        },
        "required": ["id", "type", "x", "y"],
    },
}


def build_request(image_b64: str) -> Dict[str, Any]:
    return {
        "contents": [
            {
                "parts": [
                    {"inlineData": {"mimeType": "image/jpeg", "data": image_b64}},
                    {"text": PROMPT},
                ]
            }
        ],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }


def parse_response(data: Any) -> List[Any]:
    """
    Extract the detection array from a generateContent response.

    Unparsable or non-array text yields an empty list; individual items are
    validated later by the registry.
    """
    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError):
        logger.error("remote.detect: response missing candidate text")
        return []

    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("remote.detect: failed to parse response text - %s", e)
        return []
    if not isinstance(payload, list):
        logger.error("remote.detect: expected a JSON array, got %s", type(payload).__name__)
        return []
    return payload


class RemoteDetector:
    """Sends one JPEG per call to the remote vision model."""

    name = "remote"

    def __init__(self, settings: DetectorSettings, client: Optional[httpx.AsyncClient] = None) -> None:
        if not settings.remote_api_key:
            raise DetectorError("Remote detector requires detector.remote_api_key")
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.remote_url.rstrip("/"),
            timeout=settings.remote_timeout_s,
        )

    def _encode(self, frame: np.ndarray) -> str:
        ok, enc = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.settings.remote_jpeg_quality])
        if not ok:
            raise DetectorError("JPEG encoding failed")
        return base64.b64encode(enc.tobytes()).decode("ascii")

    async def detect(self, frame: np.ndarray) -> DetectionBatch:
        """Returns None on transport failures so the registry skips this cycle."""
        try:
            body = build_request(self._encode(frame))
            response = await self._client.post(
                f"/models/{self.settings.remote_model}:generateContent",
                params={"key": self.settings.remote_api_key},
                json=body,
            )
            response.raise_for_status()
            return parse_response(response.json())
        except httpx.TimeoutException:
            logger.error("remote.detect: request timeout")
            return None
        except httpx.NetworkError as e:
            logger.error("remote.detect: network error - %s", e)
            return None
        except httpx.HTTPStatusError as e:
            logger.error("remote.detect: HTTP %d - %s", e.response.status_code, e.response.text[:200])
            return None
        except ValueError as e:
            # Body was not JSON at all
            logger.error("remote.detect: invalid response body - %s", e)
            return None

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing remote detector client: %s", e)


__all__ = ["RemoteDetector", "build_request", "parse_response", "PROMPT", "RESPONSE_SCHEMA"]
