"""
Remote multimodal client.

Sends one JPEG frame plus a text prompt to a remote endpoint over HTTP
(httpx, synchronous; called from the remote session thread).

Two request shapes:
- describe (no negative prompt): OpenAI-compatible ``chat/completions`` with
  the frame as a base64 data URL; the reply text is the first choice.
- contrastive (negative prompt set): ``classify`` with
  ``{"image": <base64>, "labels": [primary, negative]}`` answered by
  ``{"results": [{"label", "score"}]}``; the primary label's entry is
  selected, an absent entry yields an empty reply.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import cv2
import httpx

from camstream_vision import Frame

logger = logging.getLogger(__name__)

CHAT_PATH = "chat/completions"
CLASSIFY_PATH = "classify"


class RemoteRequestError(Exception):
    """Raised when a remote request fails or its reply cannot be parsed."""
    pass


@dataclass(frozen=True)
class RemoteReply:
    text: str
    score: Optional[float] = None


class RemoteClient:
    """
    Args:
        endpoint: Base URL (e.g. "http://localhost:8000/v1")
        api_key: Optional bearer token
        model: Model name sent with chat requests
        timeout_s: HTTP timeout per request
        jpeg_quality: JPEG encoding quality (1-100)
        http_client: Pre-built httpx.Client (tests, custom transports)
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        model: str = "",
        timeout_s: float = 60.0,
        jpeg_quality: int = 80,
        max_tokens: int = 300,
        http_client: Optional[httpx.Client] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.jpeg_quality = jpeg_quality
        self.max_tokens = max_tokens

        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = http_client or httpx.Client(
            base_url=self.endpoint,
            timeout=timeout_s,
            headers=headers,
        )

    def encode_frame(self, frame: Frame) -> str:
        """Base64 JPEG of the frame."""
        ok, buffer = cv2.imencode(
            ".jpg", frame.to_bgr(), [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]
        )
        if not ok:
            raise RemoteRequestError(f"Could not encode frame {frame.frame_id} as JPEG")
        return base64.b64encode(buffer.tobytes()).decode("utf-8")

    def analyze(self, frame: Frame, prompt: str, negative_prompt: Optional[str] = None) -> RemoteReply:
        """
        Send one frame and return the reply.

        Raises:
            RemoteRequestError: On HTTP failure or malformed reply
        """
        image_b64 = self.encode_frame(frame)
        if negative_prompt:
            return self._classify(image_b64, prompt, negative_prompt)
        return self._describe(image_b64, prompt)

    def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        try:
            response = self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RemoteRequestError(
                f"Remote endpoint returned {e.response.status_code} for {path}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteRequestError(f"Remote request to {path} failed: {e}") from e
        except ValueError as e:
            raise RemoteRequestError(f"Remote reply from {path} is not JSON: {e}") from e

    def _describe(self, image_b64: str, prompt: str) -> RemoteReply:
        payload = {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                ],
            }],
            "max_tokens": self.max_tokens,
        }
        data = self._post(CHAT_PATH, payload)
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise RemoteRequestError(f"Unexpected chat reply shape: {e}") from e
        return RemoteReply(text=str(text or "").strip())

    def _classify(self, image_b64: str, prompt: str, negative_prompt: str) -> RemoteReply:
        data = self._post(CLASSIFY_PATH, {"image": image_b64, "labels": [prompt, negative_prompt]})
        try:
            results = data["results"]
            for entry in results:
                if entry["label"] == prompt:
                    score = float(entry["score"])
                    return RemoteReply(text=f"{prompt}: {score:.2f}", score=score)
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteRequestError(f"Unexpected classify reply shape: {e}") from e
        return RemoteReply(text="")

    def close(self) -> None:
        self._client.close()
