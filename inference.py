"""Inference: client for the Ollama vision-model HTTP API."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import requests

from config import DEFAULT_OLLAMA_HOST, DEFAULT_REQUEST_TIMEOUT
from errors import InvalidResponse, ServiceUnreachable

logger = logging.getLogger(__name__)

# Low temperature and a short completion: only the returned image matters.
GENERATION_OPTIONS = {"temperature": 0.1, "num_predict": 100}


class OllamaClient:
    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, model: str, prompt: str, images: Sequence[str] = ()) -> list[str]:
        """Send one generation request and return any base64 images in the reply.

        Raises ServiceUnreachable on connection problems or timeouts and
        InvalidResponse when the server answers with an error or non-JSON body.
        """
        body = {
            "model": model,
            "prompt": prompt,
            "images": list(images),
            "stream": False,
            "options": dict(GENERATION_OPTIONS),
        }
        try:
            response = self.session.post(
                f"{self.host}/api/generate",
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise ServiceUnreachable(f"Ollama request timed out after {self.timeout:.0f}s") from exc
        except requests.exceptions.ConnectionError as exc:
            raise ServiceUnreachable(f"Cannot connect to Ollama at {self.host}") from exc

        if not response.ok:
            raise InvalidResponse(f"Ollama API error: {response.status_code} - {response.text[:200]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponse("Ollama returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise InvalidResponse("Ollama returned an unexpected payload")

        returned = payload.get("images") or []
        if not isinstance(returned, list):
            raise InvalidResponse("Ollama 'images' field is not a list")
        return [item for item in returned if isinstance(item, str) and item]

    def list_models(self) -> list[str]:
        try:
            response = self.session.get(f"{self.host}/api/tags", timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise ServiceUnreachable(f"Cannot connect to Ollama at {self.host}") from exc
        if not response.ok:
            raise InvalidResponse(f"Failed to list models: {response.status_code}")
        try:
            models = response.json().get("models", [])
        except (ValueError, AttributeError) as exc:
            raise InvalidResponse("Ollama returned an unexpected model list") from exc
        return [entry["name"] for entry in models if isinstance(entry, dict) and "name" in entry]

    def is_running(self) -> bool:
        try:
            response = self.session.get(f"{self.host}/api/tags", timeout=5)
        except requests.exceptions.RequestException:
            return False
        return response.ok

    def has_model(self, model: str) -> bool:
        try:
            names = self.list_models()
        except (ServiceUnreachable, InvalidResponse) as exc:
            logger.debug("Model lookup failed: %s", exc)
            return False
        return any(name == model or name.startswith(f"{model}:") for name in names)
