"""
Ollama Client for Local LLM inference.

Connects to a local Ollama server for semantic note analysis. Requests
are synchronous so the client can run inside import/note worker threads.
"""
import json
import logging
import re
from typing import Optional

import httpx

from api.services.resilience import RetryConfig, retry_sync
from config.settings import settings

logger = logging.getLogger(__name__)


class OllamaError(Exception):
    """Error communicating with Ollama."""
    pass


# A busy local model usually frees up within a couple of seconds
GENERATE_RETRY_CONFIG = RetryConfig(
    max_retries=1,
    base_delay=1.0,
    max_delay=2.0,
    retryable_exceptions=(OllamaError,),
)

_FENCED_JSON = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')


class OllamaClient:
    """Client for the Ollama local LLM API."""

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        """
        Initialize Ollama client.

        Args:
            host: Ollama server URL (default from settings)
            model: Model name to use (default from settings)
            timeout: Request timeout in seconds (default from settings)
        """
        self.host = (host or settings.ollama_host).rstrip("/")
        self.model = model or settings.ollama_model
        self.timeout = timeout or settings.ollama_timeout

    def generate_json(self, prompt: str, temperature: float = 0.1) -> dict:
        """
        Ask the model for a JSON object.

        Args:
            prompt: The prompt (should describe the JSON shape wanted)
            temperature: Sampling temperature; keep low for structured output

        Returns:
            Parsed JSON object

        Raises:
            OllamaError: If the request fails after one retry or no JSON object comes back
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature},
        }
        return parse_json_object(self._generate(payload))

    @retry_sync(config=GENERATE_RETRY_CONFIG)
    def _generate(self, payload: dict) -> str:
        try:
            response = httpx.post(f"{self.host}/api/generate", json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise OllamaError(f"Timed out after {self.timeout}s waiting for {self.model}") from e
        except httpx.HTTPError as e:
            raise OllamaError(f"Ollama request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise OllamaError(f"Ollama returned a non-JSON body: {response.text[:200]!r}") from e
        if not isinstance(body, dict):
            raise OllamaError(f"Unexpected Ollama response: {str(body)[:200]}")
        return body.get("response") or ""

    def is_available(self) -> bool:
        """
        Check that the server answers and has the configured model pulled.

        Returns:
            True if /api/tags lists a model matching ours
        """
        try:
            response = httpx.get(f"{self.host}/api/tags", timeout=2.0)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Ollama availability check failed: {e}")
            return False

        names = [m.get("name", "") for m in response.json().get("models", [])]
        family = self.model.split(":")[0]
        if any(name == self.model or name.split(":")[0] == family for name in names):
            return True

        logger.warning(f"Model {self.model} not pulled in Ollama (have: {names})")
        return False


def parse_json_object(text: str) -> dict:
    """
    Pull a JSON object out of model output.

    Accepts bare JSON, a fenced ```json block, or an object embedded in prose.

    Raises:
        OllamaError: If no JSON object can be parsed
    """
    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise OllamaError(f"No JSON object in model response: {text[:200]!r}")
