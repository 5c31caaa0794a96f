"""
Ollama cognitive backend.

Thin HTTP client for Ollama's native REST API:
- /api/embed for embeddings
- /api/generate for text completion
- /api/tags for health checks

Failures are raised, never masked: embedding errors surface as
EmbeddingUnavailableError and text errors as ProviderError.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from vector.exceptions import EmbeddingUnavailableError

from ..core.exceptions import ProviderError
from .base import CognitiveBackend


logger = logging.getLogger(__name__)


@dataclass
class OllamaConfig:
    """Connection settings for an Ollama server."""
    base_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    chat_model: str = "llama3.2"
    timeout_seconds: int = 120
    temperature: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OllamaConfig":
        """Create from the ``ollama`` section of EngineConfig."""
        return cls(
            base_url=data.get("base_url", cls.base_url),
            embedding_model=data.get("embedding_model", cls.embedding_model),
            chat_model=data.get("chat_model", cls.chat_model),
            timeout_seconds=int(data.get("timeout_seconds", cls.timeout_seconds)),
            temperature=data.get("temperature"),
        )


class OllamaClient(CognitiveBackend):
    """
    HTTP client for an Ollama server.

    Example:
        >>> client = OllamaClient(OllamaConfig(base_url="http://localhost:11434"))
        >>> vector = client.generate_embedding("Hello world")
        >>> text = client.generate_text("Summarize...", system_prompt="Be brief")
    """

    def __init__(self, config: Optional[OllamaConfig] = None):
        """
        Initialize the Ollama client.

        Args:
            config: Connection settings (defaults to OllamaConfig())
        """
        self.config = config or OllamaConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.embedding_model = self.config.embedding_model
        self.chat_model = self.config.chat_model
        self.timeout = self.config.timeout_seconds

        logger.debug(
            f"Initialized OllamaClient: base_url={self.base_url}, "
            f"embedding_model={self.embedding_model}, chat_model={self.chat_model}"
        )

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate an embedding via /api/embed.

        Raises:
            EmbeddingUnavailableError: On HTTP, connection or parse failure,
                or when the response holds no vector
        """
        payload = {"model": self.embedding_model, "input": text}
        try:
            result = self._post("/api/embed", payload)
        except ProviderError as e:
            raise EmbeddingUnavailableError(str(e), provider="ollama") from e

        embeddings = result.get("embeddings") or []
        vector = embeddings[0] if embeddings else result.get("embedding")
        if not vector:
            logger.error(f"Ollama returned no embedding for model {self.embedding_model}")
            raise EmbeddingUnavailableError(
                f"Ollama returned no embedding for model {self.embedding_model}",
                provider="ollama",
            )
        return [float(v) for v in vector]

    def generate_text(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Generate a completion via /api/generate.

        Raises:
            ProviderError: On HTTP, connection or parse failure, or when the
                response holds no text
        """
        payload: Dict[str, Any] = {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": False,
        }
        if system_prompt:
            payload["system"] = system_prompt
        if self.config.temperature is not None:
            payload["options"] = {"temperature": self.config.temperature}

        result = self._post("/api/generate", payload)
        content = result.get("response")
        if content is None:
            raise ProviderError("Ollama response missing 'response' field", provider="ollama")
        return content

    def health_check(self) -> bool:
        """
        Check if Ollama is reachable and both models are available.

        Returns:
            True if Ollama is healthy, False otherwise
        """
        try:
            request = Request(f"{self.base_url}/api/tags", method="GET")
            with urlopen(request, timeout=10) as response:
                data = json.loads(response.read().decode("utf-8"))
        except (URLError, OSError, ValueError) as e:
            logger.warning(f"Health check failed: {e}")
            return False

        names = [m.get("name", "") for m in data.get("models", [])]
        bases = {n.split(":")[0] for n in names}
        missing = [
            m for m in (self.embedding_model, self.chat_model)
            if m not in names and m.split(":")[0] not in bases
        ]
        if missing:
            logger.warning(f"Models not available in Ollama: {missing}. Available: {names}")
            return False
        logger.debug("Health check passed")
        return True

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST JSON to the Ollama API and decode the JSON response.

        Raises:
            ProviderError: If the request fails
        """
        url = f"{self.base_url}{path}"
        request = Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        logger.debug(f"Making request to {url}")

        try:
            with urlopen(request, timeout=self.timeout) as response:
                result = json.loads(response.read().decode("utf-8"))
        except HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else str(e)
            logger.error(f"HTTP error from Ollama: {e.code} - {error_body}")
            raise ProviderError(
                f"Ollama API error: {e.code} - {error_body}",
                provider="ollama",
                status_code=e.code,
            ) from e
        except URLError as e:
            logger.error(f"Failed to connect to Ollama: {e}")
            raise ProviderError(
                f"Failed to connect to Ollama at {self.base_url}: {e}",
                provider="ollama",
            ) from e
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON response from Ollama: {e}")
            raise ProviderError(
                f"Invalid JSON response from Ollama: {e}",
                provider="ollama",
            ) from e
        except OSError as e:
            logger.error(f"Unexpected I/O error calling Ollama: {e}")
            raise ProviderError(
                f"Unexpected error calling Ollama: {e}",
                provider="ollama",
            ) from e

        if not isinstance(result, dict):
            raise ProviderError("Unexpected Ollama response shape", provider="ollama")
        return result
