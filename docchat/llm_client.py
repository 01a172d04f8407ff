"""Embedding and generation provider clients with error handling.

Two interchangeable providers are supported, both spoken to over HTTP with
httpx: a local Ollama server and the Gemini REST API. Both expose the same
coroutine interface so the rest of the pipeline never knows which is active.
"""
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from docchat import config

logger = structlog.get_logger()


class TaskType(str, Enum):
    """Intent of an embedding request.

    Documents and queries are embedded differently by retrieval-tuned
    models; a store indexed with one intent must be queried with the other.
    """

    RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
    RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


class ProviderClient(ABC):
    """Interface shared by the embedding/generation providers."""

    name: str = "provider"

    @abstractmethod
    async def embed(self, texts: List[str], task_type: TaskType) -> List[Dict]:
        """Embed texts; return dicts with 'index' (input position) and 'embedding'."""

    @abstractmethod
    async def generate(self, prompt: str, options: Optional[Dict] = None) -> str:
        """Generate a full completion for a prompt."""

    @abstractmethod
    def generate_stream(
        self, prompt: str, options: Optional[Dict] = None
    ) -> AsyncIterator[str]:
        """Yield completion text fragments as they are produced."""

    @abstractmethod
    async def list_models(self) -> List[str]:
        """List model names available to this provider."""


def default_generation_options() -> Dict:
    return {
        "temperature": config.GENERATION_TEMPERATURE,
        "top_p": config.GENERATION_TOP_P,
        "top_k": config.GENERATION_TOP_K,
        "max_tokens": config.GENERATION_MAX_TOKENS,
    }


class OllamaClient(ProviderClient):
    """Async client for interacting with the Ollama API."""

    name = "ollama"

    # Instruction prefixes used by nomic-style retrieval embedding models
    TASK_PREFIXES = {
        TaskType.RETRIEVAL_DOCUMENT: "search_document: ",
        TaskType.RETRIEVAL_QUERY: "search_query: ",
    }

    def __init__(
        self,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        dimension: int = None,
        timeout: float = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            chat_model: Generation model (defaults to config.CHAT_MODEL)
            embedding_model: Embedding model (defaults to config.EMBEDDING_MODEL)
            dimension: Requested embedding size (defaults to config.EMBEDDING_DIMENSION)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.timeout = timeout or config.PROVIDER_TIMEOUT

    def _generate_payload(self, prompt: str, options: Optional[Dict], stream: bool) -> Dict:
        opts = {**default_generation_options(), **(options or {})}
        return {
            "model": self.chat_model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": opts["temperature"],
                "top_p": opts["top_p"],
                "top_k": opts["top_k"],
                "num_predict": opts["max_tokens"],
            },
        }

    async def embed(self, texts: List[str], task_type: TaskType) -> List[Dict]:
        """Embed a batch of texts with /api/embed.

        Raises:
            httpx.HTTPError: On API errors
        """
        prefix = self.TASK_PREFIXES[task_type]
        payload = {
            "model": self.embedding_model,
            "input": [prefix + text for text in texts],
            "dimensions": self.dimension,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=self.embedding_model,
                    batch_size=len(texts),
                    task_type=task_type.value,
                )
                response = await client.post(f"{self.base_url}/api/embed", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

        # /api/embed answers in input order
        return [
            {"index": i, "embedding": vector}
            for i, vector in enumerate(data.get("embeddings", []))
        ]

    async def generate(self, prompt: str, options: Optional[Dict] = None) -> str:
        """Send a blocking completion request to Ollama.

        Raises:
            httpx.HTTPError: On API errors
            httpx.ConnectError: If Ollama service is unavailable
        """
        payload = self._generate_payload(prompt, options, stream=False)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("ollama_generate_request", model=self.chat_model, stream=False)
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

        text = data.get("response", "")
        logger.info("ollama_generate_response", model=self.chat_model, response_length=len(text))
        return text

    async def generate_stream(
        self, prompt: str, options: Optional[Dict] = None
    ) -> AsyncIterator[str]:
        """Stream a completion from Ollama (newline-delimited JSON).

        Closing the generator closes the HTTP response.
        """
        payload = self._generate_payload(prompt, options, stream=True)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            logger.info("ollama_generate_request", model=self.chat_model, stream=True)
            async with client.stream(
                "POST", f"{self.base_url}/api/generate", json=payload
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    data = json.loads(line)
                    if data.get("error"):
                        raise httpx.HTTPError(f"Ollama stream error: {data['error']}")
                    text = data.get("response")
                    if text:
                        yield text
                    if data.get("done"):
                        break

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


class GeminiClient(ProviderClient):
    """Async client for the Gemini REST API."""

    name = "gemini"

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        dimension: int = None,
        timeout: float = None,
    ):
        self.api_key = api_key or config.GEMINI_API_KEY
        self.base_url = base_url or config.GEMINI_BASE_URL
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.timeout = timeout or config.PROVIDER_TIMEOUT

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _generate_payload(self, prompt: str, options: Optional[Dict]) -> Dict:
        opts = {**default_generation_options(), **(options or {})}
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": opts["temperature"],
                "topP": opts["top_p"],
                "topK": opts["top_k"],
                "maxOutputTokens": opts["max_tokens"],
            },
        }

    @staticmethod
    def _candidate_text(data: Dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    async def embed(self, texts: List[str], task_type: TaskType) -> List[Dict]:
        """Embed a batch of texts with batchEmbedContents.

        Raises:
            httpx.HTTPError: On API errors
        """
        model = f"models/{self.embedding_model}"
        payload = {
            "requests": [
                {
                    "model": model,
                    "content": {"parts": [{"text": text}]},
                    "taskType": task_type.value,
                    "outputDimensionality": self.dimension,
                }
                for text in texts
            ]
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.debug(
                    "gemini_embedding_request",
                    model=self.embedding_model,
                    batch_size=len(texts),
                    task_type=task_type.value,
                )
                response = await client.post(
                    f"{self.base_url}/{model}:batchEmbedContents",
                    json=payload,
                    headers=self.headers,
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("gemini_embedding_error", error=str(e))
            raise

        return [
            {"index": i, "embedding": item.get("values", [])}
            for i, item in enumerate(data.get("embeddings", []))
        ]

    async def generate(self, prompt: str, options: Optional[Dict] = None) -> str:
        """Send a blocking generateContent request.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("gemini_generate_request", model=self.chat_model, stream=False)
                response = await client.post(
                    f"{self.base_url}/models/{self.chat_model}:generateContent",
                    json=self._generate_payload(prompt, options),
                    headers=self.headers,
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("gemini_http_error", error=str(e))
            raise

        text = self._candidate_text(data)
        logger.info("gemini_generate_response", model=self.chat_model, response_length=len(text))
        return text

    async def generate_stream(
        self, prompt: str, options: Optional[Dict] = None
    ) -> AsyncIterator[str]:
        """Stream a completion as server-sent events."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            logger.info("gemini_generate_request", model=self.chat_model, stream=True)
            async with client.stream(
                "POST",
                f"{self.base_url}/models/{self.chat_model}:streamGenerateContent",
                params={"alt": "sse"},
                json=self._generate_payload(prompt, options),
                headers=self.headers,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    text = self._candidate_text(json.loads(line[len("data:"):]))
                    if text:
                        yield text

    async def list_models(self) -> List[str]:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/models", headers=self.headers)
                response.raise_for_status()
                data = response.json()
                return [m["name"].split("/", 1)[-1] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("gemini_list_models_error", error=str(e))
            raise


PROVIDERS = {
    "ollama": OllamaClient,
    "gemini": GeminiClient,
}

# Process-wide provider, created on first use
_provider_instance: Optional[ProviderClient] = None


def get_provider() -> ProviderClient:
    """Get the configured provider client.

    Raises:
        ValueError: If LLM_PROVIDER names an unknown provider
    """
    global _provider_instance
    if _provider_instance is None:
        try:
            provider_cls = PROVIDERS[config.LLM_PROVIDER]
        except KeyError:
            raise ValueError(f"Unknown LLM_PROVIDER: {config.LLM_PROVIDER}") from None
        _provider_instance = provider_cls()
        logger.info("provider_initialized", provider=provider_cls.name)
    return _provider_instance
