"""
HTTP clients for the LLM and embedding services (OpenAI-compatible APIs).
"""

import logging

import httpx

from .config import ServiceConfig
from .errors import InputError, InvalidResponseError, ServiceTimeoutError, TransientServiceError
from .models import ChatCompletion, EmbeddingResponse, parse_payload

logger = logging.getLogger(__name__)

MAX_EMBEDDING_INPUT_CHARS = 20000

SYSTEM_PROMPT_EN = "You write accurate, well-structured study summaries of textbook pages in English."
SYSTEM_PROMPT_AR = "أنت تكتب ملخصات دراسية دقيقة ومنظمة لصفحات الكتب المدرسية باللغة العربية."


def post_json(client: httpx.Client, url: str, payload: dict, timeout: float, description: str) -> object:
    """POST a JSON body and return the decoded JSON response.

    Raises:
        ServiceTimeoutError: The request timed out
        TransientServiceError: Connection problems, 429 or 5xx
        InvalidResponseError: Other 4xx, or a body that is not JSON
    """
    try:
        response = client.post(url, json=payload, timeout=timeout)
    except httpx.TimeoutException as e:
        raise ServiceTimeoutError(f"{description} timed out after {timeout}s") from e
    except httpx.TransportError as e:
        raise TransientServiceError(f"{description} request failed: {e}") from e

    status = response.status_code
    if status == 429 or status >= 500:
        raise TransientServiceError(f"{description} returned HTTP {status}")
    if status >= 400:
        raise InvalidResponseError(f"{description} rejected the request: HTTP {status} {response.text[:200]}")

    try:
        return response.json()
    except ValueError as e:
        raise InvalidResponseError(f"{description} returned a non-JSON body") from e


class _ServiceClient:
    def __init__(self, config: ServiceConfig | None = None, client: httpx.Client | None = None) -> None:
        self.config = config or ServiceConfig()
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        self._client = client or httpx.Client(timeout=self.config.request_timeout, headers=headers)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class LLMClient(_ServiceClient):
    """Generates page summaries through a chat-completions endpoint."""

    def generate_summary(self, prompt: str, metadata: dict | None = None, timeout: float | None = None) -> str:
        """Send a prompt and return the model's text.

        Args:
            prompt: Full user prompt
            metadata: Page details ('lang', 'page', 'title', 'is_repair')
            timeout: Seconds before giving up (default: service request timeout)

        Returns:
            Generated text, stripped
        """
        if not prompt or not prompt.strip():
            raise InputError("Prompt cannot be empty")

        meta = metadata or {}
        system = SYSTEM_PROMPT_AR if meta.get("lang") == "ar" else SYSTEM_PROMPT_EN
        payload = {
            "model": self.config.llm_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2 if meta.get("is_repair") else 0.3,
            "max_tokens": 2048,
        }

        data = post_json(
            self._client,
            self.config.llm_api_url,
            payload,
            timeout or self.config.request_timeout,
            description=f"LLM (page {meta.get('page', '?')})",
        )
        completion = parse_payload(ChatCompletion, data, "chat completion")
        text = completion.text.strip()
        if not text:
            raise InvalidResponseError("LLM returned an empty completion")

        logger.debug(f"LLM returned {len(text)} chars for page {meta.get('page', '?')}")
        return text


class EmbeddingClient(_ServiceClient):
    """Turns page text into vectors through an embeddings endpoint."""

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise InputError("Cannot embed empty text")

        data = post_json(
            self._client,
            self.config.embedding_api_url,
            {"model": self.config.embedding_model, "input": text[:MAX_EMBEDDING_INPUT_CHARS]},
            self.config.request_timeout,
            description="Embedding",
        )
        response = parse_payload(EmbeddingResponse, data, "embedding")
        if not response.data or not response.data[0].embedding:
            raise InvalidResponseError("Embedding response contained no vector")
        return response.data[0].embedding
