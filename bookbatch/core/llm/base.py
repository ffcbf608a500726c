"""
Base classes and data structures for LLM providers.

This module defines the abstract base class that all LLM providers must implement,
as well as common data structures like LLMResponse.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import httpx

from bookbatch.config import REQUEST_TIMEOUT


@dataclass
class LLMResponse:
    """Response from LLM with token usage information"""
    content: str
    endpoint: str = ""
    prompt_tokens: int = 0  # Number of tokens in the prompt
    completion_tokens: int = 0  # Number of tokens in the response
    raw: Dict[str, Any] = field(default_factory=dict)  # Decoded response body

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "endpoint": self.endpoint,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
        }


class LLMProvider(ABC):
    """Abstract base class for LLM providers

    A provider knows the wire format. The endpoint is chosen per call by
    the caller, so one provider instance serves every URL of a pool.
    """

    def __init__(self, model: str, timeout: float = REQUEST_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the LLM provider.

        Args:
            model: Model name/identifier
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.model = model
        self.timeout = timeout
        self._transport = transport
        self._client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client with connection pooling"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def generate(self, endpoint: str, prompt: str, system_prompt: Optional[str] = None,
                       response_schema: Optional[Dict[str, Any]] = None,
                       messages: Optional[list] = None) -> LLMResponse:
        """
        Run one completion against one endpoint.

        Args:
            endpoint: Full chat-completions URL
            prompt: The user prompt (content to process)
            system_prompt: Optional system prompt (role/instructions)
            response_schema: Optional JSON schema constraining the output
            messages: Earlier conversation turns to send before ``prompt``

        Returns:
            LLMResponse with content and token usage info

        Raises:
            ModelCallError: On transport or HTTP failure
        """
        pass
