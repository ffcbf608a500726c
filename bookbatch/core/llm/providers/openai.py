"""
OpenAI-compatible provider implementation.

This module provides the OpenAICompatibleProvider class for interacting with
OpenAI API and compatible endpoints (llama.cpp, LM Studio, vLLM, Ollama, etc.).
"""

from typing import Any, Dict, Optional
import json
import logging
import httpx

from ..base import LLMProvider, LLMResponse
from bookbatch.config import DEFAULT_CHAT_COMPLETIONS_PATH, DEFAULT_OPENAI_ENDPOINT, REQUEST_TIMEOUT
from bookbatch.core.exceptions import ModelCallError

logger = logging.getLogger(__name__)

# Settings forwarded verbatim into the request payload
_INTEGER_SETTINGS = ("max_tokens", "n", "seed")
_FLOAT_SETTINGS = ("temperature", "frequency_penalty", "top_p")


def endpoint_from_base_url(base_url: Optional[str]) -> str:
    """
    Normalize a server base URL to its chat-completions endpoint.

    Example:
        >>> endpoint_from_base_url("http://gpu-1:8080/")
        'http://gpu-1:8080/v1/chat/completions'
    """
    if not base_url or not base_url.strip():
        return DEFAULT_OPENAI_ENDPOINT
    url = base_url.strip().rstrip('/')
    if url.endswith('/chat/completions'):
        return url
    if url.endswith('/v1'):
        return url + '/chat/completions'
    return url + DEFAULT_CHAT_COMPLETIONS_PATH


def settings_to_payload(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep only the generation settings the chat API understands."""
    payload = {}
    for key, value in (settings or {}).items():
        if key in _INTEGER_SETTINGS and isinstance(value, int) and not isinstance(value, bool):
            payload[key] = value
        elif key in _FLOAT_SETTINGS and isinstance(value, (int, float)) and not isinstance(value, bool):
            payload[key] = float(value)
    return payload


class OpenAICompatibleProvider(LLMProvider):
    """OpenAI-compatible API provider (works with llama.cpp, LM Studio, vLLM, OpenAI, etc.)"""

    def __init__(self, model: str, api_key: Optional[str] = None,
                 settings: Optional[Dict[str, Any]] = None,
                 timeout: float = REQUEST_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(model, timeout=timeout, transport=transport)
        self.api_key = api_key
        self.settings = settings or {}

    def build_payload(self, prompt: str, system_prompt: Optional[str] = None,
                      response_schema: Optional[Dict[str, Any]] = None,
                      messages: Optional[list] = None) -> Dict[str, Any]:
        # Build messages array with optional system prompt
        chat = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend(messages or [])
        chat.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": chat,
            "stream": False,
        }
        if response_schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "strict": True, "schema": response_schema},
            }
        payload.update(settings_to_payload(self.settings))
        return payload

    async def generate(self, endpoint: str, prompt: str, system_prompt: Optional[str] = None,
                       response_schema: Optional[Dict[str, Any]] = None,
                       messages: Optional[list] = None) -> LLMResponse:
        """
        Generate text using an OpenAI compatible API.

        Raises:
            ModelCallError: On timeout, HTTP error status, or an undecodable body
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = self.build_payload(prompt, system_prompt, response_schema, messages)
        client = await self._get_client()

        try:
            response = await client.post(endpoint, json=payload, headers=headers)
            response.raise_for_status()
            response_json = response.json()
        except httpx.TimeoutException as e:
            raise ModelCallError(f"Timeout: {e}", endpoint=endpoint) from e
        except httpx.HTTPStatusError as e:
            error_body = e.response.text[:500] if e.response is not None else ""
            raise ModelCallError(f"HTTP {e.response.status_code}: {error_body}", endpoint=endpoint) from e
        except httpx.HTTPError as e:
            raise ModelCallError(f"Transport error: {e}", endpoint=endpoint) from e
        except json.JSONDecodeError as e:
            raise ModelCallError(f"Invalid JSON body: {e}", endpoint=endpoint) from e

        choices = response_json.get("choices") or [{}]
        response_text = (choices[0].get("message") or {}).get("content") or ""

        # Extract token usage if available
        usage = response_json.get("usage") or {}

        return LLMResponse(
            content=response_text,
            endpoint=endpoint,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            raw=response_json,
        )
