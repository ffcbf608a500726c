"""
Translate and classify calls routed through the endpoint pool.

Every request checks out an endpoint, and checks it back in (or reports
it as failed) when the request ends. Structural problems in the model's
answer trigger corrective re-prompts; once those run out, the client falls
back to best-effort parsing and finally to raw text, so a translation
never fails only because the model drifted from the schema.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from bookbatch.config import (
    DEFAULT_SOURCE_LANGUAGE,
    DEFAULT_TARGET_LANGUAGE,
    MAX_CORRECTION_ATTEMPTS,
    MAX_TRANSLATION_ATTEMPTS,
    REQUEST_TIMEOUT,
    RETRY_DELAY_SECONDS,
)
from bookbatch.common.placeholder_format import DEFAULT_FORMAT
from bookbatch.core.exceptions import ModelCallError, PlaceholderValidationError
from bookbatch.core.llm.base import LLMProvider, LLMResponse
from bookbatch.core.llm.endpoint_pool import EndpointPool
from bookbatch.core.llm.prompts import (
    TRANSLATION_SCHEMA,
    VALIDATION_SCHEMA,
    generate_correction_prompt,
    generate_translation_prompt,
    generate_validation_prompt,
)
from bookbatch.core.llm.providers.openai import OpenAICompatibleProvider
from bookbatch.core.llm.selector import EndpointConfig
from bookbatch.core.llm.utils.extraction import (
    TranslationPayload,
    best_effort_payload,
    extract_raw_text,
    load_json_object,
    parse_translation_payload,
)
from bookbatch.core.result import Err, Ok, Result
from bookbatch.utils.llm_logger import log_llm_interaction

logger = logging.getLogger(__name__)

MODE_VALID = "valid"
MODE_BEST_EFFORT = "best_effort"
MODE_RAW_TEXT = "raw_text"

VERDICT_TRANSLATED = "translated"
VERDICT_NOT_TRANSLATED = "not_translated"
VERDICT_AMBIGUOUS = "ambiguous"
VERDICTS = (VERDICT_TRANSLATED, VERDICT_NOT_TRANSLATED, VERDICT_AMBIGUOUS)


@dataclass
class TranslationResult:
    """Outcome of one translate call.

    Attributes:
        translations: Tagged translation per requested item
        context_summary: Rolling summary to pass to the next call
        raw_response: Last raw model answer plus call metadata
        mode: "valid", "best_effort" or "raw_text"
    """
    translations: List[str]
    context_summary: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)
    mode: str = MODE_VALID

    @property
    def translated_text(self) -> str:
        """First translation, for single-item calls."""
        return self.translations[0] if self.translations else ""


def validate_payload(items: Sequence[str], payload: Optional[TranslationPayload]) -> None:
    """
    Check item count and placeholder presence.

    Raises:
        PlaceholderValidationError: Describing the first structural problem set
    """
    if payload is None:
        raise PlaceholderValidationError(
            "Response is not a JSON object with a 'translations' string array",
            expected_count=len(items),
        )

    if len(payload.translations) != len(items):
        raise PlaceholderValidationError(
            f"Expected {len(items)} translations, got {len(payload.translations)}",
            expected_count=len(items),
            actual_count=len(payload.translations),
        )

    missing = []
    for source, translated in zip(items, payload.translations):
        missing.extend(token for token in DEFAULT_FORMAT.tokens_in(source) if token not in translated)

    if missing:
        raise PlaceholderValidationError(
            f"Missing placeholders: {', '.join(missing)}",
            expected_count=len(items),
            actual_count=len(payload.translations),
            missing_placeholders=missing,
        )


def describe_problems(error: PlaceholderValidationError) -> List[str]:
    """Correction-prompt lines for a validation error."""
    problems = [error.message]
    for token in error.missing_placeholders:
        problems.append(f"Placeholder {token} is missing or malformed")
    return problems


class ModelClient:
    """
    Issues translate/classify calls against a pool of OpenAI-compatible servers.

    Args:
        pool: Endpoint pool arbitrating between servers
        max_attempts: Transport attempts, each on a freshly checked-out endpoint
        max_corrections: Corrective re-prompts after a structurally invalid answer
        retry_delay: Seconds to wait between transport attempts
        transport: Optional httpx transport shared by every provider (tests)
        provider_factory: Builds a provider from an EndpointConfig
    """

    def __init__(self, pool: EndpointPool,
                 max_attempts: int = MAX_TRANSLATION_ATTEMPTS,
                 max_corrections: int = MAX_CORRECTION_ATTEMPTS,
                 retry_delay: float = RETRY_DELAY_SECONDS,
                 timeout: float = REQUEST_TIMEOUT,
                 source_language: str = DEFAULT_SOURCE_LANGUAGE,
                 target_language: str = DEFAULT_TARGET_LANGUAGE,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 provider_factory: Optional[Callable[[EndpointConfig], LLMProvider]] = None):
        self.pool = pool
        self.max_attempts = max(1, max_attempts)
        self.max_corrections = max(0, max_corrections)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.source_language = source_language
        self.target_language = target_language
        self._transport = transport
        self._provider_factory = provider_factory or self._default_provider
        self._providers: Dict[tuple, LLMProvider] = {}

    def _default_provider(self, endpoint_config: EndpointConfig) -> LLMProvider:
        return OpenAICompatibleProvider(
            endpoint_config.model,
            api_key=endpoint_config.api_key or None,
            settings=endpoint_config.settings,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _provider_for(self, endpoint_config: EndpointConfig) -> LLMProvider:
        key = (endpoint_config.model, endpoint_config.api_key,
               tuple(sorted(endpoint_config.settings.items())))
        if key not in self._providers:
            self._providers[key] = self._provider_factory(endpoint_config)
        return self._providers[key]

    async def close(self):
        """Close every provider's HTTP client"""
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(self, endpoint_config: EndpointConfig, prompt: str, system_prompt: str,
                    schema: Dict[str, Any], messages: Optional[list] = None) -> LLMResponse:
        """
        Run one request, moving to another endpoint after each transport failure.

        Raises:
            ModelCallError: When every attempt failed
        """
        provider = self._provider_for(endpoint_config)
        last_error: Optional[ModelCallError] = None

        for attempt in range(self.max_attempts):
            url = await self.pool.checkout(endpoint_config.endpoints)
            try:
                response = await provider.generate(url, prompt, system_prompt=system_prompt,
                                                   response_schema=schema, messages=messages)
            except ModelCallError as e:
                self.pool.report_failure(url)
                last_error = e
                logger.warning(f"LLM call failed on {url} (attempt {attempt + 1}/{self.max_attempts}): "
                               f"{e.message}")
                if attempt < self.max_attempts - 1 and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
                continue
            except (Exception, asyncio.CancelledError):
                self.pool.checkin(url)
                raise

            self.pool.checkin(url)
            return response

        raise last_error

    # ------------------------------------------------------------------
    # Translate
    # ------------------------------------------------------------------

    async def translate(self, endpoint_config: EndpointConfig, protected_text: Union[str, Sequence[str]],
                        previous_summary: Optional[str] = None,
                        target_language: Optional[str] = None,
                        source_language: Optional[str] = None) -> Result[TranslationResult, ModelCallError]:
        """
        Translate one protected text (or several) with schema-constrained output.

        Args:
            endpoint_config: Model and servers for the "translate" usage type
            protected_text: Placeholder-tagged text, or a list of them
            previous_summary: Context summary returned by the previous call
            target_language: Overrides the client's target language
            source_language: Overrides the client's source language

        Returns:
            Ok(TranslationResult), or Err(ModelCallError) when no endpoint answered
        """
        items = [protected_text] if isinstance(protected_text, str) else list(protected_text)
        prompt = generate_translation_prompt(
            items,
            previous_summary=previous_summary,
            source_language=source_language or self.source_language,
            target_language=target_language or self.target_language,
        )

        user_prompt = prompt.user
        messages: List[Dict[str, str]] = []
        content = ""
        endpoint = ""

        for correction in range(self.max_corrections + 1):
            try:
                response = await self._call(endpoint_config, user_prompt, prompt.system,
                                            TRANSLATION_SCHEMA, messages)
            except ModelCallError as e:
                return Err(e)

            content, endpoint = response.content, response.endpoint
            log_llm_interaction(prompt.system, user_prompt, content, interaction_type="translation",
                                endpoint=endpoint, correction=correction, replayed_turns=len(messages))

            payload = parse_translation_payload(content)
            try:
                validate_payload(items, payload)
            except PlaceholderValidationError as e:
                if correction >= self.max_corrections:
                    logger.warning(f"Giving up on corrections after {correction} attempt(s): {e.message}")
                    break
                logger.info(f"Invalid model output, requesting correction "
                            f"{correction + 1}/{self.max_corrections}: {e.message}")
                messages = messages + [
                    {"role": "user", "content": user_prompt},
                    {"role": "assistant", "content": content},
                ]
                user_prompt = generate_correction_prompt(items, content, describe_problems(e), len(items))
                continue

            return Ok(TranslationResult(
                translations=payload.translations,
                context_summary=payload.context_summary or previous_summary,
                raw_response=self._raw(content, endpoint, correction + 1, MODE_VALID),
                mode=MODE_VALID,
            ))

        return Ok(self._fallback(items, content, endpoint, previous_summary))

    def _fallback(self, items: List[str], content: str, endpoint: str,
                  previous_summary: Optional[str]) -> TranslationResult:
        attempts = self.max_corrections + 1
        payload = best_effort_payload(content)
        if payload is not None and payload.translations:
            translations = (payload.translations + [""] * len(items))[:len(items)]
            return TranslationResult(
                translations=translations,
                context_summary=payload.context_summary or previous_summary,
                raw_response=self._raw(content, endpoint, attempts, MODE_BEST_EFFORT),
                mode=MODE_BEST_EFFORT,
            )

        raw_text = extract_raw_text(content)
        return TranslationResult(
            translations=[raw_text] + [""] * (len(items) - 1),
            context_summary=previous_summary,
            raw_response=self._raw(content, endpoint, attempts, MODE_RAW_TEXT),
            mode=MODE_RAW_TEXT,
        )

    @staticmethod
    def _raw(content: str, endpoint: str, attempts: int, mode: str) -> Dict[str, Any]:
        return {"content": content, "endpoint": endpoint, "attempts": attempts, "mode": mode}

    # ------------------------------------------------------------------
    # Classify
    # ------------------------------------------------------------------

    async def classify(self, endpoint_config: EndpointConfig, source: str, translated: str,
                       target_language: Optional[str] = None) -> Result[str, ModelCallError]:
        """
        Ask the model whether ``translated`` is a real translation of ``source``.

        Args:
            target_language: Language the translation should be in; overrides
                the client's target language

        Returns:
            Ok("translated" | "not_translated" | "ambiguous"), or Err(ModelCallError)
        """
        prompt = generate_validation_prompt(source, translated, target_language or self.target_language)
        try:
            response = await self._call(endpoint_config, prompt.user, prompt.system, VALIDATION_SCHEMA)
        except ModelCallError as e:
            return Err(e)

        log_llm_interaction(prompt.system, prompt.user, response.content, interaction_type="validation",
                            endpoint=response.endpoint)
        return Ok(parse_verdict(response.content))


def parse_verdict(content: str) -> str:
    """Read a verdict from a JSON answer, falling back to keywords in free text."""
    data = load_json_object(content)
    if data is not None and data.get("verdict") in VERDICTS:
        return data["verdict"]

    text = extract_raw_text(content).lower()
    if "not_translated" in text or "not translated" in text:
        return VERDICT_NOT_TRANSLATED
    if "ambiguous" in text:
        return VERDICT_AMBIGUOUS
    if "translated" in text:
        return VERDICT_TRANSLATED
    return VERDICT_AMBIGUOUS
