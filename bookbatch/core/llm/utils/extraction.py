"""
Payload extraction from LLM responses.

This module turns raw completion text into the structured translation
payload, handling thinking blocks, markdown code fences and partially
valid JSON.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL | re.IGNORECASE)


@dataclass
class TranslationPayload:
    """Structured content of a translation response."""
    translations: List[str]
    context_summary: Optional[str] = None


def remove_think_blocks(response: str) -> str:
    """
    Remove all <think>...</think> blocks from response.

    Handles complete blocks and an orphan ``</think>`` left behind when a
    server truncates the opening tag.
    """
    response = re.sub(r'<think>.*?</think>', '', response, flags=re.DOTALL | re.IGNORECASE)

    before_orphan_removal = response
    response = re.sub(r'^.*?</think>\s*', '', response, flags=re.DOTALL | re.IGNORECASE)
    if before_orphan_removal != response:
        logger.debug(f"Orphan </think> detected - removed "
                     f"{len(before_orphan_removal) - len(response)} characters from beginning")

    return response


def clean_response(response: Optional[str]) -> str:
    """Strip thinking blocks, surrounding whitespace and a markdown code fence."""
    if not response:
        return ""
    text = remove_think_blocks(response).strip()
    fence = _CODE_FENCE.match(text)
    if fence:
        text = fence.group(1).strip()
    return text


def load_json_object(response: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse the first JSON object found in a response.

    Returns:
        The decoded object, or None if no object can be decoded
    """
    text = clean_response(response)
    if not text:
        return None

    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    # Extra prose around the object: decode from the first brace
    start = text.find('{')
    if start == -1:
        return None
    try:
        data, _ = json.JSONDecoder().raw_decode(text[start:])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_translation_payload(response: Optional[str]) -> Optional[TranslationPayload]:
    """
    Strictly decode ``{"translations": [str], "context_summary": str}``.

    Returns:
        TranslationPayload, or None if the shape is wrong
    """
    data = load_json_object(response)
    if data is None:
        return None

    translations = data.get("translations")
    if not isinstance(translations, list) or not all(isinstance(t, str) for t in translations):
        return None

    summary = data.get("context_summary")
    return TranslationPayload(translations, summary if isinstance(summary, str) else None)


def best_effort_payload(response: Optional[str]) -> Optional[TranslationPayload]:
    """
    Salvage whatever translation items a malformed response contains.

    Accepts a single ``translation`` string, mixed item types, or a bare
    JSON list of strings.
    """
    data = load_json_object(response)
    if data is None:
        text = clean_response(response)
        try:
            items = json.loads(text) if text.startswith('[') else None
        except json.JSONDecodeError:
            items = None
        if isinstance(items, list):
            return TranslationPayload([str(item) for item in items if item is not None])
        return None

    items = data.get("translations")
    if items is None and isinstance(data.get("translation"), str):
        items = [data["translation"]]
    if not isinstance(items, list):
        return None

    summary = data.get("context_summary")
    return TranslationPayload(
        [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in items],
        summary if isinstance(summary, str) else None,
    )


def extract_raw_text(response: Optional[str]) -> str:
    """Last resort: the response text without thinking blocks or fences."""
    return clean_response(response)
