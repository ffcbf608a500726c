"""
Tag preservation system for markup translation

This module handles the preservation of HTML/XML tags during translation by
replacing them with semantic placeholders that LLMs can carry through verbatim.
"""
import re
from typing import Dict, List, Optional, Tuple

from bookbatch.config import MARKUP_TAG_PATTERN
from bookbatch.common.placeholder_format import DEFAULT_FORMAT, PlaceholderFormat

_TAG_RE = re.compile(MARKUP_TAG_PATTERN)


class PlaceholderCodec:
    """
    Preserves HTML/XML tags during translation by replacing them with paired placeholders

    The codec converts markup like ``Hello <b>World</b>`` into
    ``Hello [[b_1]]World[[/b_1]]`` before translation, then restores it afterward.
    Closing tags share the id of the opener they close, so the LLM sees the
    pairing, and self-closing tags get a trailing slash (``[[br_2/]]``).
    """

    def __init__(self, placeholder_format: Optional[PlaceholderFormat] = None):
        self.format = placeholder_format or DEFAULT_FORMAT

    def protect(self, markup: str) -> Tuple[str, Dict[str, str]]:
        """
        Replace HTML/XML tags with semantic placeholders

        Tags are numbered sequentially in document order. Each tag occurrence is
        consumed exactly once, so two identical literal tags get two placeholders.

        Args:
            markup: Text containing HTML/XML tags

        Returns:
            Tuple of (protected_text, placeholder_map) where the map goes from
            placeholder key (``p_1``, ``/p_1``, ``br_2/``) to the original tag

        Example:
            >>> codec = PlaceholderCodec()
            >>> codec.protect("Hello <b>World</b>")
            ('Hello [[b_1]]World[[/b_1]]', {'b_1': '<b>', '/b_1': '</b>'})
        """
        if not markup:
            return "", {}

        mapping: Dict[str, str] = {}
        stack: List[str] = []
        next_id = 1
        parts: List[str] = []
        last_end = 0

        for match in _TAG_RE.finditer(markup):
            full_tag = match.group(0)
            is_closing = match.group(1) == "/"
            is_self_closing = match.group(3) == "/"
            tag_name = match.group(2).lower()

            if is_self_closing:
                key = f"{tag_name}_{next_id}/"
                next_id += 1
            elif is_closing:
                if stack:
                    key = f"/{stack.pop()}"
                else:
                    # Orphan closing tag
                    key = f"/{tag_name}_{next_id}"
                    next_id += 1
            else:
                tag_id = f"{tag_name}_{next_id}"
                stack.append(tag_id)
                key = tag_id
                next_id += 1

            parts.append(markup[last_end:match.start()])
            parts.append(self.format.wrap_key(key))
            mapping[key] = full_tag
            last_end = match.end()

        parts.append(markup[last_end:])
        return "".join(parts), mapping

    def restore(self, text: Optional[str], mapping: Dict[str, str]) -> str:
        """
        Restore HTML/XML tags from placeholders

        Keys are processed by descending numeric index so that a smaller index
        never clobbers part of a larger one.

        Args:
            text: Text with placeholders (None restores to "")
            mapping: Dictionary mapping placeholder keys to original tags

        Returns:
            Text with restored tags

        Example:
            >>> codec = PlaceholderCodec()
            >>> codec.restore('[[b_1]]Hi[[/b_1]]', {'b_1': '<b>', '/b_1': '</b>'})
            '<b>Hi</b>'
        """
        if text is None:
            return ""

        restored_text = text
        keys = sorted(
            mapping.keys(),
            key=lambda k: (self.format.index_of(k), len(k)),
            reverse=True
        )

        for key in keys:
            token = self.format.wrap_key(key)
            if token in restored_text:
                restored_text = restored_text.replace(token, mapping[key])

        return restored_text

    def validate_placeholders(self, text: str, mapping: Dict[str, str]) -> Tuple[bool, List[str]]:
        """
        Validate that all expected placeholders are present in the text

        Args:
            text: Text to validate
            mapping: Dictionary mapping placeholder keys to original tags

        Returns:
            Tuple of (is_valid, missing_placeholders)
        """
        missing = [
            self.format.wrap_key(key)
            for key in mapping
            if self.format.wrap_key(key) not in (text or "")
        ]
        return not missing, missing


_default_codec = PlaceholderCodec()


def protect(markup: str) -> Tuple[str, Dict[str, str]]:
    """Module-level shortcut for :meth:`PlaceholderCodec.protect`."""
    return _default_codec.protect(markup)


def restore(text: Optional[str], mapping: Dict[str, str]) -> str:
    """Module-level shortcut for :meth:`PlaceholderCodec.restore`."""
    return _default_codec.restore(text, mapping)
