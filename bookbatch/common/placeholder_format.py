"""
Centralized placeholder format detection and manipulation.

This module provides a unified interface for working with semantic
placeholders ([[p_1]], [[/p_1]], [[br_2/]]), eliminating duplication
between the placeholder codec, the model client and the auto-healer.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from bookbatch.config import (
    PLACEHOLDER_OPEN,
    PLACEHOLDER_CLOSE,
    PLACEHOLDER_TOKEN_PATTERN,
    FUZZY_MIN_BRACKETS,
    FUZZY_MAX_BRACKETS,
    FUZZY_ALLOW_INNER_WHITESPACE,
)


class TokenKind(Enum):
    """Kinds of placeholder tokens."""
    OPEN = "open"
    CLOSE = "close"
    SELF_CLOSING = "self_closing"


_INDEX_PATTERN = re.compile(r'_(\d+)/?$')


class PlaceholderFormat:
    """
    Encapsulates placeholder creation, parsing and matching.

    Example:
        >>> fmt = PlaceholderFormat()
        >>> fmt.wrap_key("p_1")
        '[[p_1]]'
        >>> fmt.parse("[[/p_1]]")
        (<TokenKind.CLOSE: 'close'>, 'p_1')
        >>> fmt.index_of("br_12/")
        12
    """

    def __init__(self, open_delim: str = PLACEHOLDER_OPEN, close_delim: str = PLACEHOLDER_CLOSE,
                 pattern: str = PLACEHOLDER_TOKEN_PATTERN):
        self.open_delim = open_delim
        self.close_delim = close_delim
        self.pattern = pattern
        self._compiled_pattern = re.compile(pattern)

    def wrap_key(self, key: str) -> str:
        """Wrap a placeholder map key (``p_1``, ``/p_1``, ``br_2/``) into its token."""
        return f"{self.open_delim}{key}{self.close_delim}"

    def parse(self, token: str) -> Optional[Tuple[TokenKind, str]]:
        """
        Parse a well-formed token into (kind, id).

        Returns:
            Tuple of (TokenKind, id) or None if the token is not a placeholder
        """
        if not self._compiled_pattern.fullmatch(token):
            return None
        inner = token[len(self.open_delim):-len(self.close_delim)]
        if inner.startswith("/"):
            return TokenKind.CLOSE, inner[1:]
        if inner.endswith("/"):
            return TokenKind.SELF_CLOSING, inner[:-1]
        return TokenKind.OPEN, inner

    @staticmethod
    def index_of(key: str) -> int:
        """
        Extract the numeric index embedded in a placeholder key.

        Keys without a numeric suffix sort first (index -1).
        """
        match = _INDEX_PATTERN.search(key.lstrip("/"))
        return int(match.group(1)) if match else -1

    def find_all(self, text: str) -> Iterator[Tuple[int, int, str]]:
        """Yield (start, end, token) for every well-formed token in text."""
        for match in self._compiled_pattern.finditer(text or ""):
            yield match.start(), match.end(), match.group(0)

    def tokens_in(self, text: str) -> List[str]:
        """List every well-formed token in document order."""
        return [token for _, _, token in self.find_all(text)]

    def strip_tokens(self, text: str) -> str:
        """Remove every placeholder token from text."""
        return self._compiled_pattern.sub("", text or "")


@dataclass(frozen=True)
class FuzzyTagPolicy:
    """
    Tolerance used when locating placeholders in model output.

    The model frequently drops or doubles a bracket ([[p_1], [p_1]]) or pads
    the id with spaces ([[ p_1 ]]). Every variant within these bounds is
    accepted as the same tag.

    Attributes:
        min_brackets: Fewest brackets accepted on each side
        max_brackets: Most brackets accepted on each side
        allow_inner_whitespace: Accept whitespace between brackets, slash and id
    """
    min_brackets: int = FUZZY_MIN_BRACKETS
    max_brackets: int = FUZZY_MAX_BRACKETS
    allow_inner_whitespace: bool = FUZZY_ALLOW_INNER_WHITESPACE

    def __post_init__(self):
        if self.min_brackets < 1:
            raise ValueError("min_brackets must be >= 1")
        if self.max_brackets < self.min_brackets:
            raise ValueError("max_brackets must be >= min_brackets")

    def compile(self, tag_id: str, kind: TokenKind) -> re.Pattern:
        """Build the tolerant regex for one tag id and token kind."""
        left = rf"\[{{{self.min_brackets},{self.max_brackets}}}"
        right = rf"\]{{{self.min_brackets},{self.max_brackets}}}"
        ws = r"\s*" if self.allow_inner_whitespace else ""
        escaped = re.escape(tag_id)

        if kind is TokenKind.CLOSE:
            body = rf"{ws}/{ws}{escaped}{ws}/?{ws}"
        elif kind is TokenKind.SELF_CLOSING:
            body = rf"{ws}{escaped}{ws}/{ws}"
        else:
            body = rf"{ws}{escaped}{ws}/?{ws}"

        return re.compile(left + body + right, re.DOTALL)

    def search(self, text: str, tag_id: str, kind: TokenKind) -> Optional[re.Match]:
        """Find the first tolerant occurrence of a tag in text."""
        return self.compile(tag_id, kind).search(text)


# Loose shape of anything that looks like a (possibly mangled) placeholder
TAG_SHAPED_PATTERN = re.compile(r'\[{1,2}\s*/?\s*[A-Za-z][\w:.-]*\s*/?\s*\]{1,2}')

DEFAULT_FORMAT = PlaceholderFormat()
