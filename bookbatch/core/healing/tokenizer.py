"""
Typed tokenizer and tree builder for placeholder-tagged text.

Turns ``[[p_1]]Hi [[b_2]]there[[/b_2]][[/p_1]]`` into a tree of
:class:`Container`, :class:`SelfClosing` and :class:`Text` nodes. A closer
that does not match the innermost open container is kept as literal text,
and containers left open at the end are unwound the same way, so the
builder never fails.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union

from bookbatch.common.placeholder_format import DEFAULT_FORMAT, PlaceholderFormat, TokenKind


# ============================================================================
# Tokens
# ============================================================================

@dataclass(frozen=True)
class OpenToken:
    tag_id: str
    raw: str


@dataclass(frozen=True)
class CloseToken:
    tag_id: str
    raw: str


@dataclass(frozen=True)
class SelfCloseToken:
    tag_id: str
    raw: str


@dataclass(frozen=True)
class TextToken:
    content: str


Token = Union[OpenToken, CloseToken, SelfCloseToken, TextToken]


def tokenize(text: str, placeholder_format: Optional[PlaceholderFormat] = None) -> List[Token]:
    """Split tagged text into a typed token stream, preserving every character."""
    fmt = placeholder_format or DEFAULT_FORMAT
    tokens: List[Token] = []
    last_end = 0

    for start, end, raw in fmt.find_all(text):
        if start > last_end:
            tokens.append(TextToken(text[last_end:start]))
        kind, tag_id = fmt.parse(raw)
        if kind is TokenKind.OPEN:
            tokens.append(OpenToken(tag_id, raw))
        elif kind is TokenKind.CLOSE:
            tokens.append(CloseToken(tag_id, raw))
        else:
            tokens.append(SelfCloseToken(tag_id, raw))
        last_end = end

    if last_end < len(text or ""):
        tokens.append(TextToken(text[last_end:]))
    return tokens


# ============================================================================
# Tree
# ============================================================================

@dataclass
class Text:
    content: str


@dataclass
class SelfClosing:
    tag_id: str
    token: str


@dataclass
class Container:
    tag_id: str
    open_token: str
    close_token: str
    children: List['Node'] = field(default_factory=list)


Node = Union[Container, SelfClosing, Text]


def build_tree(tokens: List[Token]) -> List[Node]:
    """Match openers and closers with a stack and return the top-level nodes."""
    # Each frame: (open token, children collected so far)
    stack: List[tuple] = []
    current: List[Node] = []

    for token in tokens:
        if isinstance(token, TextToken):
            current.append(Text(token.content))
        elif isinstance(token, SelfCloseToken):
            current.append(SelfClosing(token.tag_id, token.raw))
        elif isinstance(token, OpenToken):
            stack.append((token, current))
            current = []
        elif stack and stack[-1][0].tag_id == token.tag_id:
            opener, parent_children = stack.pop()
            parent_children.append(Container(opener.tag_id, opener.raw, token.raw, current))
            current = parent_children
        else:
            # Mismatched or orphan closer
            current.append(Text(token.raw))

    while stack:
        opener, parent_children = stack.pop()
        parent_children.append(Text(opener.raw))
        parent_children.extend(current)
        current = parent_children

    return current


def parse_tree(text: str, placeholder_format: Optional[PlaceholderFormat] = None) -> List[Node]:
    return build_tree(tokenize(text, placeholder_format))


def render(nodes: List[Node]) -> str:
    """Serialize a tree back to tagged text."""
    parts = []
    for node in nodes:
        if isinstance(node, Text):
            parts.append(node.content)
        elif isinstance(node, SelfClosing):
            parts.append(node.token)
        else:
            parts.append(node.open_token + render(node.children) + node.close_token)
    return "".join(parts)
