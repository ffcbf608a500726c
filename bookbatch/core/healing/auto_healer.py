"""
Structural reconciliation of model output against the tagged source.

The model is asked to keep ``[[p_1]]...[[/p_1]]`` tags verbatim but often
mangles brackets, drops closers or duplicates tags. The healer walks the
source tag tree and rebuilds the output from it, taking only text from the
translation, so the healed result always has the source's structure.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from bookbatch.common.placeholder_format import (
    DEFAULT_FORMAT,
    TAG_SHAPED_PATTERN,
    FuzzyTagPolicy,
    PlaceholderFormat,
    TokenKind,
)
from bookbatch.core.exceptions import HealingFailed
from bookbatch.core.healing.tokenizer import Container, Node, SelfClosing, Text, parse_tree
from bookbatch.core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

_DUPLICATE_TOKEN_RUN = re.compile(r'(\[\[[^\[\]]+\]\])(?:\1)+')
_TRAILING_GARBAGE = re.compile(r'(?:' + TAG_SHAPED_PATTERN.pattern + r'|\[\[|\]\])(\s*)$')

# A chunk is a run of text nodes plus the tag node that follows it (None at the end)
Chunk = Tuple[List[Text], Optional[Node]]


@dataclass
class _HealState:
    forged: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.forged


def chunk_nodes(nodes: List[Node]) -> List[Chunk]:
    """Group children into (text run, following tag) chunks; the last chunk has no tag."""
    chunks: List[Chunk] = []
    texts: List[Text] = []
    for node in nodes:
        if isinstance(node, Text):
            texts.append(node)
        else:
            chunks.append((texts, node))
            texts = []
    chunks.append((texts, None))
    return chunks


def collapse_duplicate_tags(text: str) -> str:
    """Collapse runs of one identical tag (``[[/p_1]][[/p_1]]`` -> ``[[/p_1]]``)."""
    return _DUPLICATE_TOKEN_RUN.sub(r'\1', text)


class AutoHealer:
    """
    Repairs translated text so it carries exactly the source's tags.

    Example:
        >>> healer = AutoHealer()
        >>> healer.heal("[[p_1]]Text[[/p_1]]", "[[p_1]Ann[[/p_1]]")
        Ok(value='[[p_1]]Ann[[/p_1]]')
    """

    def __init__(self, policy: Optional[FuzzyTagPolicy] = None,
                 placeholder_format: Optional[PlaceholderFormat] = None):
        self.policy = policy or FuzzyTagPolicy()
        self.format = placeholder_format or DEFAULT_FORMAT

    def heal(self, source_text: str, translated_text: Optional[str]) -> Result[str, HealingFailed]:
        """
        Heal ``translated_text`` against the structure of ``source_text``.

        Returns:
            Ok(healed_text) when every source tag was located, otherwise
            Err(HealingFailed) whose ``text`` holds the best-effort result
            with the missing tags forged in.
        """
        tree = parse_tree(source_text or "", self.format)
        state = _HealState()
        healed = collapse_duplicate_tags(self._process_nodes(tree, translated_text or "", state))

        if state.ok:
            return Ok(healed)

        logger.warning(f"Healing forged {len(state.forged)} tag(s): {', '.join(state.forged)}")
        return Err(HealingFailed(healed, state.forged))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _process_nodes(self, nodes: List[Node], translated: str, state: _HealState) -> str:
        chunks = chunk_nodes(nodes)
        output = []
        remaining = translated
        for index, (texts, tag) in enumerate(chunks):
            next_tag = chunks[index + 1][1] if index + 1 < len(chunks) else None
            piece, remaining = self._process_chunk(texts, tag, next_tag, remaining, state)
            output.append(piece)
        return "".join(output)

    def _process_chunk(self, texts: List[Text], tag: Optional[Node], next_tag: Optional[Node],
                       translated: str, state: _HealState) -> Tuple[str, str]:
        if tag is None:
            return self._resolve_text(texts, translated), ""

        kind = TokenKind.SELF_CLOSING if isinstance(tag, SelfClosing) else TokenKind.OPEN
        match = self.policy.search(translated, tag.tag_id, kind)

        if match is None:
            state.forged.append(tag.tag_id)
            return self._resolve_text(texts, translated) + self._forge(tag, state), ""

        before = translated[:match.start()]
        after = translated[match.end():]
        pre_text = self._resolve_text(texts, before)

        if isinstance(tag, SelfClosing):
            return pre_text + tag.token, after

        healed, remaining = self._process_container(tag, next_tag, after, state)
        return pre_text + healed, remaining

    def _process_container(self, tag: Container, next_tag: Optional[Node], after_open: str,
                           state: _HealState) -> Tuple[str, str]:
        close_match = self.policy.search(after_open, tag.tag_id, TokenKind.CLOSE)

        if close_match is not None:
            inner = after_open[:close_match.start()]
            remaining = after_open[close_match.end():]
        else:
            state.forged.append(f"/{tag.tag_id}")
            # Without a closer the interior runs up to the next sibling tag
            boundary = self._find_sibling(after_open, next_tag)
            inner = after_open[:boundary]
            remaining = after_open[boundary:]

        healed_inner = self._process_nodes(tag.children, inner, state)
        return tag.open_token + healed_inner + tag.close_token, remaining

    def _find_sibling(self, text: str, next_tag: Optional[Node]) -> int:
        if next_tag is None:
            return len(text)
        kind = TokenKind.SELF_CLOSING if isinstance(next_tag, SelfClosing) else TokenKind.OPEN
        match = self.policy.search(text, next_tag.tag_id, kind)
        return match.start() if match else len(text)

    def _resolve_text(self, texts: List[Text], candidate: str) -> str:
        if not texts:
            return ""
        source = "".join(node.content for node in texts)
        if not source.strip():
            return source
        return self._strip_trailing_garbage(candidate, source)

    def _strip_trailing_garbage(self, candidate: str, source: str) -> str:
        """Drop tag-shaped debris at the end of a text run unless the source ends with it too."""
        stripped_source = source.rstrip()
        while True:
            match = _TRAILING_GARBAGE.search(candidate)
            if not match:
                return candidate
            garbage = candidate[match.start():match.end() - len(match.group(1))]
            if stripped_source.endswith(garbage):
                return candidate
            candidate = candidate[:match.start()] + match.group(1)

    def _forge(self, tag: Node, state: _HealState) -> str:
        """Literal markup for a tag that was not found, nested tags included."""
        if isinstance(tag, SelfClosing):
            return tag.token
        return tag.open_token + self._process_nodes(tag.children, "", state) + tag.close_token


_default_healer = AutoHealer()


def heal(source_text: str, translated_text: Optional[str]) -> Result[str, HealingFailed]:
    """Module-level shortcut for :meth:`AutoHealer.heal`."""
    return _default_healer.heal(source_text, translated_text)
